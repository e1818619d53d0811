"""JSON-RPC transport to the ledger gateway.

The gateway speaks newline-delimited JSON-RPC 2.0.  Replies carry the
integer id of the call they answer; frames with a ``method`` and no id are
events (``wallet/accountsChanged``) fanned out to subscribers.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import itertools
import json
import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

log = logging.getLogger(__name__)

# getUserTodos returns the whole list on one line.
STREAM_LIMIT = 10 * 1024 * 1024

EventHandler = Callable[[dict[str, Any]], Any]


class GatewayError(Exception):
    """Error object returned by the gateway in place of a result."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.data = data

    @classmethod
    def from_payload(cls, payload: Any) -> GatewayError:
        if not isinstance(payload, dict):
            return cls(-1, f"Malformed gateway error: {payload!r}")
        return cls(
            payload.get("code", -1),
            payload.get("message", "Unknown gateway error"),
            payload.get("data"),
        )


@runtime_checkable
class LedgerTransport(Protocol):
    """What the ledger client and wallet provider need from a connection.

    Tests substitute an in-memory ledger with the same shape.
    """

    async def request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = 120,
    ) -> Any: ...

    def subscribe(self, event: str, handler: EventHandler) -> None: ...

    def unsubscribe(self, event: str, handler: EventHandler) -> None: ...

    async def __aenter__(self) -> LedgerTransport: ...

    async def __aexit__(self, *exc: object) -> None: ...


def parse_endpoint(endpoint: str) -> tuple[str, str | tuple[str, int]]:
    """Split ``tcp://host:port`` or ``unix:/path`` into (kind, address)."""
    if endpoint.startswith("unix:"):
        path = endpoint[len("unix:") :]
        if path.startswith("//"):
            path = path[2:]
        if not path:
            raise ValueError(f"Invalid ledger endpoint '{endpoint}': empty socket path")
        return "unix", path
    if endpoint.startswith("tcp://"):
        host, sep, port = endpoint[len("tcp://") :].rpartition(":")
        if not sep or not host or not port.isdigit():
            raise ValueError(f"Invalid ledger endpoint '{endpoint}': expected tcp://host:port")
        return "tcp", (host, int(port))
    raise ValueError(f"Unsupported ledger endpoint '{endpoint}'")


def _encode(msg: dict) -> bytes:
    return json.dumps(msg, separators=(",", ":")).encode() + b"\n"


def _decode(line: bytes) -> dict[str, Any] | None:
    try:
        msg = json.loads(line)
    except (json.JSONDecodeError, UnicodeDecodeError):
        log.debug("Dropping malformed line from ledger gateway")
        return None
    return msg if isinstance(msg, dict) else None


class JsonLineTransport:
    """Newline-delimited JSON-RPC 2.0 over a TCP or Unix stream socket.

    Once the connection is lost every outstanding call fails with
    :class:`ConnectionError`, and so does every call made afterwards.
    """

    def __init__(self, endpoint: str, *, limit: int = STREAM_LIMIT) -> None:
        self._kind, self._address = parse_endpoint(endpoint)
        self._limit = limit
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._pump_task: asyncio.Task[None] | None = None
        self._ids = itertools.count(1)
        self._waiting: dict[int, asyncio.Future[Any]] = {}
        self._subscribers: defaultdict[str, list[EventHandler]] = defaultdict(list)
        self._lost: str | None = None

    async def start(self) -> None:
        if self._kind == "unix":
            assert isinstance(self._address, str)
            self._reader, self._writer = await asyncio.open_unix_connection(
                self._address, limit=self._limit
            )
        else:
            host, port = self._address
            self._reader, self._writer = await asyncio.open_connection(
                host, port, limit=self._limit
            )
        self._lost = None
        self._pump_task = asyncio.create_task(self._pump(self._reader))
        log.debug("Connected to ledger gateway %s", self._address)

    async def stop(self) -> None:
        if self._pump_task:
            self._pump_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._pump_task
        if self._writer:
            self._writer.close()
            with contextlib.suppress(Exception):
                await self._writer.wait_closed()
        self._connection_lost("closed")
        self._reader = None
        self._writer = None
        self._pump_task = None

    # -- Events --

    def subscribe(self, event: str, handler: EventHandler) -> None:
        self._subscribers[event].append(handler)

    def unsubscribe(self, event: str, handler: EventHandler) -> None:
        handlers = self._subscribers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)
        if not handlers:
            self._subscribers.pop(event, None)

    # -- Calls --

    async def request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = 120,
    ) -> Any:
        """Call *method* on the gateway and return its result.

        Raises :class:`GatewayError` for an error reply, :class:`TimeoutError`
        when *timeout* seconds pass without one (None waits forever) and
        :class:`ConnectionError` when the connection is gone.
        """
        if self._writer is None:
            raise RuntimeError("Transport not started")
        if self._lost is not None:
            raise ConnectionError(f"Ledger gateway connection {self._lost}")

        call_id = next(self._ids)
        reply = asyncio.get_running_loop().create_future()
        self._waiting[call_id] = reply
        frame: dict[str, Any] = {"jsonrpc": "2.0", "id": call_id, "method": method}
        if params is not None:
            frame["params"] = params
        try:
            await self._send(frame)
            log.debug("-> %s #%d", method, call_id)
            return await asyncio.wait_for(reply, timeout)
        finally:
            self._waiting.pop(call_id, None)

    async def _send(self, frame: dict[str, Any]) -> None:
        assert self._writer is not None
        self._writer.write(_encode(frame))
        await self._writer.drain()

    # -- Incoming --

    async def _pump(self, reader: asyncio.StreamReader) -> None:
        while True:
            try:
                line = await reader.readline()
            except (ValueError, OSError) as exc:
                # An overlong line leaves the stream unusable.
                log.warning("Ledger gateway read failed: %s", exc)
                self._connection_lost("lost")
                return
            if not line:
                self._connection_lost("closed")
                return
            msg = _decode(line)
            if msg is None:
                continue
            call_id = msg.get("id")
            if call_id is None and "method" in msg:
                await self._deliver(msg["method"], msg.get("params") or {})
            elif isinstance(call_id, int):
                self._settle(call_id, msg)

    def _settle(self, call_id: int, msg: dict[str, Any]) -> None:
        reply = self._waiting.pop(call_id, None)
        if reply is None or reply.done():
            log.debug("Ignoring reply #%d with no waiting call", call_id)
            return
        if "error" in msg:
            reply.set_exception(GatewayError.from_payload(msg["error"]))
        else:
            reply.set_result(msg.get("result"))

    async def _deliver(self, event: str, params: dict[str, Any]) -> None:
        for handler in tuple(self._subscribers.get(event, ())):
            try:
                outcome = handler(params)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                log.exception("Subscriber for %s failed", event)

    def _connection_lost(self, how: str) -> None:
        """Fail every waiting call; later calls fail straight away."""
        self._lost = how
        waiting, self._waiting = self._waiting, {}
        for reply in waiting.values():
            if not reply.done():
                reply.set_exception(ConnectionError(f"Ledger gateway connection {how}"))

    async def __aenter__(self) -> JsonLineTransport:
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.stop()
