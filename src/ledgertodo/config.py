"""Ledger connection settings.

Settings live in ``~/.config/ledgertodo/ledger.toml`` (or the file named
by ``LEDGERTODO_CONFIG``)::

    endpoint = "tcp://127.0.0.1:8545"
    contract_address = "0x1f421F8D9743C32B31218Dc3266CC14A128E23AA"
    confirmations = 1
    request_timeout = 120

    [functions]
    list = "getUserTodos"
    create = "createTodo"

Every key is optional.  ``[functions]`` maps each controller operation to
the contract function that implements it; unlisted operations keep their
defaults.
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ledgertodo.errors import ConfigError
from ledgertodo.ledger import DEFAULT_FUNCTIONS, ITEM_RECORD_SCHEMA, LedgerSchema
from ledgertodo.paths import DEFAULT_CONFIG_PATH
from ledgertodo.transport import parse_endpoint

log = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "tcp://127.0.0.1:8545"
DEFAULT_CONTRACT_ADDRESS = "0x1f421F8D9743C32B31218Dc3266CC14A128E23AA"


@dataclass(frozen=True)
class LedgerConfig:
    endpoint: str = DEFAULT_ENDPOINT
    contract_address: str = DEFAULT_CONTRACT_ADDRESS
    confirmations: int = 1
    request_timeout: float | None = 120
    functions: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_FUNCTIONS))

    def schema(self) -> LedgerSchema:
        """Build the contract schema the ledger client is constructed with."""
        return LedgerSchema(
            contract_address=self.contract_address,
            functions=dict(self.functions),
            record_schema=ITEM_RECORD_SCHEMA,
            confirmations=self.confirmations,
            timeout=self.request_timeout,
        )


def _read_toml_file(path: Path) -> dict[str, Any]:
    """Read a TOML file; a missing file is an empty document."""
    try:
        with path.open("rb") as handle:
            raw = tomllib.load(handle)
    except FileNotFoundError:
        log.debug("No ledger config at %s, using defaults", path)
        return {}
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Failed to parse {path}: {exc}") from exc
    return raw if isinstance(raw, dict) else {}


def _expect(document: dict[str, Any], key: str, types: tuple[type, ...], default: Any) -> Any:
    value = document.get(key, default)
    # bool is an int subclass; never accept it for numeric settings
    if isinstance(value, bool) and bool not in types:
        raise ConfigError(f"ledger.toml: '{key}' must be {types[0].__name__}")
    if value is not None and not isinstance(value, types):
        raise ConfigError(f"ledger.toml: '{key}' must be {types[0].__name__}")
    return value


def _functions(document: dict[str, Any]) -> dict[str, str]:
    raw = document.get("functions", {})
    if not isinstance(raw, dict):
        raise ConfigError("ledger.toml: [functions] must be a table")
    functions = dict(DEFAULT_FUNCTIONS)
    for operation, name in raw.items():
        if operation not in DEFAULT_FUNCTIONS:
            log.warning("ledger.toml: unknown operation '%s' in [functions]", operation)
            continue
        if not isinstance(name, str) or not name:
            raise ConfigError(f"ledger.toml: function for '{operation}' must be a name")
        functions[operation] = name
    return functions


def load_config(path: Path | str | None = None) -> LedgerConfig:
    """Load ledger settings, falling back to defaults for absent keys.

    Raises :class:`ConfigError` for unparsable files or wrongly-typed values.
    """
    config_path = Path(path).expanduser() if path is not None else DEFAULT_CONFIG_PATH
    document = _read_toml_file(config_path)

    confirmations = _expect(document, "confirmations", (int,), 1)
    if confirmations < 1:
        raise ConfigError("ledger.toml: 'confirmations' must be at least 1")

    endpoint = _expect(document, "endpoint", (str,), DEFAULT_ENDPOINT)
    try:
        parse_endpoint(endpoint)
    except ValueError as exc:
        raise ConfigError(f"ledger.toml: {exc}") from exc

    return LedgerConfig(
        endpoint=endpoint,
        contract_address=_expect(document, "contract_address", (str,), DEFAULT_CONTRACT_ADDRESS),
        confirmations=confirmations,
        request_timeout=_expect(document, "request_timeout", (int, float), 120),
        functions=_functions(document),
    )
