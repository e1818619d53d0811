"""Canonical filesystem paths for ledgertodo configuration."""

from __future__ import annotations

import os
from pathlib import Path

LEDGERTODO_CONFIG_DIR = Path.home() / ".config" / "ledgertodo"

_env_config = os.environ.get("LEDGERTODO_CONFIG")
DEFAULT_CONFIG_PATH = (
    Path(_env_config).expanduser() if _env_config else LEDGERTODO_CONFIG_DIR / "ledger.toml"
)
