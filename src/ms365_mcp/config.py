"""Runtime configuration from the environment and an optional ``.env`` file.

Values are read from the file named by ``DOTENV_PATH`` (default ``.env`` in
the current directory) and then overridden by the process environment, so a
variable exported by the MCP host always wins over the file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import dotenv_values

# Public client registration used when no app of your own is configured.
DEFAULT_CLIENT_ID = "084a3e9f-a9f4-43f7-89f9-d229cf97853e"
DEFAULT_TENANT_ID = "common"

CONFIG_DIR = Path.home() / ".ms365-mcp"


@dataclass(frozen=True, slots=True)
class Settings:
    client_id: str = DEFAULT_CLIENT_ID
    tenant_id: str = DEFAULT_TENANT_ID
    oauth_token: str | None = None
    log_level: str = "INFO"
    log_dir: Path = CONFIG_DIR / "logs"

    @property
    def authority(self) -> str:
        return f"https://login.microsoftonline.com/{self.tenant_id}"


def _env() -> dict[str, str]:
    dotenv_path = os.environ.get("DOTENV_PATH", ".env")
    values = {k: v for k, v in dotenv_values(dotenv_path).items() if v is not None}
    values.update(os.environ)
    return values


def load_settings() -> Settings:
    """Build ``Settings`` from ``.env`` and ``MS365_MCP_*`` environment variables."""
    env = _env()
    log_dir = env.get("MS365_MCP_LOG_DIR")
    return Settings(
        client_id=env.get("MS365_MCP_CLIENT_ID") or DEFAULT_CLIENT_ID,
        tenant_id=env.get("MS365_MCP_TENANT_ID") or DEFAULT_TENANT_ID,
        oauth_token=env.get("MS365_MCP_OAUTH_TOKEN") or None,
        log_level=(env.get("MS365_MCP_LOG_LEVEL") or "INFO").upper(),
        log_dir=Path(log_dir).expanduser() if log_dir else CONFIG_DIR / "logs",
    )
