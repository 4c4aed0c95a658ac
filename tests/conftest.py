"""Shared test fixtures."""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ms365_mcp.endpoints import EndpointDescriptor
from ms365_mcp.graph_client import GraphResponse, TextBlock


def make_endpoint(
    alias: str = "list-things",
    method: str = "GET",
    path: str = "/me/things",
    parameters: list[dict[str, Any]] | None = None,
    **extra: Any,
) -> EndpointDescriptor:
    """Build a descriptor the same way the catalog loader does."""
    return EndpointDescriptor.from_dict(
        {"alias": alias, "method": method, "path": path, "parameters": parameters or [], **extra}
    )


def json_response(payload: Any) -> GraphResponse:
    return GraphResponse(content=[TextBlock(json.dumps(payload))])


@pytest.fixture
def transport():
    """A transport whose ``send`` is an AsyncMock returning ``{"value": []}``."""
    fake = MagicMock()
    fake.send = AsyncMock(return_value=json_response({"value": []}))
    return fake


@pytest.fixture
def mock_auth():
    """An AuthManager stand-in that always has a token."""
    auth = MagicMock()
    auth.get_token.return_value = "fake-token"
    auth.test_login.return_value = {"success": True, "message": "Login successful"}
    return auth


@pytest.fixture(autouse=True)
def isolate_token_cache(tmp_path):
    """Keep tests away from the real keychain and ~/.ms365-mcp.

    Yields the mocked ``keyring`` module so tests can make it fail.
    """
    cache_dir = tmp_path / "ms365-mcp"
    with (
        patch("ms365_mcp.auth.CACHE_DIR", cache_dir),
        patch("ms365_mcp.auth.CACHE_FILE", cache_dir / "token_cache.json"),
        patch("ms365_mcp.auth.keyring") as mock_keyring,
    ):
        mock_keyring.get_password.return_value = None
        yield mock_keyring
