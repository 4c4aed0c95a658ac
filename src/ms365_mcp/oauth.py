"""Bearer-token verification for the Streamable HTTP transport.

In HTTP mode the MCP client signs in with Microsoft itself and sends the
resulting Graph access token with every request.  A token is accepted when
Graph accepts it for ``/me``; it then becomes the token used for Graph calls.
"""

from __future__ import annotations

import logging

import httpx
from mcp.server.auth.provider import AccessToken
from mcp.server.auth.settings import AuthSettings

from ms365_mcp.auth import GRAPH_ME_URL, AuthManager
from ms365_mcp.config import Settings

logger = logging.getLogger(__name__)


class GraphTokenVerifier:
    """``TokenVerifier`` that asks Graph whether a bearer token is valid."""

    def __init__(
        self,
        auth_manager: AuthManager,
        client_id: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._auth_manager = auth_manager
        self._client_id = client_id
        self._transport = transport

    async def verify_token(self, token: str) -> AccessToken | None:
        try:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                resp = await client.get(
                    GRAPH_ME_URL, headers={"Authorization": f"Bearer {token}"}
                )
        except httpx.HTTPError as exc:
            logger.error("OAuth token verification error: %s", exc)
            return None

        if resp.is_error:
            logger.warning("Token verification failed: %d", resp.status_code)
            return None

        try:
            user = resp.json()
        except ValueError as exc:
            logger.error("OAuth token verification returned a non-JSON body: %s", exc)
            return None
        logger.info("OAuth token verified for user: %s", user.get("userPrincipalName"))
        self._auth_manager.set_oauth_token(token)
        return AccessToken(token=token, client_id=self._client_id, scopes=[])


def build_auth_settings(settings: Settings, port: int) -> AuthSettings:
    return AuthSettings(
        issuer_url=f"{settings.authority}/v2.0",
        resource_server_url=f"http://localhost:{port}",
        required_scopes=[],
    )
