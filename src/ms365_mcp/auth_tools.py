"""MCP tools for signing in and out from inside the chat.

When running over stdio the user never sees the server's terminal, so the
device code sign-in message is returned as the tool result and the flow is
completed in the background while the user signs in.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ms365_mcp.app import GraphMCP
from ms365_mcp.auth import AuthError, AuthManager

logger = logging.getLogger(__name__)

# Keeps background sign-in tasks alive until they finish.
_pending_logins: set[asyncio.Task[str]] = set()


def _finish_login(task: asyncio.Task[str]) -> None:
    _pending_logins.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background device code login failed: %s", exc)
    else:
        logger.info("Background device code login completed")


async def start_login(auth: AuthManager, force: bool = False) -> dict[str, Any]:
    """Start a device code sign-in unless a working session already exists."""
    if not force:
        status = await asyncio.to_thread(auth.test_login)
        if status["success"]:
            return {"status": "Already logged in", **status}

    try:
        flow = await asyncio.to_thread(auth.start_device_flow)
    except AuthError as exc:
        return {"error": str(exc)}

    task = asyncio.create_task(asyncio.to_thread(auth.complete_device_flow, flow))
    _pending_logins.add(task)
    task.add_done_callback(_finish_login)
    logger.info("Device code login initiated")
    return {
        "message": flow["message"],
        "url": flow.get("verification_uri", "https://microsoft.com/devicelogin"),
        "userCode": flow["user_code"],
        "next": 'After login run the "verify-login" tool',
    }


def register_auth_tools(app: GraphMCP) -> None:
    auth = app.auth_manager

    @app.tool(name="login")
    async def login(force: bool = False) -> dict[str, Any]:
        """Sign in to Microsoft 365 with a device code.

        Returns a URL and a short code.  Ask the user to open the URL, enter
        the code, then call verify-login.  Set force to start a new sign-in
        even when a session exists.
        """
        return await start_login(auth, force=force)

    @app.tool(name="verify-login")
    async def verify_login() -> dict[str, Any]:
        """Check whether the current Microsoft 365 session works."""
        return await asyncio.to_thread(auth.test_login)

    @app.tool(name="logout")
    async def logout() -> dict[str, Any]:
        """Sign out and remove cached Microsoft 365 credentials."""
        await asyncio.to_thread(auth.logout)
        return {"message": "Logged out successfully"}
