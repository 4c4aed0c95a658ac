"""MCP server entry point exposing Microsoft Graph endpoints as tools.

Usage:
    ms365-mcp                       # serve over stdio
    ms365-mcp --login               # sign in with a device code, then exit
    ms365-mcp --read-only --enabled-tools "mail|calendar"
    ms365-mcp --http 3000           # Streamable HTTP with bearer-token auth
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence

import click

from ms365_mcp.app import GraphMCP
from ms365_mcp.auth import AuthError, AuthManager
from ms365_mcp.auth_tools import register_auth_tools
from ms365_mcp.config import Settings, load_settings
from ms365_mcp.endpoints import EndpointDescriptor, load_catalog
from ms365_mcp.logging_config import setup_logging
from ms365_mcp.oauth import GraphTokenVerifier, build_auth_settings
from ms365_mcp.registry import ToolRegistry
from ms365_mcp.scopes import build_all_scopes, build_scopes, work_account_scopes

logger = logging.getLogger(__name__)


def _detect_work_scopes(settings: Settings, catalog: Sequence[EndpointDescriptor]) -> bool:
    """Return True if the cached account already granted work-account scopes."""
    probe = AuthManager(settings, build_scopes(catalog))
    try:
        has_work = probe.has_work_account_permissions(work_account_scopes(catalog))
    except (ValueError, OSError) as exc:
        # MSAL raises ValueError for a bad authority and requests' errors
        # are OSErrors; either way we just don't ask for the extra scopes.
        logger.warning("Could not check work account permissions: %s", exc)
        return False
    if has_work:
        logger.info("Detected existing work account permissions, including work scopes")
    return has_work


def create_app(
    settings: Settings,
    auth: AuthManager,
    registry: ToolRegistry,
    http_port: int | None = None,
) -> GraphMCP:
    """Build the MCP server for stdio (with sign-in tools) or Streamable HTTP."""
    if http_port is None:
        app = GraphMCP(auth, registry)
        register_auth_tools(app)
        return app
    return GraphMCP(
        auth,
        registry,
        port=http_port,
        token_verifier=GraphTokenVerifier(auth, settings.client_id),
        auth=build_auth_settings(settings, http_port),
    )


def _echo_json(payload: object) -> None:
    click.echo(json.dumps(payload))


@click.command()
@click.option("--login", "do_login", is_flag=True, help="Sign in with a device code and exit")
@click.option("--logout", "do_logout", is_flag=True, help="Remove cached credentials and exit")
@click.option("--verify-login", is_flag=True, help="Check the current sign-in and exit")
@click.option(
    "--read-only",
    is_flag=True,
    envvar="MS365_MCP_READ_ONLY",
    help="Only register GET endpoints",
)
@click.option(
    "--enabled-tools",
    envvar="MS365_MCP_ENABLED_TOOLS",
    default=None,
    metavar="PATTERN",
    help="Case-insensitive regex; only tools whose name matches are registered",
)
@click.option(
    "--http",
    "http_port",
    type=int,
    default=None,
    metavar="PORT",
    help="Serve Streamable HTTP on PORT instead of stdio",
)
@click.option(
    "--force-work-scopes",
    is_flag=True,
    help="Request work/school account scopes (Teams, SharePoint) up front; "
    "with --login, consent to them now",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def main(
    do_login: bool,
    do_logout: bool,
    verify_login: bool,
    read_only: bool,
    enabled_tools: str | None,
    http_port: int | None,
    force_work_scopes: bool,
    verbose: bool,
) -> None:
    """Microsoft 365 MCP server backed by Microsoft Graph."""
    settings = load_settings()
    setup_logging("DEBUG" if verbose else settings.log_level, settings.log_dir)
    catalog = load_catalog()

    include_work_scopes = force_work_scopes
    if not include_work_scopes and not settings.oauth_token:
        include_work_scopes = _detect_work_scopes(settings, catalog)

    auth = AuthManager(settings, build_scopes(catalog, include_work_scopes))

    try:
        if do_login:
            if force_work_scopes:
                if not auth.expand_to_work_account_scopes(build_all_scopes(catalog), click.echo):
                    raise click.ClickException("Could not grant work account permissions")
            else:
                auth.acquire_token_by_device_code(click.echo)
            logger.info("Login completed, testing connection with Graph API...")
            _echo_json(auth.test_login())
            return
        if verify_login:
            _echo_json(auth.test_login())
            return
        if do_logout:
            auth.logout()
            _echo_json({"message": "Logged out successfully"})
            return
    except AuthError as exc:
        raise click.ClickException(str(exc)) from exc

    registry = ToolRegistry()
    registry.register_catalog(catalog, read_only=read_only, enabled_tools=enabled_tools)

    app = create_app(settings, auth, registry, http_port)
    if http_port is None:
        app.run(transport="stdio")
    else:
        logger.info("Serving Streamable HTTP on port %d", http_port)
        app.run(transport="streamable-http")


if __name__ == "__main__":
    main()
