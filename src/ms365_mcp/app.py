"""FastMCP application whose Graph tools come from the endpoint catalog.

Catalog tools are not decorated functions: ``GraphMCP`` lists them from a
``ToolRegistry`` and routes their calls to it.  Hand-written tools (the
sign-in helpers in ``auth_tools``) still use the regular ``@tool`` decorator.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from mcp import types
from mcp.server.fastmcp import Context, FastMCP

from ms365_mcp.auth import AuthManager
from ms365_mcp.graph_client import GraphClient
from ms365_mcp.registry import ToolRegistry

SERVER_NAME = "ms365-mcp"


@dataclass
class AppContext:
    """Lifespan state shared across all MCP tool invocations."""

    graph: GraphClient


@asynccontextmanager
async def app_lifespan(server: GraphMCP) -> AsyncIterator[AppContext]:
    """Create and tear down the Graph client for the MCP session."""
    client = GraphClient(server.auth_manager)
    try:
        yield AppContext(graph=client)
    finally:
        await client.close()


def get_graph(ctx: Context) -> GraphClient:
    """Extract the ``GraphClient`` from the MCP lifespan context."""
    client: GraphClient = ctx.request_context.lifespan_context.graph
    return client


class GraphMCP(FastMCP):
    def __init__(
        self,
        auth_manager: AuthManager,
        registry: ToolRegistry,
        **settings: Any,
    ) -> None:
        self.auth_manager = auth_manager
        self.registry = registry
        super().__init__(SERVER_NAME, lifespan=app_lifespan, **settings)

    async def list_tools(self) -> list[types.Tool]:
        return [*await super().list_tools(), *self.registry.list_tools()]

    async def call_tool(
        self, name: str, arguments: dict[str, Any]
    ) -> Sequence[types.ContentBlock] | dict[str, Any] | types.CallToolResult:
        if name in self.registry:
            return await self.registry.call(name, arguments, get_graph(self.get_context()))
        return await super().call_tool(name, arguments)
