"""Register catalog endpoints as MCP tools and dispatch calls to Graph.

Every endpoint shares one dispatch path: the registry maps a tool name to
its ``EndpointDescriptor`` and ``dispatch`` does the rest (translate, send,
paginate).  ``ToolRegistry.call`` never raises; failures come back as an
error result the MCP client can show to the model.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from mcp import types

from ms365_mcp.endpoints import EndpointDescriptor, ParamKind
from ms365_mcp.graph_client import GraphResponse
from ms365_mcp.pagination import Transport, fetch_all_pages
from ms365_mcp.translator import FETCH_ALL_PAGES, supports_paging, translate

logger = logging.getLogger(__name__)

_FETCH_ALL_PAGES_SCHEMA = {
    "type": "boolean",
    "description": "Automatically fetch all pages of results",
}

_RESPONSE_PREVIEW_CHARS = 500


@dataclass(frozen=True, slots=True)
class RegisteredTool:
    endpoint: EndpointDescriptor
    tool: types.Tool


def build_input_schema(endpoint: EndpointDescriptor) -> dict[str, Any]:
    """JSON Schema for the arguments of *endpoint*'s tool."""
    properties: dict[str, Any] = {}
    required: list[str] = []
    for param in endpoint.parameters:
        schema = dict(param.schema)
        if param.description and "description" not in schema:
            schema["description"] = param.description
        if param.kind is ParamKind.BODY and param.schema:
            # Clients may send the body already serialized.
            schema = {"anyOf": [{"type": "string"}, schema]}
        properties[param.name] = schema
        if param.required:
            required.append(param.name)

    if supports_paging(endpoint):
        properties[FETCH_ALL_PAGES] = dict(_FETCH_ALL_PAGES_SCHEMA)

    input_schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        input_schema["required"] = required
    return input_schema


def _compile_filter(pattern: str | None) -> re.Pattern[str] | None:
    if not pattern:
        return None
    try:
        regex = re.compile(pattern, re.IGNORECASE)
    except re.error as exc:
        logger.error("Invalid tool filter regex pattern: %s (%s). Ignoring filter.", pattern, exc)
        return None
    logger.info("Tool filtering enabled with pattern: %s", pattern)
    return regex


def error_result(message: str) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=json.dumps({"error": message}))],
        isError=True,
    )


def to_call_tool_result(response: GraphResponse) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=block.text) for block in response.content],
        isError=response.is_error,
        _meta=response.metadata or None,
    )


def _log_response(alias: str, response: GraphResponse) -> None:
    if not response.content:
        return
    text = response.content[0].text
    logger.info("Response size for %s: %d characters", alias, len(text))
    if logger.isEnabledFor(logging.DEBUG):
        preview = text[:_RESPONSE_PREVIEW_CHARS]
        ellipsis = "..." if len(text) > _RESPONSE_PREVIEW_CHARS else ""
        logger.debug("Response preview: %s%s", preview, ellipsis)


async def dispatch(
    endpoint: EndpointDescriptor,
    arguments: Mapping[str, Any],
    transport: Transport,
) -> GraphResponse:
    """Call *endpoint* with *arguments*; exceptions propagate to the caller."""
    request = translate(endpoint, arguments)
    logger.info("Making graph request: %s %s", request.method, request.target)
    response = await transport.send(request)

    if arguments.get(FETCH_ALL_PAGES) is True and response.content:
        response = await fetch_all_pages(transport, request, response)

    _log_response(endpoint.alias, response)
    return response


class ToolRegistry:
    """Name-to-endpoint table behind the MCP tool surface."""

    def __init__(self) -> None:
        self._tools: dict[str, RegisteredTool] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def register(self, endpoint: EndpointDescriptor) -> None:
        tool = types.Tool(
            name=endpoint.alias,
            description=endpoint.description,
            inputSchema=build_input_schema(endpoint),
            annotations=types.ToolAnnotations(
                title=endpoint.alias,
                readOnlyHint=endpoint.is_read_only,
            ),
        )
        self._tools[endpoint.alias] = RegisteredTool(endpoint=endpoint, tool=tool)

    def register_catalog(
        self,
        catalog: Iterable[EndpointDescriptor],
        read_only: bool = False,
        enabled_tools: str | None = None,
    ) -> int:
        """Register every endpoint that passes the read-only and name filters.

        An invalid *enabled_tools* pattern is logged and ignored, so every
        endpoint is registered rather than failing startup.

        Returns:
            The number of tools registered by this call.
        """
        regex = _compile_filter(enabled_tools)
        count = 0
        for endpoint in catalog:
            if read_only and endpoint.method != "GET":
                logger.info("Skipping write operation %s in read-only mode", endpoint.alias)
                continue
            if regex is not None and not regex.search(endpoint.alias):
                logger.info("Skipping tool %s - doesn't match filter pattern", endpoint.alias)
                continue
            self.register(endpoint)
            count += 1
        logger.info("Registered %d Graph tools", count)
        return count

    def list_tools(self) -> list[types.Tool]:
        return [entry.tool for entry in self._tools.values()]

    async def call(
        self,
        name: str,
        arguments: Mapping[str, Any] | None,
        transport: Transport,
    ) -> types.CallToolResult:
        """Invoke tool *name*; never raises."""
        entry = self._tools.get(name)
        if entry is None:
            return error_result(f"Unknown tool: {name}")

        arguments = arguments or {}
        logger.info("Tool %s called", name)
        logger.debug("Tool %s params: %s", name, json.dumps(arguments, default=str))
        try:
            response = await dispatch(entry.endpoint, arguments, transport)
            return to_call_tool_result(response)
        except Exception as exc:
            logger.error("Error in tool %s: %s", name, exc)
            return error_result(f"Error in tool {name}: {exc}")
