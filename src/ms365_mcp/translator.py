"""Translate a tool invocation into a concrete Graph request.

Translation never fails.  A missing path value leaves its placeholder in the
path and an unparseable body is sent as a raw string; Graph's own error
response then tells the caller what went wrong.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

from ms365_mcp.endpoints import EndpointDescriptor, ParamKind
from ms365_mcp.graph_client import GraphRequest
from ms365_mcp.naming import to_graph_name

logger = logging.getLogger(__name__)

# Pagination control understood by this server, never sent to Graph.
FETCH_ALL_PAGES = "fetchAllPages"

# Unnamed body argument accepted when the endpoint declares no Body parameter.
LEGACY_BODY_PARAM = "body"


def supports_paging(endpoint: EndpointDescriptor) -> bool:
    """Whether *endpoint* is offered the ``fetchAllPages`` control."""
    return endpoint.method == "GET" and "/" in endpoint.path


def _stringify(value: Any) -> str:
    # Graph expects JSON-style booleans ($count=true).
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _parse_body(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except ValueError:
        return value


def _substitute(path: str, name: str, value: Any) -> str:
    encoded = quote(_stringify(value), safe="")
    return path.replace(f"{{{name}}}", encoded).replace(f":{name}", encoded)


def translate(endpoint: EndpointDescriptor, arguments: Mapping[str, Any]) -> GraphRequest:
    """Build the ``GraphRequest`` for calling *endpoint* with *arguments*."""
    path = endpoint.path
    query: dict[str, str] = {}
    headers: dict[str, str] = {}
    body: Any = None

    for name, value in arguments.items():
        if name == FETCH_ALL_PAGES:
            continue

        param = endpoint.parameter(name)
        if param is None:
            if name == LEGACY_BODY_PARAM:
                body = _parse_body(value)
                logger.debug("Set legacy body param for %s", endpoint.alias)
            else:
                logger.debug("Ignoring unknown parameter %s for %s", name, endpoint.alias)
            continue

        if param.kind is ParamKind.PATH:
            path = _substitute(path, name, value)
        elif param.kind is ParamKind.QUERY:
            query[to_graph_name(name)] = _stringify(value)
        elif param.kind is ParamKind.BODY:
            body = _parse_body(value)
        elif param.kind is ParamKind.HEADER:
            headers[to_graph_name(name)] = _stringify(value)

    return GraphRequest(
        method=endpoint.method,
        path=path,
        query=query,
        headers=headers,
        body=body,
        raw=endpoint.returns_media or path.endswith("/content"),
    )
