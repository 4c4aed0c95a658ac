"""Static catalog of Microsoft Graph endpoints exposed as MCP tools.

The catalog lives in ``endpoints.json`` next to this module.  Each entry
describes one REST operation: its tool alias, HTTP method, path template,
parameters, the delegated permission scopes it needs, and whether it only
works for organisational (work/school) accounts.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any

from ms365_mcp.naming import sanitize_name

logger = logging.getLogger(__name__)

_CATALOG_FILE = "endpoints.json"

# Both placeholder styles appear in Graph path templates.
_BRACE_PLACEHOLDER_RE = re.compile(r"\{([A-Za-z0-9_-]+)\}")
_COLON_PLACEHOLDER_RE = re.compile(r":([A-Za-z0-9]+)")

# Error description the catalog uses to mark endpoints that return raw media.
MEDIA_CONTENT_ERROR = "Retrieved media content"


class CatalogError(Exception):
    """Raised when an endpoint catalog entry is malformed."""


class ParamKind(str, Enum):
    PATH = "Path"
    QUERY = "Query"
    BODY = "Body"
    HEADER = "Header"


@dataclass(frozen=True, slots=True)
class ParameterDef:
    """One tool parameter and where it goes in the Graph request."""

    name: str
    kind: ParamKind
    schema: Mapping[str, Any] = field(default_factory=dict)
    required: bool = False
    description: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ParameterDef:
        try:
            kind = ParamKind(data["type"])
            name = sanitize_name(str(data["name"]))
        except (KeyError, ValueError) as exc:
            raise CatalogError(f"Invalid parameter definition {dict(data)!r}: {exc}") from exc
        return cls(
            name=name,
            kind=kind,
            schema=dict(data.get("schema") or {}),
            required=bool(data.get("required", kind is ParamKind.PATH)),
            description=data.get("description", ""),
        )


def path_placeholders(path: str) -> list[str]:
    """Return placeholder names in *path* in order of first appearance."""
    names: list[str] = []
    for regex in (_BRACE_PLACEHOLDER_RE, _COLON_PLACEHOLDER_RE):
        for match in regex.finditer(path):
            if match.group(1) not in names:
                names.append(match.group(1))
    return names


def _rename_placeholder(path: str, old: str, new: str) -> str:
    # Placeholders must carry the sanitized name the translator substitutes.
    return path.replace(f"{{{old}}}", f"{{{new}}}").replace(f":{old}", f":{new}")


@dataclass(frozen=True, slots=True)
class EndpointDescriptor:
    """Immutable description of one Graph REST operation."""

    alias: str
    method: str
    path: str
    parameters: tuple[ParameterDef, ...] = ()
    scopes: frozenset[str] = frozenset()
    requires_work_account: bool = False
    description: str = ""
    errors: tuple[Mapping[str, Any], ...] = ()

    @property
    def is_read_only(self) -> bool:
        return self.method == "GET"

    @property
    def returns_media(self) -> bool:
        return any(err.get("description") == MEDIA_CONTENT_ERROR for err in self.errors)

    def parameter(self, name: str) -> ParameterDef | None:
        return next((p for p in self.parameters if p.name == name), None)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> EndpointDescriptor:
        """Build a descriptor from a catalog entry.

        Parameter names are sanitized, path placeholders are renamed to
        match, and any placeholder without a matching parameter gets a
        synthesized string Path parameter.
        """
        try:
            alias = data["alias"]
            method = str(data["method"]).upper()
            path = data["path"]
        except KeyError as exc:
            raise CatalogError(f"Endpoint entry missing required key {exc}") from exc

        params = [ParameterDef.from_dict(p) for p in data.get("parameters", [])]
        known = {p.name for p in params}
        for placeholder in path_placeholders(path):
            name = sanitize_name(placeholder)
            if name != placeholder:
                path = _rename_placeholder(path, placeholder, name)
            if name in known:
                continue
            params.append(
                ParameterDef(
                    name=name,
                    kind=ParamKind.PATH,
                    schema={"type": "string", "description": f"Path parameter: {name}"},
                    required=True,
                    description=f"Path parameter: {name}",
                )
            )
            known.add(name)

        return cls(
            alias=alias,
            method=method,
            path=path,
            parameters=tuple(params),
            scopes=frozenset(data.get("scopes", [])),
            requires_work_account=bool(data.get("requiresWorkAccount", False)),
            description=data.get("description", ""),
            errors=tuple(data.get("errors", [])),
        )


def parse_catalog(entries: list[Mapping[str, Any]]) -> tuple[EndpointDescriptor, ...]:
    """Build descriptors from raw catalog entries, rejecting duplicate aliases."""
    descriptors = tuple(EndpointDescriptor.from_dict(entry) for entry in entries)
    seen: set[str] = set()
    for descriptor in descriptors:
        if descriptor.alias in seen:
            raise CatalogError(f"Duplicate endpoint alias: {descriptor.alias}")
        seen.add(descriptor.alias)
    return descriptors


@lru_cache(maxsize=1)
def load_catalog() -> tuple[EndpointDescriptor, ...]:
    """Load the bundled endpoint catalog (once per process)."""
    raw = Path(__file__).with_name(_CATALOG_FILE).read_text(encoding="utf-8")
    catalog = parse_catalog(json.loads(raw))
    logger.debug("Loaded %d endpoints from %s", len(catalog), _CATALOG_FILE)
    return catalog
