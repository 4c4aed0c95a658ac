"""Parameter-name canonicalization between MCP tools and Microsoft Graph.

Some MCP clients reject ``$`` (and occasionally ``_``) in tool parameter
names, so catalog parameter names are sanitized when the catalog is loaded
and mapped back to their Graph form when a request is built.  The mapping
back only needs the fixed OData system query option table below: every
other Graph parameter name survives sanitizing unchanged.
"""

from __future__ import annotations

import re

# OData system query options that Graph expects with a ``$`` prefix.
ODATA_PARAMS = frozenset(
    {
        "filter",
        "select",
        "expand",
        "orderby",
        "skip",
        "top",
        "count",
        "search",
        "format",
    }
)

_MARKER_RE = re.compile(r"[$_]+")


def sanitize_name(name: str) -> str:
    """Strip ``$`` and ``_`` markers so *name* is safe as a tool parameter."""
    return _MARKER_RE.sub("", name)


def to_graph_name(name: str) -> str:
    """Return the name Graph expects for the tool parameter *name*.

    OData options match case-insensitively and come back lowercased with the
    ``$`` prefix restored (``Filter`` -> ``$filter``).  Anything else is
    passed through verbatim.
    """
    lowered = name.lower()
    if lowered in ODATA_PARAMS:
        return f"${lowered}"
    return name
