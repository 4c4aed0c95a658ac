"""Follow ``@odata.nextLink`` cursors and merge every page into one response."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import replace
from typing import Any, Protocol
from urllib.parse import parse_qsl, urlsplit

from ms365_mcp.graph_client import GraphRequest, GraphResponse

logger = logging.getLogger(__name__)

# Upper bound on follow-up requests for a single invocation.
MAX_PAGES = 100

NEXT_LINK = "@odata.nextLink"
COUNT = "@odata.count"

# nextLink URLs are absolute; the transport already prefixes the API version.
_VERSION_PREFIX_RE = re.compile(r"^/(v1\.0|beta)(?=/)")


class Transport(Protocol):
    async def send(self, request: GraphRequest) -> GraphResponse: ...


def next_page_request(request: GraphRequest, next_link: str) -> GraphRequest:
    """Build the follow-up request for *next_link*, reusing method and headers."""
    url = urlsplit(next_link)
    return replace(
        request,
        path=_VERSION_PREFIX_RE.sub("", url.path),
        query=dict(parse_qsl(url.query, keep_blank_values=True)),
        headers=dict(request.headers),
    )


async def fetch_all_pages(
    transport: Transport,
    request: GraphRequest,
    response: GraphResponse,
    max_pages: int = MAX_PAGES,
) -> GraphResponse:
    """Replace the collection in *response* with every page's items.

    *response* is updated in place and returned.  If a follow-up page fails
    the items gathered so far are still returned; the failing cursor is kept
    in ``@odata.nextLink`` and ``metadata["paginationIncomplete"]`` is set so
    the caller can tell the collection is partial.
    """
    if not response.content:
        return response

    try:
        combined: dict[str, Any] = json.loads(response.content[0].text)
    except ValueError as exc:
        logger.error("Error during pagination: first page is not JSON (%s)", exc)
        return response
    if not isinstance(combined, dict):
        return response

    value = combined.get("value")
    if value is None:
        value = []
    elif not isinstance(value, list):
        # A property read such as {"value": "Pacific Standard Time"}.
        logger.debug("Response is not a collection, skipping pagination")
        return response

    items: list[Any] = list(value)
    next_link = combined.get(NEXT_LINK)
    fetched = 0
    failed = False

    while next_link:
        if fetched >= max_pages:
            logger.warning("Reached maximum page limit (%d) for pagination", max_pages)
            break
        logger.info("Fetching page %d from: %s", fetched + 2, next_link)
        try:
            page = await transport.send(next_page_request(request, next_link))
            if not page.content:
                next_link = None
                break
            data = json.loads(page.content[0].text)
        except Exception as exc:
            # Items gathered so far are kept; the marker below records the gap.
            logger.error("Error during pagination: %s", exc)
            failed = True
            break
        fetched += 1
        value = data.get("value") if isinstance(data, dict) else None
        if isinstance(value, list):
            items.extend(value)
        next_link = data.get(NEXT_LINK) if isinstance(data, dict) else None

    combined["value"] = items
    if COUNT in combined:
        combined[COUNT] = len(items)
    if failed:
        combined[NEXT_LINK] = next_link
        response.metadata["paginationIncomplete"] = True
    else:
        combined.pop(NEXT_LINK, None)
    response.content[0].text = json.dumps(combined)

    logger.info(
        "Pagination complete: collected %d items across %d pages", len(items), fetched + 1
    )
    return response
