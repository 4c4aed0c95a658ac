"""Derive the delegated permission scopes to request from the endpoint catalog."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from types import MappingProxyType

from ms365_mcp.endpoints import EndpointDescriptor

logger = logging.getLogger(__name__)

# A ReadWrite scope implies its Read counterparts.  When the write scope and
# every listed read scope are all requested, the read scopes are dropped.
# A catalog that only needs the read scopes keeps them: reads are never
# escalated to writes.
SCOPE_HIERARCHY: MappingProxyType[str, tuple[str, ...]] = MappingProxyType(
    {
        "Mail.ReadWrite": ("Mail.Read",),
        "Calendars.ReadWrite": ("Calendars.Read",),
        "Files.ReadWrite": ("Files.Read",),
        "Tasks.ReadWrite": ("Tasks.Read",),
        "Contacts.ReadWrite": ("Contacts.Read",),
    }
)


def build_scopes(
    catalog: Iterable[EndpointDescriptor],
    include_work_account_scopes: bool = False,
) -> set[str]:
    """Collect the scopes needed by *catalog*, collapsing read/write pairs.

    Endpoints that only work for organisational accounts are skipped unless
    *include_work_account_scopes* is set, so personal accounts are never
    asked to consent to scopes they cannot grant.
    """
    scopes: set[str] = set()
    for endpoint in catalog:
        if endpoint.requires_work_account and not include_work_account_scopes:
            continue
        scopes.update(endpoint.scopes)

    for write_scope, read_scopes in SCOPE_HIERARCHY.items():
        if write_scope in scopes and all(scope in scopes for scope in read_scopes):
            scopes.difference_update(read_scopes)

    logger.debug("Built %d scopes (work account: %s)", len(scopes), include_work_account_scopes)
    return scopes


def build_all_scopes(catalog: Iterable[EndpointDescriptor]) -> set[str]:
    return build_scopes(catalog, include_work_account_scopes=True)


def work_account_scopes(catalog: Iterable[EndpointDescriptor]) -> list[str]:
    """Scopes requested only by work-account endpoints, in catalog order."""
    seen: list[str] = []
    for endpoint in catalog:
        if endpoint.requires_work_account:
            seen.extend(s for s in sorted(endpoint.scopes) if s not in seen)
    return seen
