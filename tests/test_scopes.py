"""Tests for scope aggregation."""

from __future__ import annotations

from conftest import make_endpoint

from ms365_mcp.endpoints import load_catalog
from ms365_mcp.scopes import (
    SCOPE_HIERARCHY,
    build_all_scopes,
    build_scopes,
    work_account_scopes,
)


def _endpoint(alias, scopes, work=False):
    return make_endpoint(alias=alias, scopes=scopes, requiresWorkAccount=work)


class TestBuildScopes:
    def test_read_only_catalog_keeps_read_scope(self):
        scopes = build_scopes([_endpoint("a", ["Mail.Read"])])
        assert scopes == {"Mail.Read"}
        assert "Mail.ReadWrite" not in scopes

    def test_read_and_write_collapse_to_write(self):
        catalog = [_endpoint("a", ["Mail.Read"]), _endpoint("b", ["Mail.ReadWrite"])]
        scopes = build_scopes(catalog)
        assert scopes == {"Mail.ReadWrite"}

    def test_write_only_left_alone(self):
        assert build_scopes([_endpoint("a", ["Files.ReadWrite"])]) == {"Files.ReadWrite"}

    def test_unrelated_scopes_kept(self):
        catalog = [_endpoint("a", ["User.Read", "Mail.Send"])]
        assert build_scopes(catalog) == {"User.Read", "Mail.Send"}

    def test_work_account_endpoints_skipped_by_default(self):
        catalog = [_endpoint("a", ["User.Read"]), _endpoint("b", ["Chat.Read"], work=True)]
        assert build_scopes(catalog) == {"User.Read"}

    def test_work_account_endpoints_included_on_request(self):
        catalog = [_endpoint("a", ["User.Read"]), _endpoint("b", ["Chat.Read"], work=True)]
        assert build_scopes(catalog, include_work_account_scopes=True) == {
            "User.Read",
            "Chat.Read",
        }
        assert build_all_scopes(catalog) == {"User.Read", "Chat.Read"}

    def test_empty_catalog(self):
        assert build_scopes([]) == set()

    def test_bundled_catalog_has_no_superseded_reads(self):
        scopes = build_all_scopes(load_catalog())
        for write_scope, read_scopes in SCOPE_HIERARCHY.items():
            if write_scope in scopes:
                assert not scopes.intersection(read_scopes)


class TestWorkAccountScopes:
    def test_only_work_scopes(self):
        catalog = [
            _endpoint("a", ["User.Read"]),
            _endpoint("b", ["Chat.Read"], work=True),
            _endpoint("c", ["Chat.Read", "Team.ReadBasic.All"], work=True),
        ]
        assert work_account_scopes(catalog) == ["Chat.Read", "Team.ReadBasic.All"]
