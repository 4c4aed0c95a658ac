"""Tests for the tool registry and shared dispatch."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import json_response, make_endpoint

from ms365_mcp.endpoints import load_catalog
from ms365_mcp.graph_client import GraphApiError, GraphResponse, TextBlock
from ms365_mcp.registry import ToolRegistry, build_input_schema

_BASE = "https://graph.microsoft.com/v1.0"


def _mixed_catalog():
    return [
        make_endpoint(alias="list-mail-messages", method="GET", path="/me/messages"),
        make_endpoint(alias="get-mail-message", method="GET", path="/me/messages/{id}"),
        make_endpoint(alias="list-calendar-events", method="GET", path="/me/events"),
        make_endpoint(alias="send-mail", method="POST", path="/me/sendMail"),
        make_endpoint(alias="delete-mail-message", method="DELETE", path="/me/messages/{id}"),
    ]


class TestRegisterCatalog:
    def test_registers_everything_by_default(self):
        registry = ToolRegistry()
        assert registry.register_catalog(_mixed_catalog()) == 5
        assert len(registry) == 5

    def test_read_only_keeps_gets(self):
        registry = ToolRegistry()
        assert registry.register_catalog(_mixed_catalog(), read_only=True) == 3
        assert "send-mail" not in registry
        assert "delete-mail-message" not in registry

    def test_filter_is_case_insensitive_search(self):
        registry = ToolRegistry()
        registry.register_catalog(_mixed_catalog(), enabled_tools="MAIL")
        assert sorted(registry.names) == [
            "delete-mail-message",
            "get-mail-message",
            "list-mail-messages",
            "send-mail",
        ]

    def test_filter_and_read_only_combine(self):
        registry = ToolRegistry()
        registry.register_catalog(_mixed_catalog(), read_only=True, enabled_tools="mail")
        assert sorted(registry.names) == ["get-mail-message", "list-mail-messages"]

    def test_invalid_filter_registers_everything(self):
        registry = ToolRegistry()
        assert registry.register_catalog(_mixed_catalog(), enabled_tools="[unclosed") == 5

    def test_bundled_catalog_registers(self):
        registry = ToolRegistry()
        assert registry.register_catalog(load_catalog()) == len(load_catalog())


class TestToolDefinitions:
    def test_annotations(self):
        registry = ToolRegistry()
        registry.register_catalog(_mixed_catalog())
        tools = {tool.name: tool for tool in registry.list_tools()}
        assert tools["list-mail-messages"].annotations.readOnlyHint is True
        assert tools["send-mail"].annotations.readOnlyHint is False
        assert tools["send-mail"].annotations.title == "send-mail"

    def test_schema_has_parameters_and_required(self):
        endpoint = make_endpoint(
            path="/me/messages/{message-id}",
            parameters=[{"name": "$select", "type": "Query", "schema": {"type": "string"}}],
        )
        schema = build_input_schema(endpoint)
        assert schema["type"] == "object"
        assert set(schema["properties"]) == {"select", "message-id", "fetchAllPages"}
        assert schema["required"] == ["message-id"]
        assert schema["properties"]["fetchAllPages"]["type"] == "boolean"

    def test_no_paging_control_for_writes(self):
        endpoint = make_endpoint(method="POST", path="/me/sendMail")
        schema = build_input_schema(endpoint)
        assert "fetchAllPages" not in schema["properties"]
        assert "required" not in schema

    def test_body_accepts_string_or_object(self):
        endpoint = make_endpoint(
            method="POST",
            parameters=[{"name": "body", "type": "Body", "schema": {"type": "object"}}],
        )
        body_schema = build_input_schema(endpoint)["properties"]["body"]
        assert body_schema == {"anyOf": [{"type": "string"}, {"type": "object"}]}

    def test_parameter_description_carried(self):
        endpoint = make_endpoint(
            parameters=[{"name": "search", "type": "Query", "description": "Search text"}]
        )
        props = build_input_schema(endpoint)["properties"]
        assert props["search"] == {"description": "Search text"}


class TestCall:
    @pytest.fixture
    def registry(self):
        registry = ToolRegistry()
        registry.register_catalog(_mixed_catalog())
        return registry

    async def test_success_returns_graph_text(self, registry, transport):
        transport.send.return_value = json_response({"value": [{"id": "1"}]})

        result = await registry.call("list-mail-messages", {}, transport)

        assert result.isError is False
        assert json.loads(result.content[0].text) == {"value": [{"id": "1"}]}
        sent = transport.send.await_args.args[0]
        assert sent.method == "GET"
        assert sent.path == "/me/messages"

    async def test_path_argument_reaches_request(self, registry, transport):
        await registry.call("get-mail-message", {"id": "AB/C"}, transport)
        assert transport.send.await_args.args[0].path == "/me/messages/AB%2FC"

    async def test_transport_error_becomes_error_result(self, registry, transport):
        transport.send.side_effect = GraphApiError(status_code=404, message="Not found")

        result = await registry.call("get-mail-message", {"id": "x"}, transport)

        assert result.isError is True
        assert len(result.content) == 1
        payload = json.loads(result.content[0].text)
        assert payload["error"].startswith("Error in tool get-mail-message:")
        assert "Not found" in payload["error"]

    async def test_unknown_tool(self, registry, transport):
        result = await registry.call("no-such-tool", {}, transport)
        assert result.isError is True
        assert json.loads(result.content[0].text) == {"error": "Unknown tool: no-such-tool"}
        transport.send.assert_not_awaited()

    async def test_none_arguments(self, registry, transport):
        result = await registry.call("list-calendar-events", None, transport)
        assert result.isError is False

    async def test_fetch_all_pages_follows_links(self, registry):
        fake = MagicMock()
        fake.send = AsyncMock(
            side_effect=[
                json_response(
                    {"value": [1], "@odata.nextLink": f"{_BASE}/me/messages?$skip=1"}
                ),
                json_response({"value": [2]}),
            ]
        )

        result = await registry.call("list-mail-messages", {"fetchAllPages": True}, fake)

        assert json.loads(result.content[0].text) == {"value": [1, 2]}
        assert fake.send.await_count == 2
        assert fake.send.await_args_list[0].args[0].query == {}

    async def test_without_fetch_all_pages_single_request(self, registry):
        fake = MagicMock()
        fake.send = AsyncMock(
            return_value=json_response(
                {"value": [1], "@odata.nextLink": f"{_BASE}/me/messages?$skip=1"}
            )
        )
        result = await registry.call("list-mail-messages", {}, fake)
        assert fake.send.await_count == 1
        assert "@odata.nextLink" in json.loads(result.content[0].text)

    async def test_media_metadata_exposed(self, registry, transport):
        transport.send.return_value = GraphResponse(
            content=[TextBlock("aGVsbG8=")],
            metadata={"contentType": "image/png", "encoding": "base64"},
        )
        result = await registry.call("list-mail-messages", {}, transport)
        assert result.meta == {"contentType": "image/png", "encoding": "base64"}

    async def test_plain_response_has_no_meta(self, registry, transport):
        result = await registry.call("list-mail-messages", {}, transport)
        assert result.meta is None
