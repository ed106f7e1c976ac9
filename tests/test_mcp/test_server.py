"""Tests for tool registration and routing in the MCP server.

Verifies:
- All tools appear in handle_list_tools (and read-only filtering)
- Calls route through the ToolRegistry to the engine
- ping reports the Drive account or a connection failure
- Unknown tools and an uninitialised server

Handler behaviour is tested in tests/test_mcp/tools/test_sync.py; this
file only covers the server layer.
"""

from unittest.mock import MagicMock

import pytest

from padsync.errors import AuthExpiredError
from padsync.mcp.server import (
    PING_SPEC,
    build_parser,
    get_engine,
    handle_call_tool,
    handle_list_tools,
    set_engine,
    set_registry,
)
from padsync.mcp.tools import ALL_SPECS
from padsync.mcp.tools.registry import ToolRegistry


@pytest.fixture
def server_engine(engine):
    set_registry(ToolRegistry([PING_SPEC] + ALL_SPECS))
    set_engine(engine)
    yield engine
    set_engine(None)
    set_registry(None)


class TestToolListing:
    async def test_all_tools(self, server_engine):
        names = [t.name for t in await handle_list_tools()]
        assert names == [
            "ping",
            "profile_list",
            "profile_sync",
            "profile_sync_status",
            "profile_sync_resolve",
        ]

    async def test_read_only(self):
        set_registry(ToolRegistry([PING_SPEC] + ALL_SPECS, read_only=True))
        try:
            names = {t.name for t in await handle_list_tools()}
        finally:
            set_registry(None)
        assert names == {"ping", "profile_list", "profile_sync_status"}


class TestCallRouting:
    async def test_ping(self, server_engine):
        result = await handle_call_tool("ping", {})
        assert not result.isError
        assert "tester@example.com" in result.content[0].text

    async def test_ping_failure(self, server_engine, drive):
        drive.validate_connection = MagicMock(side_effect=AuthExpiredError("expired"))

        result = await handle_call_tool("ping", None)

        assert result.isError
        assert "Google Drive connection failed: expired" in result.content[0].text

    async def test_routes_to_sync_tool(self, server_engine, store):
        store.create_profile("Main")
        result = await handle_call_tool("profile_list", {})
        assert result.structuredContent["profiles"][0]["name"] == "Main"

    async def test_unknown_tool(self, server_engine):
        result = await handle_call_tool("wiki_get", {})
        assert result.isError
        assert result.content[0].text.startswith("Error (unknown_tool)")

    async def test_not_initialised(self):
        with pytest.raises(RuntimeError, match="not initialized"):
            get_engine()


class TestBuildParser:
    def test_defaults(self):
        args = build_parser().parse_args([])
        assert args.access_token is None
        assert args.read_only is False
        assert args.no_scheduler is False

    def test_flags(self):
        args = build_parser().parse_args(
            ["--token-file", "/t", "--data-dir", "/d", "--read-only", "--no-scheduler", "--debug"]
        )
        assert args.token_file == "/t"
        assert args.data_dir == "/d"
        assert args.read_only and args.no_scheduler and args.debug
