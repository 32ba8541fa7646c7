"""Tests for the JSON-RPC dispatcher."""
import asyncio
import json

import pytest

from conftest import READY_THEN_IDLE, py
from netdiag_mcp.server import PROTOCOL_VERSION, create_server
from netdiag_mcp.tools import ToolKind, ToolSpec

TOOLS = {
    "start_traffic_capture": ToolSpec(
        "start_traffic_capture", "start", ToolKind.ASYNC_START,
        command=tuple(READY_THEN_IDLE),
        properties={"capture_filter": {"type": "string"}},
    ),
    "stop_traffic_capture": ToolSpec("stop_traffic_capture", "stop", ToolKind.ASYNC_STOP),
    "extract_leaf_configs": ToolSpec(
        "extract_leaf_configs", "extract", ToolKind.SYNC,
        command=tuple(py("print('leafA saved')")),
    ),
}

INIT_PARAMS = {
    "protocolVersion": PROTOCOL_VERSION,
    "capabilities": {},
    "clientInfo": {"name": "pytest", "version": "0"},
}


@pytest.fixture
def server(supervisor):
    return create_server(supervisor=supervisor, tools=TOOLS)


def _request(method, id=None, params=None) -> str:
    msg = {"jsonrpc": "2.0", "method": method}
    if id is not None:
        msg["id"] = id
    if params is not None:
        msg["params"] = params
    return json.dumps(msg)


def _text(response) -> str:
    return response["result"]["content"][0]["text"]


@pytest.mark.asyncio
async def test_blank_line_is_skipped(server):
    assert await server.handle_line("   \n") is None


@pytest.mark.asyncio
async def test_parse_error_has_no_id(server):
    response = await server.handle_line("{not json")
    assert response == {"jsonrpc": "2.0", "error": {"code": -32700, "message": "Parse error"}}


@pytest.mark.asyncio
async def test_envelope_without_method_is_parse_error(server):
    response = await server.handle_line('{"jsonrpc": "2.0", "id": 3}')
    assert response["error"]["code"] == -32700
    assert "id" not in response


@pytest.mark.asyncio
async def test_oversized_line_is_parse_error(supervisor):
    server = create_server(supervisor=supervisor, tools=TOOLS)
    server.max_line_bytes = 64
    response = await server.handle_line(_request("tools/list", id=1, params={"pad": "x" * 100}))
    assert response["error"]["code"] == -32700


@pytest.mark.asyncio
async def test_unknown_method_keeps_id(server):
    response = await server.handle_line(_request("resources/list", id="abc"))
    assert response == {
        "jsonrpc": "2.0",
        "id": "abc",
        "error": {"code": -32601, "message": "Method not found"},
    }


@pytest.mark.asyncio
async def test_initialize(server):
    response = await server.handle_line(_request("initialize", id=1, params=INIT_PARAMS))
    result = response["result"]
    assert response["id"] == 1
    assert result["protocolVersion"] == PROTOCOL_VERSION
    assert result["capabilities"]["tools"] == {"listChanged": True}
    assert result["serverInfo"]["name"] == "netdiag-mcp"


@pytest.mark.asyncio
async def test_initialize_without_params(server):
    response = await server.handle_line(_request("initialize", id=1))
    assert response["error"] == {"code": -32602, "message": "Invalid params"}


@pytest.mark.asyncio
async def test_ping(server):
    assert await server.handle_line(_request("ping", id=9)) == {
        "jsonrpc": "2.0", "id": 9, "result": {},
    }


@pytest.mark.asyncio
async def test_tools_list(server):
    response = await server.handle_line(_request("tools/list", id=2))
    tools = response["result"]["tools"]
    assert [t["name"] for t in tools] == list(TOOLS)
    assert tools[0]["inputSchema"]["properties"] == {"capture_filter": {"type": "string"}}


@pytest.mark.asyncio
async def test_tools_call_unknown_tool(server):
    response = await server.handle_line(
        _request("tools/call", id=3, params={"name": "install_tshark"})
    )
    assert response["id"] == 3
    assert response["error"] == {"code": -32001, "message": "Unknown tool: install_tshark"}


@pytest.mark.asyncio
async def test_tools_call_invalid_params(server):
    response = await server.handle_line(_request("tools/call", id=4, params={"arguments": {}}))
    assert response["error"]["code"] == -32602

    response = await server.handle_line(_request(
        "tools/call", id=5,
        params={"name": "start_traffic_capture", "arguments": {"capture_filter": ["icmp"]}},
    ))
    assert response["error"]["code"] == -32602
    assert len(server.supervisor.calls) == 0


@pytest.mark.asyncio
async def test_sync_tool_call(server):
    response = await server.handle_line(
        _request("tools/call", id=6, params={"name": "extract_leaf_configs"})
    )
    assert _text(response) == "leafA saved\n"
    assert response["result"]["isError"] is False


@pytest.mark.asyncio
async def test_start_then_stop(server):
    started = await server.handle_line(
        _request("tools/call", id="1", params={"name": "start_traffic_capture", "arguments": {}})
    )
    assert started["id"] == "1"
    assert "ready" in _text(started)
    assert "Request ID: 1" in _text(started)
    assert len(server.supervisor.calls) == 1

    stopped = await server.handle_line(
        _request("tools/call", id="2", params={"name": "stop_traffic_capture"})
    )
    assert stopped["id"] == "2"
    assert _text(stopped).startswith("Successfully stopped 1 traffic capture(s).")
    assert len(server.supervisor.calls) == 0


@pytest.mark.asyncio
async def test_stop_with_nothing_running_is_not_an_error(server):
    response = await server.handle_line(
        _request("tools/call", id=7, params={"name": "stop_traffic_capture", "arguments": {}})
    )
    assert "error" not in response
    assert response["result"]["isError"] is False
    assert _text(response).startswith("Successfully stopped 0 traffic capture(s).")


@pytest.mark.asyncio
async def test_handler_crash_is_internal_error(server, monkeypatch):
    async def boom(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr("netdiag_mcp.server.call_tool", boom)
    response = await server.handle_line(
        _request("tools/call", id=8, params={"name": "extract_leaf_configs"})
    )
    assert response["id"] == 8
    assert response["error"]["code"] == -32603


@pytest.mark.asyncio
async def test_serve_answers_every_line_in_order(server):
    reader = asyncio.StreamReader()
    reader.feed_data(b"\n".join([
        _request("initialize", id=1, params=INIT_PARAMS).encode(),
        b"",
        b"garbage",
        _request("bogus", id=2).encode(),
        _request("tools/list", id=3).encode(),
    ]) + b"\n")
    reader.feed_eof()

    out: list[str] = []
    await server.serve(reader, out.append)

    assert all(line.endswith("\n") for line in out)
    responses = [json.loads(line) for line in out]
    assert [r.get("id") for r in responses] == [1, None, 2, 3]
    assert responses[1]["error"]["code"] == -32700
    assert responses[2]["error"]["code"] == -32601
    assert "tools" in responses[3]["result"]


@pytest.mark.asyncio
async def test_serve_survives_line_over_reader_limit(server):
    reader = asyncio.StreamReader(limit=128)
    reader.feed_data(b'{"pad": "' + b"x" * 500 + b'"}\n')
    reader.feed_data(_request("ping", id=1).encode() + b"\n")
    reader.feed_eof()

    out: list[str] = []
    await server.serve(reader, out.append)

    responses = [json.loads(line) for line in out]
    assert len(responses) == 2
    assert responses[0]["error"]["code"] == -32700
    assert responses[1] == {"jsonrpc": "2.0", "id": 1, "result": {}}


@pytest.mark.asyncio
async def test_serve_discards_chunked_long_line_once(server):
    reader = asyncio.StreamReader(limit=1024)
    out: list[str] = []
    task = asyncio.create_task(server.serve(reader, out.append))

    # The line arrives piece by piece, each piece pushing past the limit
    for _ in range(4):
        reader.feed_data(b"x" * 700)
        await asyncio.sleep(0.01)
    reader.feed_data(b"\n")
    reader.feed_data(_request("ping", id=1).encode() + b"\n")
    reader.feed_eof()
    await asyncio.wait_for(task, timeout=5)

    responses = [json.loads(line) for line in out]
    assert len(responses) == 2
    assert responses[0]["error"]["code"] == -32700
    assert responses[0].get("id") is None
    assert responses[1] == {"jsonrpc": "2.0", "id": 1, "result": {}}
