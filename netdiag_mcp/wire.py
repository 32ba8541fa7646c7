"""JSON-RPC 2.0 envelopes for the line-delimited stdio transport."""

from __future__ import annotations

import json
from typing import Any

from mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    ErrorData,
)
from pydantic import BaseModel, ConfigDict, ValidationError

JSONRPC_VERSION = "2.0"

# Server-defined code, outside the range reserved by JSON-RPC
UNKNOWN_TOOL = -32001

__all__ = [
    "INTERNAL_ERROR",
    "INVALID_PARAMS",
    "METHOD_NOT_FOUND",
    "PARSE_ERROR",
    "UNKNOWN_TOOL",
    "RpcError",
    "RpcRequest",
    "decode_request",
    "encode_response",
    "error_response",
    "result_response",
]


class RpcError(Exception):
    """Raised by a method handler to answer with a JSON-RPC error."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class RpcRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    jsonrpc: str = JSONRPC_VERSION
    id: int | str | None = None
    method: str
    params: dict[str, Any] | None = None


def decode_request(line: str | bytes) -> RpcRequest:
    """Parse one line into a request envelope.

    Raises RpcError(PARSE_ERROR) for anything that is not a JSON object
    with a string ``method``.
    """
    try:
        return RpcRequest.model_validate_json(line)
    except ValidationError:
        raise RpcError(PARSE_ERROR, "Parse error") from None


def result_response(request_id: int | str | None, result: BaseModel | dict[str, Any]) -> dict[str, Any]:
    if isinstance(result, BaseModel):
        result = result.model_dump(by_alias=True, exclude_none=True, mode="json")
    response: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION}
    if request_id is not None:
        response["id"] = request_id
    response["result"] = result
    return response


def error_response(request_id: int | str | None, code: int, message: str) -> dict[str, Any]:
    error = ErrorData(code=code, message=message)
    response: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION}
    if request_id is not None:
        response["id"] = request_id
    response["error"] = error.model_dump(exclude_none=True, mode="json")
    return response


def encode_response(response: dict[str, Any]) -> str:
    """Serialize a response as one line, without the trailing newline."""
    return json.dumps(response, separators=(",", ":"))
