"""JSON-RPC envelope codec for the MCP streamable HTTP transport.

Responses arrive either as a bare JSON body or framed as a text event
stream, where each message sits on a ``data:`` line:

    event: message
    data: {"jsonrpc": "2.0", "id": 3, "result": {...}}

Decoding is split into two explicit steps. ``decode`` turns a raw body into
an ``Envelope`` (``ResultEnvelope`` or ``ErrorEnvelope``), and
``unwrap_result`` turns a successful result into the payload callers want,
unpacking the text content that data-API tools double-encode as JSON.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from acto_mcp.rpc.errors import MalformedEnvelope, ToolError

JSONRPC_VERSION = "2.0"
DATA_MARKER = "data:"

# Server-side code for "unknown or expired session"
SESSION_NOT_FOUND_CODE = -32001


class Framing(str, Enum):
    """How a response body is framed on the wire."""

    JSON = "json"
    EVENT_STREAM = "event_stream"


class ResultShape(str, Enum):
    """Shapes a successful `result` can take."""

    TEXT_CONTENT = "text_content"  # {"content": [{"type": "text", "text": "<json>"}]}
    PLAIN = "plain"


@dataclass(frozen=True)
class ResultEnvelope:
    """Successful JSON-RPC response."""

    id: int | str | None
    result: Any


@dataclass(frozen=True)
class ErrorEnvelope:
    """JSON-RPC error response."""

    id: int | str | None
    code: int
    message: str
    data: Any = None

    @property
    def is_session_error(self) -> bool:
        return self.code == SESSION_NOT_FOUND_CODE


Envelope = ResultEnvelope | ErrorEnvelope


def encode(request_id: int, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    """Build a JSON-RPC request body."""
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "method": method,
        "params": params or {},
    }


def detect_framing(raw: str) -> Framing:
    """Tell a bare JSON body apart from an event-stream body."""
    if raw.lstrip().startswith(("{", "[")):
        return Framing.JSON
    return Framing.EVENT_STREAM


def decode(raw: str) -> Envelope:
    """Decode a raw response body into an envelope.

    Raises:
        MalformedEnvelope: No line of the body holds a JSON-RPC response.
    """
    framing = detect_framing(raw)
    if framing is Framing.JSON:
        try:
            message = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MalformedEnvelope(f"Invalid JSON response body: {e.msg}", raw) from e
        return _to_envelope(message, raw)

    for message in _iter_event_stream(raw):
        if _is_response(message):
            return _to_envelope(message, raw)
    raise MalformedEnvelope("No JSON-RPC response found in event stream", raw)


def _iter_event_stream(raw: str):
    """Yield each JSON object carried on a ``data:`` line, skipping the rest."""
    for line in raw.splitlines():
        if not line.startswith(DATA_MARKER):
            continue
        payload = line[len(DATA_MARKER):]
        if payload.startswith(" "):
            payload = payload[1:]
        try:
            message = json.loads(payload)
        except json.JSONDecodeError:
            continue
        if isinstance(message, dict):
            yield message


def _is_response(message: dict[str, Any]) -> bool:
    # Server notifications interleaved in the stream carry a method and no result
    return "result" in message or "error" in message


def _to_envelope(message: Any, raw: str) -> Envelope:
    if not isinstance(message, dict):
        raise MalformedEnvelope("JSON-RPC response must be an object", raw)

    request_id = message.get("id")
    if "error" in message:
        error = message["error"]
        if not isinstance(error, dict):
            raise MalformedEnvelope("JSON-RPC error must be an object", raw)
        code = error.get("code")
        if not isinstance(code, int) or isinstance(code, bool):
            raise MalformedEnvelope("JSON-RPC error is missing an integer code", raw)
        return ErrorEnvelope(
            id=request_id,
            code=code,
            message=str(error.get("message", "")),
            data=error.get("data"),
        )
    if "result" in message:
        return ResultEnvelope(id=request_id, result=message["result"])
    raise MalformedEnvelope("JSON-RPC response has neither result nor error", raw)


def classify_result(result: Any) -> ResultShape:
    """Work out which shape a successful result has."""
    if isinstance(result, dict) and _text_items(result.get("content")):
        return ResultShape.TEXT_CONTENT
    return ResultShape.PLAIN


def _text_items(content: Any) -> list[str]:
    if not isinstance(content, list):
        return []
    texts = [
        item["text"]
        for item in content
        if isinstance(item, dict) and isinstance(item.get("text"), str)
    ]
    # Only a single text payload is a double-encoded document
    return texts if len(texts) == 1 else []


def unwrap_result(result: Any) -> Any:
    """Return the payload carried by a successful result.

    Raises:
        ToolError: The result is flagged with ``isError``.
    """
    shape = classify_result(result)

    if isinstance(result, dict) and result.get("isError"):
        message = _text_items(result.get("content"))
        raise ToolError(message[0] if message else "Tool reported an error", data=result)

    if shape is ResultShape.TEXT_CONTENT:
        text = _text_items(result["content"])[0]
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return {"text": text}

    return result
