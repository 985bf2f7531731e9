"""MCP client with session recovery for the data API builder endpoint."""

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from acto_mcp.config import get_settings
from acto_mcp.rpc.envelope import ErrorEnvelope, decode, encode, unwrap_result
from acto_mcp.rpc.errors import (
    MalformedEnvelope,
    ProtocolError,
    SessionError,
    TransportError,
)
from acto_mcp.rpc.session import SessionManager

logger = structlog.get_logger(__name__)

MCP_SESSION_ID_HEADER = "Mcp-Session-Id"
API_ROLE_HEADER = "X-MS-API-ROLE"


@dataclass
class PendingCall:
    """One logical call, possibly sent twice if its session is lost."""

    method: str
    params: dict[str, Any]
    auth_token: str | None
    timeout: float
    id: int | None = None
    session_token: str | None = None
    retried_for_session: bool = False


class McpClient:
    """Async JSON-RPC client for one MCP server.

    Usage:
        async with McpClient("http://localhost:5000/mcp") as client:
            customers = await client.read_records("customers", first=10)
    """

    def __init__(
        self,
        url: str | None = None,
        name: str = "dab",
        headers: dict[str, str] | None = None,
        client_name: str | None = None,
        client_version: str | None = None,
        protocol_version: str | None = None,
        timeout: float | None = None,
        tool_timeout: float | None = None,
        api_role: str | None = None,
        keepalive_interval: float | None = None,
        session_timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.name = name
        self.url = url or settings.dab_mcp_url
        self._headers = dict(headers or {})
        self._client_name = client_name or settings.mcp_client_name
        self._client_version = client_version or settings.mcp_client_version
        self._protocol_version = protocol_version or settings.mcp_protocol_version
        self._timeout = timeout or settings.mcp_timeout
        self._tool_timeout = tool_timeout or settings.mcp_tool_timeout
        self._api_role = api_role if api_role is not None else settings.mcp_api_role

        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self.server_info: dict[str, Any] = {}

        self.session = SessionManager(
            handshake=self._handshake,
            pinger=self._ping,
            keepalive_interval=keepalive_interval,
            session_timeout=session_timeout,
            clock=clock,
            name=name,
        )
        self._logger = logger.bind(server=name)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Stop the keep-alive and close the HTTP client."""
        await self.session.close()
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "McpClient":
        await self.session.ensure_active()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # === Session exchanges ===

    async def _handshake(self) -> str | None:
        """Send `initialize` and return the session id the server assigned."""
        body = encode(
            self.session.next_request_id(),
            "initialize",
            {
                "protocolVersion": self._protocol_version,
                "capabilities": {},
                "clientInfo": {"name": self._client_name, "version": self._client_version},
            },
        )
        response = await self._post(body, self._get_headers(), self._timeout)
        result = self._classify(response, session_bound=False)
        if isinstance(result, dict):
            self.server_info = result.get("serverInfo") or {}
        return response.headers.get(MCP_SESSION_ID_HEADER)

    async def _ping(self) -> Any:
        """Single `ping` over the current session; no recovery."""
        return await self._send(PendingCall("ping", {}, None, self._timeout))

    def _get_headers(self, auth_token: str | None = None) -> dict[str, str]:
        """Get request headers with session id and forwarded credentials."""
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
            **self._headers,
        }
        if self.session.session_token:
            headers[MCP_SESSION_ID_HEADER] = self.session.session_token
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
            # The data API only applies non-default roles when asked to
            if self._api_role:
                headers[API_ROLE_HEADER] = self._api_role
        return headers

    # === Call execution ===

    async def call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        auth_token: str | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Invoke a remote method and return its decoded result.

        A session error (code -32001 or HTTP 404) invalidates the session the
        attempt was sent on, unless another call has already replaced it, and
        the call is sent once more over a fresh session. Protocol, transport
        and envelope errors are raised as-is.

        Raises:
            SessionError: The session was rejected again after re-initializing.
            ProtocolError: The server returned a JSON-RPC error.
            TransportError: Network failure, timeout or unexpected status.
            MalformedEnvelope: The response could not be decoded.
        """
        call = PendingCall(method, params or {}, auth_token, timeout or self._timeout)

        while True:
            await self.session.ensure_active()
            try:
                result = await self._send(call)
            except SessionError:
                # A late failure on an already replaced session must not drop the new one
                if self.session.session_token == call.session_token:
                    self.session.invalidate()
                if call.retried_for_session:
                    self._logger.error("session_retry_exhausted", method=method, id=call.id)
                    raise
                call.retried_for_session = True
                self._logger.info("session_expired_reinitializing", method=method, id=call.id)
                continue
            finally:
                self.session.touch()
            return unwrap_result(result)

    async def _send(self, call: PendingCall) -> Any:
        """Send one attempt of a call and return the raw `result`."""
        call.id = self.session.next_request_id()
        call.session_token = self.session.session_token
        body = encode(call.id, call.method, call.params)
        self._logger.debug("rpc_request", method=call.method, id=call.id)

        response = await self._post(body, self._get_headers(call.auth_token), call.timeout)
        return self._classify(response, session_bound=True)

    async def _post(
        self, body: dict[str, Any], headers: dict[str, str], timeout: float
    ) -> httpx.Response:
        client = await self._get_client()
        try:
            return await client.post(self.url, json=body, headers=headers, timeout=timeout)
        except httpx.TimeoutException as e:
            self._logger.warning("rpc_timeout", method=body.get("method"), timeout=timeout)
            raise TransportError(f"Request timed out after {timeout}s") from e
        except httpx.RequestError as e:
            self._logger.warning("rpc_transport_error", method=body.get("method"), error=str(e))
            raise TransportError(f"Request failed: {e}") from e

    def _classify(self, response: httpx.Response, session_bound: bool) -> Any:
        """Turn an HTTP response into a raw result or the matching exception."""
        if not response.is_success:
            if session_bound and response.status_code == 404:
                raise SessionError("Session not found", details={"status_code": 404})
            envelope = self._try_decode(response.text)
            if (
                session_bound
                and isinstance(envelope, ErrorEnvelope)
                and envelope.is_session_error
            ):
                raise SessionError(envelope.message, details={"status_code": response.status_code})
            raise TransportError(
                f"HTTP error: {response.status_code}",
                status_code=response.status_code,
                details={"raw": response.text[:500] if response.text else "empty response"},
            )

        envelope = decode(response.text)
        if isinstance(envelope, ErrorEnvelope):
            if session_bound and envelope.is_session_error:
                raise SessionError(envelope.message, details={"code": envelope.code})
            raise ProtocolError(envelope.code, envelope.message, envelope.data)
        return envelope.result

    @staticmethod
    def _try_decode(raw: str) -> Any:
        try:
            return decode(raw)
        except MalformedEnvelope:
            return None

    # === Tools ===

    async def list_tools(self) -> list[dict[str, Any]]:
        """List every tool the server exposes, following pagination cursors."""
        tools: list[dict[str, Any]] = []
        cursor: str | None = None
        while True:
            result = await self.call("tools/list", {"cursor": cursor} if cursor else {})
            if not isinstance(result, dict):
                break
            tools.extend(t for t in result.get("tools") or [] if isinstance(t, dict))
            cursor = result.get("nextCursor")
            if not cursor:
                break
        self._logger.info("tools_discovered", count=len(tools))
        return tools

    async def call_tool(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        auth_token: str | None = None,
    ) -> Any:
        """Invoke a tool through `tools/call`."""
        return await self.call(
            "tools/call",
            {"name": name, "arguments": arguments or {}},
            auth_token=auth_token,
            timeout=self._tool_timeout,
        )

    # === Data API Tools ===

    async def read_records(
        self,
        entity: str,
        select: str | None = None,
        filter: str | None = None,
        first: int | None = None,
        orderby: list[str] | None = None,
        after: str | None = None,
        auth_token: str | None = None,
    ) -> Any:
        """Read records from an entity."""
        arguments: dict[str, Any] = {"entity": entity}
        if select:
            arguments["select"] = select
        if filter:
            arguments["filter"] = filter
        if first is not None:
            arguments["first"] = first
        if orderby:
            arguments["orderby"] = orderby
        if after:
            arguments["after"] = after
        return await self.call_tool("read_records", arguments, auth_token=auth_token)

    async def create_record(
        self, entity: str, data: dict[str, Any], auth_token: str | None = None
    ) -> Any:
        """Create a record."""
        return await self.call_tool(
            "create_record", {"entity": entity, "data": data}, auth_token=auth_token
        )

    async def update_record(
        self,
        entity: str,
        keys: dict[str, Any],
        fields: dict[str, Any],
        auth_token: str | None = None,
    ) -> Any:
        """Update the record identified by `keys`."""
        return await self.call_tool(
            "update_record",
            {"entity": entity, "keys": keys, "fields": fields},
            auth_token=auth_token,
        )

    async def delete_record(
        self, entity: str, keys: dict[str, Any], auth_token: str | None = None
    ) -> Any:
        """Delete the record identified by `keys`."""
        return await self.call_tool(
            "delete_record", {"entity": entity, "keys": keys}, auth_token=auth_token
        )

    async def describe_entities(
        self, entities: list[str] | None = None, auth_token: str | None = None
    ) -> Any:
        """Describe entity schemas (all of them when `entities` is empty)."""
        arguments: dict[str, Any] = {"entities": entities} if entities else {}
        return await self.call_tool("describe_entities", arguments, auth_token=auth_token)


def extract_records(payload: Any) -> list[dict[str, Any]]:
    """Return the list of records from a read payload."""
    if isinstance(payload, list):
        return [r for r in payload if isinstance(r, dict)]
    if isinstance(payload, dict):
        for container in (payload, payload.get("result")):
            if isinstance(container, dict) and isinstance(container.get("value"), list):
                return [r for r in container["value"] if isinstance(r, dict)]
    return []


def extract_id(payload: Any, id_field: str = "Id") -> Any:
    """Return the identifier of a created record, or None."""
    if not isinstance(payload, dict):
        return None
    if payload.get(id_field) is not None:
        return payload[id_field]
    inner = payload.get("result")
    if isinstance(inner, dict) and inner.get(id_field) is not None:
        return inner[id_field]
    records = extract_records(payload)
    if records:
        return records[0].get(id_field)
    return None
