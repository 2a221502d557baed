# potion/transport.py
"""JSON-RPC 2.0 over HTTP transport for MCP servers (Streamable HTTP)."""

import itertools
import logging
import threading
from typing import Any, Dict, Optional, Union

import httpx
from pydantic import BaseModel, ValidationError

from .errors import NoResponseError, RPCError, TransportError
from .sse import aiter_sse_data

logger = logging.getLogger(__name__)

DEFAULT_MCP_ENDPOINT = "https://mcp.notion.com/mcp"
SESSION_HEADER = "Mcp-Session-Id"


class JSONRPCRequest(BaseModel):
    """Request envelope. A request without ``id`` is a notification."""

    jsonrpc: str = "2.0"
    method: str
    params: Optional[Any] = None
    id: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class JSONRPCResponse(BaseModel):
    """Response envelope as received from the server."""

    jsonrpc: str = "2.0"
    result: Optional[Any] = None
    error: Optional[Any] = None
    id: Optional[Union[int, str]] = None
    # Present when the server sends its own request or notification
    method: Optional[str] = None

    model_config = {"extra": "ignore"}

    def get_error(self) -> Optional[RPCError]:
        """
        Return the error member as a structured RPCError, or None.

        Servers send either a JSON-RPC error object or a bare string.
        """
        if not self.error:
            return None
        if isinstance(self.error, dict):
            code = self.error.get("code", 0)
            return RPCError(
                code=code if isinstance(code, int) else 0,
                message=str(self.error.get("message", "")),
                data=self.error.get("data"),
            )
        return RPCError(code=0, message=str(self.error))


class MCPTransport:
    """
    Send JSON-RPC requests to a single MCP endpoint.

    Each instance owns its request-ID counter (starting at 1, never reused)
    and the session ID issued by the server. Both are guarded by a lock so
    one instance can be shared across tasks and threads.

    No retries are performed; failures are returned to the caller.
    """

    def __init__(
        self,
        access_token: str,
        endpoint: str = DEFAULT_MCP_ENDPOINT,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ):
        """
        Initialize transport.

        Args:
            access_token: OAuth bearer token
            endpoint: MCP endpoint URL
            http_client: Optional shared HTTP client (closed by the caller)
            timeout: HTTP request timeout in seconds
        """
        self.endpoint = endpoint
        self.access_token = access_token
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._session_id: Optional[str] = None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "MCPTransport":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    @property
    def session_id(self) -> Optional[str]:
        with self._lock:
            return self._session_id

    def _next_request_id(self) -> int:
        with self._lock:
            return next(self._ids)

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json, text/event-stream",
            "Content-Type": "application/json",
        }
        session_id = self.session_id
        if session_id:
            headers[SESSION_HEADER] = session_id
        return headers

    def _capture_session(self, response: httpx.Response) -> None:
        session_id = response.headers.get(SESSION_HEADER)
        if not session_id:
            return
        with self._lock:
            if session_id != self._session_id:
                change = "rotated" if self._session_id else "assigned"
                logger.debug(f"Session ID {change}")
            self._session_id = session_id

    async def send(self, method: str, params: Optional[Any] = None) -> JSONRPCResponse:
        """
        Send a request and return the matching response envelope.

        The response may be a single JSON document or an SSE stream; in the
        stream case, events are scanned until one carries this request's ID.
        An ``error`` member is returned in the envelope, see
        :meth:`JSONRPCResponse.get_error`.

        Raises:
            TransportError: On network failure, HTTP error status or an
                undecodable JSON body
            NoResponseError: If an SSE stream ends without a matching ID
        """
        request_id = self._next_request_id()
        payload = JSONRPCRequest(method=method, params=params, id=request_id).to_payload()
        logger.debug(f"→ {method} (id={request_id})")

        try:
            async with self._http.stream(
                "POST", self.endpoint, json=payload, headers=self._headers()
            ) as response:
                self._capture_session(response)
                await self._raise_for_status(response, method)

                content_type = response.headers.get("content-type", "")
                if "text/event-stream" in content_type:
                    return await self._read_event_stream(response, request_id)

                body = await response.aread()
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to send {method} request: {e}") from e

        return self._decode_json(body, method)

    async def notify(self, method: str, params: Optional[Any] = None) -> None:
        """
        Send a notification (no ``id``, no response envelope expected).

        Raises:
            TransportError: On network failure or HTTP error status
        """
        payload = JSONRPCRequest(method=method, params=params).to_payload()
        logger.debug(f"→ {method} (notification)")

        try:
            async with self._http.stream(
                "POST", self.endpoint, json=payload, headers=self._headers()
            ) as response:
                self._capture_session(response)
                await self._raise_for_status(response, method)
                await response.aread()
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to send {method} notification: {e}") from e

    @staticmethod
    async def _raise_for_status(response: httpx.Response, method: str) -> None:
        if response.status_code < 400:
            return
        body = (await response.aread()).decode("utf-8", errors="replace")
        raise TransportError(
            f"MCP {method} request failed",
            status_code=response.status_code,
            body=body,
        )

    async def _read_event_stream(
        self, response: httpx.Response, request_id: int
    ) -> JSONRPCResponse:
        async for data in aiter_sse_data(response.aiter_lines()):
            try:
                envelope = JSONRPCResponse.model_validate_json(data)
            except ValidationError:
                logger.debug("Discarding malformed SSE event")
                continue

            if envelope.method is None and envelope.id == request_id:
                return envelope
            logger.debug(f"Discarding SSE event for id={envelope.id}")

        raise NoResponseError(f"No response received for request ID {request_id}")

    @staticmethod
    def _decode_json(body: bytes, method: str) -> JSONRPCResponse:
        if not body.strip():
            raise TransportError(f"Empty response to {method} request")
        try:
            return JSONRPCResponse.model_validate_json(body)
        except ValidationError as e:
            raise TransportError(f"Failed to decode {method} response: {e}") from e
