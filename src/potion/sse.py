"""Server-Sent Events (SSE) utilities for MCP responses."""

from typing import AsyncIterable, AsyncIterator, List, Optional


class SSEDecoder:
    """
    Incremental SSE decoder that yields the data payload of each event.

    MCP servers return JSON-RPC messages in SSE format:
        event: message
        data: {"jsonrpc":"2.0","id":1,"result":{...}}

    Consecutive ``data:`` lines are joined with newlines; a blank line
    dispatches the event. Other fields (``event:``, ``id:``, ``retry:``) and
    comments are ignored.
    """

    def __init__(self) -> None:
        self._data: List[str] = []

    def feed(self, line: str) -> Optional[str]:
        """
        Process one line (without its terminator).

        Returns:
            The accumulated data of a completed event, or None
        """
        line = line.rstrip("\r")

        if not line:
            if not self._data:
                return None
            data = "\n".join(self._data)
            self._data = []
            return data

        if line.startswith(":"):
            return None

        field, _, value = line.partition(":")
        if field == "data":
            if value.startswith(" "):
                value = value[1:]
            self._data.append(value)
        return None


async def aiter_sse_data(lines: AsyncIterable[str]) -> AsyncIterator[str]:
    """
    Yield event payloads from an async line stream.

    An event still buffered when the stream ends has no terminating blank
    line and is dropped.

    Example:
        >>> async with client.stream("POST", url, json=payload) as response:
        ...     async for data in aiter_sse_data(response.aiter_lines()):
        ...         message = json.loads(data)
    """
    decoder = SSEDecoder()
    async for line in lines:
        data = decoder.feed(line)
        if data is not None:
            yield data
