"""
Server-Sent Events (SSE) framing for push sessions.

Every event is a single ``data:`` record terminated by a blank line;
keep-alives are bare comment records.
"""

from __future__ import annotations

import json
from typing import Any, AsyncIterator

from fastapi.responses import StreamingResponse

HEARTBEAT_FRAME = ":\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


def format_sse_event(data: Any, retry: int | None = None) -> str:
    """
    Format a Server-Sent Event.

    Args:
        data: Event data (will be JSON encoded if not a string)
        retry: Optional reconnection delay hint in milliseconds

    Returns:
        Formatted SSE string
    """
    lines = []

    if retry is not None:
        lines.append(f"retry: {retry}")

    if isinstance(data, str):
        data_str = data
    else:
        data_str = json.dumps(data, ensure_ascii=False)

    # Split multi-line data
    for line in data_str.split("\n"):
        lines.append(f"data: {line}")

    return "\n".join(lines) + "\n\n"


def create_sse_response(stream: AsyncIterator[str]) -> StreamingResponse:
    """Wrap an async iterator of SSE frames in a FastAPI StreamingResponse."""
    return StreamingResponse(
        stream,
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
