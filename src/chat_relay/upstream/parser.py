"""
Incremental parser for the model provider's streaming response.

The provider answers a streaming chat completion with Server-Sent-Events
style records:

    data: {"choices": [{"delta": {"reasoning_content": "..."}}]}

    data: {"choices": [{"delta": {"content": "..."}}]}

    data: [DONE]

Network reads do not respect record boundaries, so bytes are buffered until
a blank-line boundary arrives. Each complete record is turned into zero or
more typed deltas.
"""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator, Union

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
RECORD_SEPARATOR = "\n\n"


@dataclass(frozen=True)
class ReasoningChunk:
    """A fragment of the model's reasoning trace."""

    text: str


@dataclass(frozen=True)
class AnswerChunk:
    """A fragment of the model's final answer."""

    text: str


@dataclass(frozen=True)
class StreamEnd:
    """Marks the end of the upstream stream."""

    terminated: bool = True
    """True when the provider sent the terminator, False on plain EOF."""


UpstreamDelta = Union[ReasoningChunk, AnswerChunk, StreamEnd]


class UpstreamStreamParser:
    """
    Turns raw provider bytes into upstream deltas.

    Feed it bytes as they arrive with ``feed()``; each call returns the deltas
    completed by those bytes. Once the terminator record is seen the parser
    is finished and ignores any further input.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._pending_cr = ""
        self._finished = False
        self.malformed_records = 0

    @property
    def finished(self) -> bool:
        """Whether a terminator or EOF has been processed."""
        return self._finished

    def feed(self, data: bytes) -> list[UpstreamDelta]:
        """
        Consume a network read and return the deltas it completes.

        Args:
            data: Raw bytes exactly as read from the transport

        Returns:
            Deltas in arrival order; a trailing StreamEnd when the
            terminator record was reached
        """
        if self._finished:
            return []

        self._append(self._decoder.decode(data))
        return self._drain_records()

    def close(self) -> list[UpstreamDelta]:
        """
        Signal EOF and flush whatever is left in the buffer.

        A final record without the trailing blank line is still processed.
        """
        if self._finished:
            return []

        self._append(self._decoder.decode(b"", final=True))
        if self._pending_cr:
            self._pending_cr = ""
            self._buffer += "\n"

        deltas = self._drain_records()
        if self._finished:
            return deltas

        remainder, self._buffer = self._buffer, ""
        if remainder.strip():
            deltas.extend(self._parse_record(remainder))
        if not self._finished:
            self._finished = True
            deltas.append(StreamEnd(terminated=False))
        return deltas

    def _append(self, text: str) -> None:
        text = self._pending_cr + text
        self._pending_cr = ""
        # A CR at the end of a read may be the first half of a CRLF
        if text.endswith("\r"):
            self._pending_cr = "\r"
            text = text[:-1]
        self._buffer += text.replace("\r\n", "\n").replace("\r", "\n")

    def _drain_records(self) -> list[UpstreamDelta]:
        deltas: list[UpstreamDelta] = []
        while not self._finished:
            boundary = self._buffer.find(RECORD_SEPARATOR)
            if boundary == -1:
                break
            record = self._buffer[:boundary]
            self._buffer = self._buffer[boundary + len(RECORD_SEPARATOR):]
            deltas.extend(self._parse_record(record))
        return deltas

    def _parse_record(self, record: str) -> list[UpstreamDelta]:
        data_lines = []
        for line in record.split("\n"):
            # Comment lines are provider keep-alives
            if not line or line.startswith(":"):
                continue
            if line.startswith(DATA_PREFIX):
                data_lines.append(line[len(DATA_PREFIX):].removeprefix(" "))

        if not data_lines:
            return []

        payload = "\n".join(data_lines).strip()
        if not payload:
            return []

        if payload == DONE_SENTINEL:
            self._finished = True
            self._buffer = ""
            return [StreamEnd(terminated=True)]

        try:
            parsed = json.loads(payload)
        except json.JSONDecodeError as e:
            self.malformed_records += 1
            logger.warning(f"Skipping malformed upstream record ({e}): {payload[:200]!r}")
            return []

        return extract_deltas(parsed)


def extract_deltas(parsed: Any) -> list[UpstreamDelta]:
    """
    Pull reasoning and answer text out of a decoded completion chunk.

    A chunk may carry both fields; reasoning is returned first.
    """
    delta = _first_choice_delta(parsed)
    if delta is None:
        return []

    deltas: list[UpstreamDelta] = []
    reasoning = delta.get("reasoning_content")
    if isinstance(reasoning, str) and reasoning:
        deltas.append(ReasoningChunk(reasoning))

    content = delta.get("content")
    if isinstance(content, str) and content:
        deltas.append(AnswerChunk(content))

    return deltas


def _first_choice_delta(parsed: Any) -> dict[str, Any] | None:
    if not isinstance(parsed, dict):
        return None
    choices = parsed.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    choice = choices[0]
    if not isinstance(choice, dict):
        return None
    delta = choice.get("delta")
    return delta if isinstance(delta, dict) else None


async def iter_deltas(chunks: AsyncIterable[bytes]) -> AsyncIterator[UpstreamDelta]:
    """
    Lazily parse an async byte stream into reasoning and answer deltas.

    The sequence ends at the terminator record or at EOF, whichever comes
    first; the StreamEnd marker itself is not yielded. Iteration stops
    reading from ``chunks`` as soon as the terminator is seen.

    Args:
        chunks: Async iterable of raw byte reads

    Yields:
        ReasoningChunk and AnswerChunk values in upstream order
    """
    parser = UpstreamStreamParser()

    async for data in chunks:
        for delta in parser.feed(data):
            if isinstance(delta, StreamEnd):
                return
            yield delta

    for delta in parser.close():
        if isinstance(delta, StreamEnd):
            if not delta.terminated:
                logger.info("Upstream stream closed without a terminator record")
            return
        yield delta
