"""Tests for the upstream stream parser."""

import json
import logging

import pytest

from chat_relay.upstream.parser import (
    AnswerChunk,
    ReasoningChunk,
    StreamEnd,
    UpstreamStreamParser,
    extract_deltas,
    iter_deltas,
)

from conftest import DONE_RECORD, sse_record


async def _chunks(*parts: bytes):
    for part in parts:
        yield part


async def _collect(*parts: bytes) -> list:
    return [delta async for delta in iter_deltas(_chunks(*parts))]


class TestExtractDeltas:
    """Tests for pulling fields out of a decoded chunk."""

    def test_reasoning_only(self) -> None:
        parsed = {"choices": [{"delta": {"reasoning_content": "hmm"}}]}
        assert extract_deltas(parsed) == [ReasoningChunk("hmm")]

    def test_content_only(self) -> None:
        parsed = {"choices": [{"delta": {"content": "hi"}}]}
        assert extract_deltas(parsed) == [AnswerChunk("hi")]

    def test_both_fields_reasoning_first(self) -> None:
        parsed = {"choices": [{"delta": {"content": "x", "reasoning_content": "r"}}]}
        assert extract_deltas(parsed) == [ReasoningChunk("r"), AnswerChunk("x")]

    def test_empty_fields_ignored(self) -> None:
        parsed = {"choices": [{"delta": {"content": "", "reasoning_content": None}}]}
        assert extract_deltas(parsed) == []

    def test_role_only_delta(self) -> None:
        parsed = {"choices": [{"delta": {"role": "assistant"}}]}
        assert extract_deltas(parsed) == []

    @pytest.mark.parametrize(
        "parsed",
        [[], {}, {"choices": []}, {"choices": "x"}, {"choices": [1]}, {"choices": [{}]}],
    )
    def test_unexpected_shapes(self, parsed) -> None:
        assert extract_deltas(parsed) == []


class TestUpstreamStreamParser:
    """Tests for incremental feeding."""

    def test_whole_records(self) -> None:
        parser = UpstreamStreamParser()
        data = sse_record({"reasoning_content": "a"}) + sse_record({"content": "b"})

        assert parser.feed(data) == [ReasoningChunk("a"), AnswerChunk("b")]

    def test_partial_record_buffered(self) -> None:
        parser = UpstreamStreamParser()
        record = sse_record({"content": "hello"})

        assert parser.feed(record[:10]) == []
        assert parser.feed(record[10:]) == [AnswerChunk("hello")]
        assert parser.malformed_records == 0

    def test_split_at_every_offset_matches_whole(self) -> None:
        record = sse_record({"reasoning_content": "think", "content": "say"})
        whole = UpstreamStreamParser().feed(record)

        for offset in range(1, len(record)):
            parser = UpstreamStreamParser()
            deltas = parser.feed(record[:offset]) + parser.feed(record[offset:])
            assert deltas == whole, f"split at {offset}"
            assert parser.malformed_records == 0

    def test_multibyte_character_split(self) -> None:
        record = sse_record({"content": "你好"})
        # Split inside the UTF-8 encoding of the first character
        cut = record.index("你".encode()) + 1
        parser = UpstreamStreamParser()

        deltas = parser.feed(record[:cut]) + parser.feed(record[cut:])

        assert deltas == [AnswerChunk("你好")]

    def test_crlf_framing(self) -> None:
        payload = json.dumps({"choices": [{"delta": {"content": "x"}}]})
        data = f"data: {payload}\r\n\r\n".encode()
        parser = UpstreamStreamParser()

        # CR and LF arrive in separate reads
        deltas = parser.feed(data[:-1]) + parser.feed(data[-1:])

        assert deltas == [AnswerChunk("x")]

    def test_done_sentinel_finishes(self) -> None:
        parser = UpstreamStreamParser()
        deltas = parser.feed(sse_record({"content": "a"}) + DONE_RECORD + sse_record({"content": "late"}))

        assert deltas == [AnswerChunk("a"), StreamEnd(terminated=True)]
        assert parser.finished
        assert parser.feed(sse_record({"content": "more"})) == []

    def test_malformed_record_skipped(self, caplog) -> None:
        parser = UpstreamStreamParser()
        data = b"data: {not json\n\n" + sse_record({"content": "ok"})

        with caplog.at_level(logging.WARNING):
            deltas = parser.feed(data)

        assert deltas == [AnswerChunk("ok")]
        assert parser.malformed_records == 1
        assert "malformed" in caplog.text

    def test_comment_and_non_data_lines_ignored(self) -> None:
        parser = UpstreamStreamParser()
        data = b": keep-alive\n\nevent: message\n" + sse_record({"content": "x"})

        assert parser.feed(data) == [AnswerChunk("x")]

    def test_prefix_without_space(self) -> None:
        payload = json.dumps({"choices": [{"delta": {"content": "x"}}]})
        parser = UpstreamStreamParser()

        assert parser.feed(f"data:{payload}\n\n".encode()) == [AnswerChunk("x")]

    def test_close_flushes_unterminated_record(self) -> None:
        parser = UpstreamStreamParser()
        record = sse_record({"content": "tail"}).rstrip(b"\n")

        assert parser.feed(record) == []
        assert parser.close() == [AnswerChunk("tail"), StreamEnd(terminated=False)]
        assert parser.close() == []


class TestIterDeltas:
    """Tests for the lazy async sequence."""

    @pytest.mark.asyncio
    async def test_sequence_ends_at_sentinel(self) -> None:
        deltas = await _collect(
            sse_record({"reasoning_content": "a"}),
            sse_record({"reasoning_content": "b"}),
            sse_record({"content": "x"}),
            DONE_RECORD,
        )

        assert deltas == [ReasoningChunk("a"), ReasoningChunk("b"), AnswerChunk("x")]

    @pytest.mark.asyncio
    async def test_stops_reading_after_sentinel(self) -> None:
        reads = []

        async def source():
            for part in (sse_record({"content": "x"}) + DONE_RECORD, sse_record({"content": "y"})):
                reads.append(part)
                yield part

        deltas = [d async for d in iter_deltas(source())]

        assert deltas == [AnswerChunk("x")]
        assert len(reads) == 1

    @pytest.mark.asyncio
    async def test_eof_without_sentinel(self) -> None:
        deltas = await _collect(sse_record({"content": "x"}))
        assert deltas == [AnswerChunk("x")]

    @pytest.mark.asyncio
    async def test_byte_at_a_time(self) -> None:
        data = (
            sse_record({"reasoning_content": "r"})
            + b"data: garbage\n\n"
            + sse_record({"content": "c"})
            + DONE_RECORD
        )

        deltas = await _collect(*(data[i:i + 1] for i in range(len(data))))

        assert deltas == [ReasoningChunk("r"), AnswerChunk("c")]
