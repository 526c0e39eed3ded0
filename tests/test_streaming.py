"""Tests for therapy_roleplay.streaming: StreamCollector state machine."""

import asyncio

import pytest

from therapy_roleplay.streaming import FALLBACK_SENTENCE, StreamCollector


async def _chunks(*items):
    for item in items:
        yield item


class TestHappyPath:
    async def test_accumulates_and_reports_partials(self) -> None:
        partials: list[str] = []
        completed: list[str] = []
        collector = StreamCollector(
            _chunks("Tell me ", "about ", "Tuesday."),
            on_partial=partials.append,
            on_complete=completed.append,
        )
        assert collector.state == "idle"
        result = await collector.start()
        assert result == "Tell me about Tuesday."
        assert partials == ["Tell me ", "Tell me about ", "Tell me about Tuesday."]
        assert completed == ["Tell me about Tuesday."]
        assert collector.state == "done"
        assert not collector.used_fallback

    async def test_filters_phrase_split_across_chunks(self) -> None:
        collector = StreamCollector(_chunks("You're walking on ", "eggshells."))
        assert await collector.start() == "You're navigating carefully."

    async def test_strips_surrounding_whitespace(self) -> None:
        collector = StreamCollector(_chunks("\n Hello there.\n"))
        assert await collector.start() == "Hello there."

    async def test_decodes_utf8_split_across_chunks(self) -> None:
        collector = StreamCollector(_chunks(b"caf\xc3", b"\xa9 time"))
        assert await collector.start() == "café time"

    async def test_empty_chunks_do_not_report_partials(self) -> None:
        partials: list[str] = []
        collector = StreamCollector(_chunks("", "Hi", ""), on_partial=partials.append)
        await collector.start()
        assert partials == ["Hi"]


class TestFallback:
    async def test_empty_stream_uses_fallback(self) -> None:
        completed: list[str] = []
        collector = StreamCollector(_chunks(), on_complete=completed.append)
        assert await collector.start() == FALLBACK_SENTENCE
        assert completed == [FALLBACK_SENTENCE]
        assert collector.used_fallback

    async def test_whitespace_stream_uses_custom_fallback(self) -> None:
        collector = StreamCollector(_chunks("  ", "\n"), fallback="Let me think.")
        assert await collector.start() == "Let me think."
        assert collector.used_fallback


class TestCancel:
    async def test_cancel_stops_stream_and_callbacks(self) -> None:
        gate = asyncio.Event()
        closed = asyncio.Event()
        partials: list[str] = []
        completed: list[str] = []

        async def source():
            try:
                yield "Hello"
                await gate.wait()
                yield " world"
            finally:
                closed.set()

        collector = StreamCollector(
            source(), on_partial=partials.append, on_complete=completed.append
        )
        task = asyncio.create_task(collector.start())
        while not partials:
            await asyncio.sleep(0)

        assert collector.cancel() is True
        assert await task is None
        assert collector.state == "cancelled"
        assert collector.text == "Hello"
        assert closed.is_set()
        assert partials == ["Hello"]
        assert completed == []

    async def test_cancel_before_start_is_ignored(self) -> None:
        collector = StreamCollector(_chunks("x"))
        assert collector.cancel() is False
        assert await collector.start() == "x"

    async def test_cancel_after_done_is_ignored(self) -> None:
        collector = StreamCollector(_chunks("x"))
        await collector.start()
        assert collector.cancel() is False
        assert collector.state == "done"

    async def test_outer_cancellation_propagates(self) -> None:
        started = asyncio.Event()

        async def source():
            yield "a"
            started.set()
            await asyncio.Event().wait()
            yield "b"

        collector = StreamCollector(source())
        task = asyncio.create_task(collector.start())
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert collector.state == "cancelled"


class TestErrors:
    async def test_source_error_propagates(self) -> None:
        async def source():
            yield "partial"
            raise ConnectionError("stream broke")

        completed: list[str] = []
        collector = StreamCollector(source(), on_complete=completed.append)
        with pytest.raises(ConnectionError):
            await collector.start()
        assert collector.state == "failed"
        assert completed == []

    async def test_cannot_start_twice(self) -> None:
        collector = StreamCollector(_chunks("x"))
        await collector.start()
        with pytest.raises(RuntimeError):
            await collector.start()
