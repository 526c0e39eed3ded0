"""Streaming response collector.

Reads an incremental text source in its own asyncio task, reports the growing
buffer through `on_partial`, and on end-of-stream delivers the filtered final
text through `on_complete`.

    idle → accumulating → finalizing → done
                        ↘ cancelled        (cancel())
                        ↘ failed           (source raised)
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from collections.abc import AsyncIterator, Callable
from typing import Literal

from therapy_roleplay.analyzers import filter_banned_phrases

logger = logging.getLogger(__name__)

CollectorState = Literal[
    "idle", "accumulating", "finalizing", "done", "cancelled", "failed"
]

FALLBACK_SENTENCE = (
    "I'd like to take a moment with that. "
    "Could you tell me a bit more about what happened?"
)


async def _aclose(source: object) -> None:
    aclose = getattr(source, "aclose", None)
    if aclose is not None:
        await aclose()


class StreamCollector:
    """Accumulates one streamed response.

    Args:
        source:      Async iterator of `str` or UTF-8 `bytes` chunks.
        on_partial:  Called with the whole buffer after every non-empty chunk.
        on_complete: Called once with the final filtered text.
        fallback:    Text delivered when the source yields nothing; `used_fallback`
                     is set when that happens.
    """

    def __init__(
        self,
        source: AsyncIterator[str | bytes],
        on_partial: Callable[[str], None] | None = None,
        on_complete: Callable[[str], None] | None = None,
        fallback: str = FALLBACK_SENTENCE,
    ) -> None:
        self._source = source
        self._on_partial = on_partial
        self._on_complete = on_complete
        self._fallback = fallback
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._chunks: list[str] = []
        self._task: asyncio.Task[str] | None = None
        self._cancel_requested = False
        self.used_fallback = False
        self.state: CollectorState = "idle"

    @property
    def text(self) -> str:
        """Raw (unfiltered) text received so far."""
        return "".join(self._chunks)

    async def start(self) -> str | None:
        """Read the source to the end.

        Returns the final text, or None when cancel() stopped the stream.
        Errors raised by the source propagate.
        """
        if self.state != "idle":
            raise RuntimeError(f"collector already started (state={self.state})")
        self.state = "accumulating"
        self._task = asyncio.create_task(self._pump())
        try:
            return await self._task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if self._cancel_requested and not (current and current.cancelling()):
                return None
            raise

    def cancel(self) -> bool:
        """Stop reading. Only valid while accumulating; returns whether it took effect."""
        if self.state != "accumulating" or self._task is None:
            return False
        self._cancel_requested = True
        self.state = "cancelled"
        self._task.cancel()
        logger.debug("stream cancelled after %d chars", len(self.text))
        return True

    async def _pump(self) -> str:
        try:
            async for chunk in self._source:
                piece = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
                if not piece:
                    continue
                self._chunks.append(piece)
                if self._on_partial and self.state == "accumulating":
                    self._on_partial(self.text)
        except asyncio.CancelledError:
            self.state = "cancelled"
            await _aclose(self._source)
            raise
        except Exception:
            self.state = "failed"
            raise

        tail = self._decoder.decode(b"", final=True)
        if tail:
            self._chunks.append(tail)

        self.state = "finalizing"
        final = self._finalize(self.text)
        self.state = "done"
        if self._on_complete:
            self._on_complete(final)
        return final

    def _finalize(self, raw: str) -> str:
        if not raw.strip():
            logger.info("empty stream, using fallback sentence")
            self.used_fallback = True
            return self._fallback
        return filter_banned_phrases(raw).strip()
