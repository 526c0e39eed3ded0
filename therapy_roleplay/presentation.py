"""Presentation collaborator.

The orchestrator pushes progress out through an object matching:

    on_partial(message)              streaming text grew
    on_turn_complete(message)        message finalised
    on_conversation_stopped(reason)  the loop ended
    on_warning(text)                 non-blocking problem, e.g. a failed save

EventRecorder keeps a bounded log that the HTTP layer serves for polling.
"""

from __future__ import annotations

import itertools
from collections import deque
from datetime import datetime, timezone
from typing import Any, Protocol

from therapy_roleplay.models import Message


class Presentation(Protocol):
    def on_partial(self, message: Message) -> None: ...

    def on_turn_complete(self, message: Message) -> None: ...

    def on_conversation_stopped(self, reason: str) -> None: ...

    def on_warning(self, text: str) -> None: ...


class NullPresentation:
    def on_partial(self, message: Message) -> None:
        pass

    def on_turn_complete(self, message: Message) -> None:
        pass

    def on_conversation_stopped(self, reason: str) -> None:
        pass

    def on_warning(self, text: str) -> None:
        pass


class EventRecorder:
    """Records events as dicts with a monotonically increasing `seq`.

    Partial events are coalesced: a new partial replaces the previous one
    when nothing else was recorded in between, so a long stream does not
    push finished turns out of the window.
    """

    def __init__(self, limit: int = 200) -> None:
        self.events: deque[dict[str, Any]] = deque(maxlen=limit)
        self._seq = itertools.count(1)

    def _record(self, kind: str, **payload: Any) -> None:
        self.events.append({
            "seq": next(self._seq),
            "type": kind,
            "at": datetime.now(timezone.utc).isoformat(),
            **payload,
        })

    def on_partial(self, message: Message) -> None:
        if self.events and self.events[-1]["type"] == "partial":
            self.events.pop()
        self._record("partial", speaker=message.speaker, text=message.text)

    def on_turn_complete(self, message: Message) -> None:
        self._record("turn_complete", message=message.model_dump(mode="json"))

    def on_conversation_stopped(self, reason: str) -> None:
        self._record("stopped", reason=reason)

    def on_warning(self, text: str) -> None:
        self._record("warning", text=text)

    def since(self, seq: int = 0) -> list[dict[str, Any]]:
        return [e for e in self.events if e["seq"] > seq]
