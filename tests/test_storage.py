"""Tests for therapy_roleplay.storage: JSON and in-memory message stores."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from therapy_roleplay.models import Message
from therapy_roleplay.storage import (
    JsonMessageStore,
    MemoryMessageStore,
    StoreError,
    validate_session_id,
)


@pytest.fixture
def json_store(tmp_path: Path) -> JsonMessageStore:
    return JsonMessageStore(tmp_path)


def _msg(speaker: str, text: str) -> Message:
    return Message(speaker=speaker, text=text, status="sent")


class TestJsonMessageStore:
    def test_creates_sessions_dir(self, tmp_path: Path) -> None:
        JsonMessageStore(tmp_path)
        assert (tmp_path / "sessions").is_dir()

    def test_append_and_list(self, json_store: JsonMessageStore, tmp_path: Path) -> None:
        json_store.append("s1", _msg("patient", "Hello"))
        json_store.append("s1", _msg("therapist", "Tell me more."))
        recent = json_store.list_recent("s1", 10)
        assert [m.text for m in recent] == ["Hello", "Tell me more."]
        assert recent[0].speaker == "patient"

        data = json.loads((tmp_path / "sessions" / "s1" / "messages.json").read_text())
        assert data[1]["speaker"] == "therapist"
        assert data[1]["status"] == "sent"

    def test_list_recent_limit(self, json_store: JsonMessageStore) -> None:
        for i in range(5):
            json_store.append("s1", _msg("patient", f"m{i}"))
        assert [m.text for m in json_store.list_recent("s1", 2)] == ["m3", "m4"]
        assert json_store.list_recent("s1", 0) == []

    def test_unknown_session_is_empty(self, json_store: JsonMessageStore) -> None:
        assert json_store.list_recent("nobody", 5) == []

    def test_sessions_are_isolated(self, json_store: JsonMessageStore) -> None:
        json_store.append("a", _msg("patient", "A"))
        json_store.append("b", _msg("patient", "B"))
        assert [m.text for m in json_store.list_recent("a", 5)] == ["A"]
        assert json_store.list_sessions() == ["a", "b"]

    def test_prune_empty(self, json_store: JsonMessageStore) -> None:
        json_store.append("s1", _msg("patient", "Hello"))
        json_store.append("s1", Message(speaker="therapist", text="", status="failed"))
        assert json_store.prune_empty("s1") == 1
        assert [m.text for m in json_store.list_recent("s1", 10)] == ["Hello"]
        assert json_store.prune_empty("s1") == 0

    def test_write_failure_raises_store_error(self, json_store: JsonMessageStore) -> None:
        with patch.object(json_store, "_write_json", side_effect=OSError("disk full")):
            with pytest.raises(StoreError, match="disk full"):
                json_store.append("s1", _msg("patient", "Hello"))

    def test_invalid_session_id_raises_store_error(self, json_store: JsonMessageStore) -> None:
        with pytest.raises(StoreError):
            json_store.append("../escape", _msg("patient", "x"))

    def test_corrupt_file_raises_store_error(self, json_store: JsonMessageStore, tmp_path: Path) -> None:
        path = tmp_path / "sessions" / "s1" / "messages.json"
        path.parent.mkdir(parents=True)
        path.write_text("[{not json")
        with pytest.raises(StoreError, match="Could not read"):
            json_store.list_recent("s1", 5)
        with pytest.raises(StoreError):
            json_store.prune_empty("s1")
        with pytest.raises(StoreError):
            json_store.append("s1", _msg("patient", "Hello"))

    def test_malformed_message_raises_store_error(self, json_store: JsonMessageStore, tmp_path: Path) -> None:
        path = tmp_path / "sessions" / "s1" / "messages.json"
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps([{"speaker": "narrator", "text": "x"}]))
        with pytest.raises(StoreError):
            json_store.list_recent("s1", 5)


class TestMemoryMessageStore:
    def test_append_list_prune(self) -> None:
        store = MemoryMessageStore()
        store.append("s1", _msg("patient", "Hi"))
        store.append("s1", Message(speaker="therapist"))
        assert len(store.list_recent("s1", 10)) == 2
        assert store.prune_empty("s1") == 1
        assert [m.text for m in store.list_recent("s1", 10)] == ["Hi"]

    def test_returns_copies(self) -> None:
        store = MemoryMessageStore()
        original = _msg("patient", "Hi")
        store.append("s1", original)
        original.text = "changed"
        assert store.list_recent("s1", 1)[0].text == "Hi"


@pytest.mark.parametrize("session_id", ["s1", "session-2024_01", "A"])
def test_valid_session_ids(session_id):
    assert validate_session_id(session_id) == session_id


@pytest.mark.parametrize("session_id", ["", "../x", "a/b", "bad id", "-lead", "x" * 65])
def test_invalid_session_ids(session_id):
    with pytest.raises(ValueError):
        validate_session_id(session_id)
