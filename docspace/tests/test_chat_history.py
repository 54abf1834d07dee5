"""
Unit tests for the chat history reconciler.

Tests cover:
- Optimistic append, acknowledge and rollback lifecycle
- Temp-id isolation between concurrent sends (out-of-order acks)
- No-op acknowledge/rollback for unknown temp ids
- Duplicate temp ids rejected
- Refresh merging keeps pending entries
- Wire-format parsing of server messages
"""

from datetime import datetime, timezone

import pytest

from docspace.core.chat_history import (
    ChatMessage,
    DuplicateTempIdError,
    MessageRole,
    PendingChatMessage,
    acknowledge,
    append_optimistic,
    apply_refresh,
    is_temp_id,
    new_temp_id,
    parse_server_message,
    rollback,
)

NOW = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)


def server_message(message_id, content, role=MessageRole.USER) -> ChatMessage:
    return ChatMessage(id=message_id, role=role, content=content, timestamp=NOW)


@pytest.fixture
def history():
    """Two confirmed messages already on the server."""
    return [
        server_message(1, "What is this form?"),
        server_message(2, "A visa application.", MessageRole.ASSISTANT),
    ]


# =============================================================
# Test: Optimistic lifecycle
# =============================================================


class TestOptimisticLifecycle:
    """append_optimistic → acknowledge | rollback."""

    def test_append_adds_pending_entry_at_end(self, history):
        updated = append_optimistic(history, "t1", "hi")
        assert len(updated) == len(history) + 1
        last = updated[-1]
        assert isinstance(last, PendingChatMessage)
        assert last.temp_id == "t1"
        assert last.role is MessageRole.USER
        assert last.content == "hi"

    def test_append_does_not_mutate(self, history):
        before = list(history)
        append_optimistic(history, "t1", "hi")
        assert history == before

    def test_acknowledge_replaces_pending(self, history):
        pending = append_optimistic(history, "t1", "hi")
        confirmed = acknowledge(pending, "t1", server_message(3, "hi"))
        assert len(confirmed) == len(pending)
        last = confirmed[-1]
        assert isinstance(last, ChatMessage)
        assert last.id == 3
        assert not hasattr(last, "temp_id")

    def test_rollback_removes_pending(self, history):
        pending = append_optimistic(history, "t1", "hi")
        assert rollback(pending, "t1") == history

    def test_rollback_after_acknowledge_is_noop(self, history):
        pending = append_optimistic(history, "t1", "hi")
        confirmed = acknowledge(pending, "t1", server_message(3, "hi"))
        assert rollback(confirmed, "t1") == confirmed

    def test_acknowledge_after_rollback_is_noop(self, history):
        pending = append_optimistic(history, "t1", "hi")
        rolled_back = rollback(pending, "t1")
        assert acknowledge(rolled_back, "t1", server_message(3, "hi")) == rolled_back

    def test_acknowledge_unknown_temp_id_is_noop(self, history):
        assert acknowledge(history, "missing", server_message(9, "x")) == history

    def test_duplicate_temp_id_rejected(self, history):
        pending = append_optimistic(history, "t1", "hi")
        with pytest.raises(DuplicateTempIdError):
            append_optimistic(pending, "t1", "again")

    def test_temp_id_reusable_after_acknowledge(self, history):
        pending = append_optimistic(history, "t1", "hi")
        confirmed = acknowledge(pending, "t1", server_message(3, "hi"))
        again = append_optimistic(confirmed, "t1", "second")
        assert again[-1].temp_id == "t1"

    def test_acknowledge_when_refresh_already_delivered(self, history):
        pending = append_optimistic(history, "t1", "hi")
        refreshed = apply_refresh(pending, [*history, server_message(3, "hi")])
        confirmed = acknowledge(refreshed, "t1", server_message(3, "hi"))
        assert [getattr(e, "id", None) for e in confirmed] == [1, 2, 3]


# =============================================================
# Test: Concurrent sends
# =============================================================


class TestConcurrentSends:
    """Each ack/rollback only touches its own temp id."""

    def test_rollback_first_leaves_second(self, history):
        h = append_optimistic(history, "t1", "first")
        h = append_optimistic(h, "t2", "second")
        h = rollback(h, "t1")
        assert len(h) == len(history) + 1
        assert h[-1].temp_id == "t2"
        assert h[-1].content == "second"

    def test_out_of_order_acknowledgments(self, history):
        h = append_optimistic(history, "t1", "first")
        h = append_optimistic(h, "t2", "second")
        h = acknowledge(h, "t2", server_message(11, "second"))
        h = acknowledge(h, "t1", server_message(10, "first"))
        assert [e.content for e in h[-2:]] == ["first", "second"]
        assert [e.id for e in h[-2:]] == [10, 11]

    def test_ack_one_rollback_other(self, history):
        h = append_optimistic(history, "t1", "first")
        h = append_optimistic(h, "t2", "second")
        h = acknowledge(h, "t2", server_message(11, "second"))
        h = rollback(h, "t1")
        assert h == [*history, server_message(11, "second")]


# =============================================================
# Test: Refresh
# =============================================================


class TestApplyRefresh:
    """Full-history refresh from the server."""

    def test_server_order_then_pending(self, history):
        h = append_optimistic(history, "t1", "pending one")
        server = [*history, server_message(3, "answer", MessageRole.ASSISTANT)]
        refreshed = apply_refresh(h, server)
        assert refreshed[:3] == server
        assert refreshed[3].temp_id == "t1"

    def test_refresh_without_pending(self, history):
        server = [server_message(5, "only")]
        assert apply_refresh(history, server) == server

    def test_keeps_recent_acknowledgment_missing_from_listing(self, history):
        h = append_optimistic(history, "t1", "late")
        h = acknowledge(h, "t1", server_message(3, "late"))
        h = append_optimistic(h, "t2", "pending")
        refreshed = apply_refresh(h, history, keep_ids=[3])
        assert [e.content for e in refreshed] == [
            "What is this form?", "A visa application.", "late", "pending",
        ]

    def test_kept_id_already_listed_not_duplicated(self, history):
        server = [*history, server_message(3, "late")]
        h = acknowledge(append_optimistic(history, "t1", "late"), "t1", server_message(3, "late"))
        assert apply_refresh(h, server, keep_ids=[3]) == server


# =============================================================
# Test: Temp ids and wire format
# =============================================================


class TestTempIds:
    def test_temp_ids_are_unique(self):
        ids = {new_temp_id() for _ in range(100)}
        assert len(ids) == 100

    def test_temp_ids_are_recognizable(self):
        assert is_temp_id(new_temp_id())
        assert not is_temp_id(42)
        assert not is_temp_id("42")


class TestParseServerMessage:
    """Normalizing backend messages."""

    def test_legacy_shape(self):
        msg = parse_server_message({
            "id": 7,
            "message": "Hello",
            "is_user_message": 1,
            "created_at": "2024-05-01T10:00:00",
            "project_id": 3,
        })
        assert msg.id == 7
        assert msg.role is MessageRole.USER
        assert msg.content == "Hello"
        assert msg.timestamp == NOW

    def test_assistant_in_legacy_shape(self):
        msg = parse_server_message({"id": 8, "message": "Hi", "is_user_message": 0})
        assert msg.role is MessageRole.ASSISTANT

    def test_role_shape(self):
        msg = parse_server_message({
            "id": "m-1",
            "role": "assistant",
            "content": "Answer",
            "timestamp": "2024-05-01T10:00:00Z",
        })
        assert msg.id == "m-1"
        assert msg.role is MessageRole.ASSISTANT
        assert msg.timestamp == NOW

    def test_missing_id_rejected(self):
        with pytest.raises(ValueError):
            parse_server_message({"message": "x", "is_user_message": 1})

    def test_temp_id_as_server_id_rejected(self):
        with pytest.raises(ValueError):
            parse_server_message({"id": new_temp_id(), "message": "x"})

    def test_unknown_role_rejected(self):
        with pytest.raises(ValueError):
            parse_server_message({"id": 1, "role": "robot", "content": "x"})
