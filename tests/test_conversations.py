"""Tests for the conversation session store and exports"""

import csv
import io
import json

import pytest

from ellu.conversations import ConversationManager, Message, generate_session_title
from ellu.handlers import ValidationError


def assistant_reply(content, total_tokens=150, total_cost=0.0002):
    return Message.create(
        "assistant",
        content,
        sources=[{"title": "Pattern Making Fundamentals", "section": "Darts"}],
        processing_time=820,
        token_usage={"total_tokens": total_tokens, "cost": {"total_cost": total_cost}},
    )


@pytest.fixture
def manager(tmp_path):
    return ConversationManager(str(tmp_path / "conversations" / "sessions.json"), max_sessions=3)


class TestSessionTitle:

    def test_empty(self):
        assert generate_session_title([]) == "New Conversation"

    def test_short_question_kept_whole(self):
        assert generate_session_title([Message.user("What is a dart?")]) == "What is a dart?"

    def test_long_question_cut_at_word(self):
        title = generate_session_title([
            Message.user("How do I add seam allowance to a curved princess seam on the bodice?")
        ])

        assert title == "How do I add seam allowance to a curved..."

    def test_skips_short_messages(self):
        messages = [Message.user("hi"), assistant_reply("Hello!"), Message.user("How do darts work?")]

        assert generate_session_title(messages) == "How do darts work?"

    def test_falls_back_to_date(self):
        message = Message.user("hi")
        message.timestamp = "2024-03-05T10:00:00+00:00"

        assert generate_session_title([message]) == "Conversation 2024-03-05"


class TestSessions:

    def test_create_and_get(self, manager):
        session = manager.create_session("de")

        stored = manager.get_session(session.id)
        assert stored.id.startswith("session_")
        assert stored.title == "New Conversation"
        assert stored.language == "de"
        assert stored.message_count == 0

    def test_ids_are_unique(self, manager):
        ids = {manager.create_session().id for _ in range(3)}

        assert len(ids) == 3

    def test_add_messages_updates_totals_and_title(self, manager):
        session = manager.create_session()

        manager.add_messages(
            session.id,
            Message.user("How do I true a dart?"),
            assistant_reply("Fold the dart closed and redraw the seam line.", 100, 0.0001),
        )
        updated = manager.add_messages(
            session.id,
            Message.user("And the dart point?"),
            assistant_reply("Stop 1 cm before the apex.", 50, 0.00005),
        )

        assert updated.message_count == 4
        assert updated.total_tokens == 150
        assert updated.total_cost == pytest.approx(0.00015)
        assert updated.title == "How do I true a dart?"
        assert manager.get_session(session.id).messages[1].sources[0]["section"] == "Darts"

    def test_add_to_missing_session(self, manager):
        assert manager.add_messages("session_missing", Message.user("hello there")) is None

    def test_keeps_most_recent_sessions(self, manager):
        first = manager.create_session()
        for _ in range(3):
            manager.create_session()

        sessions = manager.get_sessions()
        assert len(sessions) == 3
        assert first.id not in {s.id for s in sessions}

    def test_delete_clears_current(self, manager):
        session = manager.create_session()
        manager.set_current_session_id(session.id)

        assert manager.delete_session(session.id)
        assert manager.get_current_session_id() is None
        assert not manager.delete_session(session.id)

    def test_persists_across_instances(self, manager):
        session = manager.create_session()
        manager.add_messages(session.id, Message.user("What is ease in a sleeve?"))

        reopened = ConversationManager(str(manager.storage_file))
        assert reopened.get_session(session.id).messages[0].content == "What is ease in a sleeve?"

    def test_corrupt_file_treated_as_empty(self, manager):
        manager.storage_file.parent.mkdir(parents=True)
        manager.storage_file.write_text("{not json", encoding="utf-8")

        assert manager.get_sessions() == []

    def test_clear_all_data(self, manager):
        manager.create_session()
        manager.clear_all_data()

        assert manager.get_sessions() == []
        assert not manager.storage_file.exists()

    def test_stats(self, manager):
        assert manager.get_stats()["most_active_day"] == "No data"

        session = manager.create_session()
        manager.add_messages(session.id, Message.user("What is a toile?"), assistant_reply("A test garment."))

        stats = manager.get_stats()
        assert stats["total_sessions"] == 1
        assert stats["total_messages"] == 2
        assert stats["total_tokens"] == 150
        assert stats["average_messages_per_session"] == 2
        assert stats["most_active_day"] == session.created_at[:10]


class TestExport:

    @pytest.fixture
    def session_id(self, manager):
        session = manager.create_session()
        manager.add_messages(
            session.id,
            Message.user("What is <b>bias</b> cut?"),
            assistant_reply("Cutting at 45 degrees to the grain.\n\nIt drapes softly & stretches."),
        )
        return session.id

    def test_json(self, manager, session_id):
        data = json.loads(manager.export_session(session_id, "json"))

        assert data["session"]["id"] == session_id
        assert data["stats"]["message_count"] == 2
        assert [m["role"] for m in data["messages"]] == ["user", "assistant"]

    def test_csv(self, manager, session_id):
        rows = list(csv.reader(io.StringIO(manager.export_session(session_id, "csv").decode("utf-8"))))

        assert rows[0] == ["Timestamp", "Role", "Content", "Tokens", "Cost"]
        assert rows[2][1] == "assistant"
        assert rows[2][2].startswith("Cutting at 45 degrees")
        assert rows[2][3] == "150"

    def test_pdf(self, manager, session_id):
        content = manager.export_session(session_id, "pdf")

        assert content.startswith(b"%PDF")

    def test_missing_session(self, manager):
        assert manager.export_session("session_missing", "json") is None

    def test_unknown_format(self, manager, session_id):
        with pytest.raises(ValidationError, match="Unsupported export format"):
            manager.export_session(session_id, "xlsx")
