"""Tests for conversations: append ordering, archive state, usage totals, deletion."""
import pytest
from datetime import timedelta
from unittest.mock import patch

from aicore.exceptions import NotFound, StateConflict, ValidationError
from aicore.models import Conversation, ConversationMessage, UsageLog
from aicore.services.conversation_ledger import ConversationLedger
from aicore.services.registry import ModelRegistry
from aicore.utils.clock import utcnow


@pytest.fixture
def ledger(db_session):
    return ConversationLedger(db_session)


@pytest.fixture
def conversation(ledger, ai_model):
    return ledger.create(1, ai_model, "Lead follow-up", context_type="crm_lead", context_id=42)


class TestCreate:
    def test_starts_empty_and_active(self, conversation):
        assert conversation.message_count == 0
        assert conversation.total_tokens == 0
        assert conversation.total_cost == 0.0
        assert conversation.is_archived is False
        assert conversation.state == "active"
        assert conversation.last_message_at is not None

    def test_initial_message_appended(self, ledger, ai_model):
        conv = ledger.create(1, ai_model, "Hello", initial_message="first question")
        transcript = ledger.messages(conv)
        assert conv.message_count == 1
        assert [(m.sequence, m.role, m.content) for m in transcript] == [(1, "user", "first question")]

    def test_unknown_model_rejected(self, ledger, ai_model):
        with pytest.raises(ValidationError):
            ledger.create(1, ai_model.id + 100, "Nope")

    def test_context_id_without_type_rejected(self, ledger, ai_model):
        with pytest.raises(ValidationError):
            ledger.create(1, ai_model, "Nope", context_id=5)


class TestAppendMessage:
    def test_sequence_and_count_advance_together(self, ledger, conversation):
        ledger.append_message(conversation, "user", "hi")
        ledger.append_message(conversation, "assistant", "hello!", {"usage_log_id": 7})
        ledger.append_message(conversation, "user", "thanks")

        transcript = ledger.messages(conversation)
        assert conversation.message_count == 3
        assert [m.sequence for m in transcript] == [1, 2, 3]
        assert [m.role for m in transcript] == ["user", "assistant", "user"]
        assert transcript[1].to_dict()["metadata"] == {"usage_log_id": 7}

    def test_empty_content_allowed(self, ledger, conversation):
        message = ledger.append_message(conversation, "system", "")
        assert message.content == ""

    def test_unknown_role_rejected(self, ledger, conversation):
        with pytest.raises(ValidationError) as exc:
            ledger.append_message(conversation, "moderator", "x")
        assert exc.value.details["allowed_roles"] == ["user", "assistant", "system"]
        assert conversation.message_count == 0

    def test_last_message_at_never_moves_backwards(self, ledger, conversation, db_session):
        later = utcnow() + timedelta(hours=1)
        ledger.append_message(conversation, "user", "from the future")

        with patch("aicore.services.conversation_ledger.utcnow", return_value=later):
            ledger.append_message(conversation, "user", "later")
        assert conversation.last_message_at == later

        with patch("aicore.services.conversation_ledger.utcnow", return_value=later - timedelta(days=1)):
            ledger.append_message(conversation, "user", "clock skew")
        assert conversation.last_message_at == later

    def test_messages_are_immutable(self, ledger, conversation, db_session):
        message = ledger.append_message(conversation, "user", "original")
        message.content = "edited"
        with pytest.raises(StateConflict):
            db_session.commit()
        db_session.rollback()


class TestConcurrentAppend:
    def test_stale_readers_get_distinct_sequences(self, file_sessions):
        first, second = file_sessions
        registry = ModelRegistry(first)
        service = registry.register_service("OpenAI", "openai")
        model = registry.register_model(service, "GPT", "gpt-4o", 0.0001, 0.0001)
        conversation_id = ConversationLedger(first).create(1, model, "Shared").id

        # Both sessions load the conversation before either message lands
        seen_by_first = ConversationLedger(first).get(conversation_id)
        seen_by_second = ConversationLedger(second).get(conversation_id)
        assert seen_by_first.message_count == seen_by_second.message_count == 0

        ConversationLedger(first).append_message(seen_by_first, "user", "from the first tab")
        ConversationLedger(second).append_message(seen_by_second, "user", "from the second tab")

        first.expire_all()
        ledger = ConversationLedger(first)
        final = ledger.get(conversation_id)
        transcript = ledger.messages(final)
        assert final.message_count == 2
        assert [m.sequence for m in transcript] == [1, 2]
        assert len(transcript) == 2
        assert [m.content for m in transcript] == ["from the first tab", "from the second tab"]


class TestArchive:
    def test_archived_rejects_append_until_unarchived(self, ledger, conversation):
        ledger.archive(conversation)
        assert conversation.state == "archived"
        with pytest.raises(StateConflict):
            ledger.append_message(conversation, "user", "hi")
        assert conversation.message_count == 0

        ledger.unarchive(conversation)
        ledger.append_message(conversation, "user", "hi")
        assert conversation.message_count == 1

    def test_archived_transcript_still_readable(self, ledger, conversation):
        ledger.append_message(conversation, "user", "hi")
        ledger.archive(conversation)
        assert [m.content for m in ledger.messages(conversation)] == ["hi"]

    def test_archive_twice_is_harmless(self, ledger, conversation):
        ledger.archive(conversation)
        ledger.archive(conversation)
        assert conversation.is_archived is True


class TestRecordUsage:
    def test_totals_accumulate(self, ledger, conversation, make_usage_log):
        first = make_usage_log(conversation_id=conversation.id, input_tokens=30, output_tokens=70, cost=0.01)
        second = make_usage_log(conversation_id=conversation.id, input_tokens=50, output_tokens=50, cost=0.02)
        ledger.record_usage(conversation, first)
        ledger.record_usage(conversation, second)

        assert conversation.total_tokens == 200
        assert conversation.total_cost == pytest.approx(0.03)
        assert conversation.message_count == 0

    def test_log_for_other_conversation_rejected(self, ledger, conversation, ai_model, make_usage_log):
        other = ledger.create(1, ai_model, "Other")
        log = make_usage_log(conversation_id=other.id)
        with pytest.raises(ValidationError):
            ledger.record_usage(conversation, log)


class TestDelete:
    def test_cascades_messages_and_keeps_usage_logs(self, ledger, conversation, db_session, make_usage_log):
        ledger.append_message(conversation, "user", "hi")
        log = make_usage_log(conversation_id=conversation.id)
        conversation_id, log_id = conversation.id, log.id

        ledger.delete(conversation)
        db_session.expire_all()

        assert db_session.get(Conversation, conversation_id) is None
        assert db_session.query(ConversationMessage).filter_by(conversation_id=conversation_id).count() == 0
        survivor = db_session.get(UsageLog, log_id)
        assert survivor is not None
        assert survivor.conversation_id is None

    def test_get_missing_raises(self, ledger):
        with pytest.raises(NotFound):
            ledger.get(12345)

    def test_get_scoped_to_owner(self, ledger, conversation):
        with pytest.raises(NotFound):
            ledger.get(conversation.id, owner_id=2)
        assert ledger.get(conversation.id, owner_id=1).id == conversation.id


class TestListingAndStatistics:
    def test_list_orders_by_recent_activity(self, ledger, ai_model):
        old = ledger.create(1, ai_model, "Old")
        new = ledger.create(1, ai_model, "New")
        later = utcnow() + timedelta(minutes=5)
        with patch("aicore.services.conversation_ledger.utcnow", return_value=later):
            ledger.append_message(old, "user", "bump")

        page = ledger.list(1)
        assert [c.id for c in page.items] == [old.id, new.id]

    def test_list_filters(self, ledger, ai_model, conversation):
        ledger.create(2, ai_model, "Someone else's")
        archived = ledger.create(1, ai_model, "Done")
        ledger.archive(archived)

        assert ledger.list(1).total == 2
        assert [c.id for c in ledger.list(1, archived=False).items] == [conversation.id]
        assert [c.id for c in ledger.list(1, context_type="crm_lead").items] == [conversation.id]
        assert [c.id for c in ledger.list(1, search="done").items] == [archived.id]

    def test_update_title_and_metadata(self, ledger, conversation):
        ledger.update(conversation, title="Renamed", metadata={"pinned": True})
        assert conversation.title == "Renamed"
        assert conversation.metadata_ == {"pinned": True}

    def test_statistics(self, ledger, ai_model, conversation):
        ledger.append_message(conversation, "user", "a")
        ledger.append_message(conversation, "assistant", "b")
        archived = ledger.create(1, ai_model, "Done")
        ledger.archive(archived)

        stats = ledger.statistics("30 days")
        assert stats["total_conversations"] == 2
        assert stats["active_conversations"] == 1
        assert stats["archived_conversations"] == 1
        assert stats["total_messages"] == 2
        assert stats["avg_messages_per_conversation"] == pytest.approx(1.0)
        assert stats["by_context_type"] == {"crm_lead": 1, "none": 1}
        assert ledger.context_types() == ["crm_lead"]

    def test_statistics_empty(self, ledger):
        stats = ledger.statistics("7 days")
        assert stats["total_conversations"] == 0
        assert stats["avg_messages_per_conversation"] == 0.0
        assert stats["by_context_type"] == {}
