"""Per-conversation transcripts and their rolling aggregates.

Counters on ``conversations`` (message_count, total_tokens, total_cost,
last_message_at) are only changed by single UPDATE statements that add to the
stored value, so concurrent appends and usage records never lose an increment.
"""
import logging
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from aicore.exceptions import NotFound, StateConflict, ValidationError
from aicore.models.conversation import Conversation, ConversationMessage, MessageRole
from aicore.models.registry import AIModel
from aicore.models.usage_log import UsageLog
from aicore.services.pagination import Page, paginate
from aicore.services.periods import PeriodLike, window_start
from aicore.utils.clock import utcnow

logger = logging.getLogger(__name__)


def _coerce_role(role: Union[str, MessageRole]) -> MessageRole:
    try:
        return MessageRole(role)
    except ValueError:
        allowed = [r.value for r in MessageRole]
        raise ValidationError(f"Unknown message role: {role!r}", {"allowed_roles": allowed})


class ConversationLedger:
    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        owner_id: int,
        model: Union[AIModel, int],
        title: str,
        context_type: Optional[str] = None,
        context_id: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        initial_message: Optional[str] = None,
    ) -> Conversation:
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("'title' is required", {"field": "title"})
        if len(title) > 255:
            raise ValidationError("'title' must be at most 255 characters", {"field": "title"})
        if context_id is not None and context_type is None:
            raise ValidationError("context_id requires a context_type", {"field": "context_type"})

        model_id = model.id if isinstance(model, AIModel) else model
        if self.db.get(AIModel, model_id) is None:
            raise ValidationError(f"AI model {model_id} does not exist", {"field": "model_id"})

        now = utcnow()
        conversation = Conversation(
            owner_id=owner_id,
            model_id=model_id,
            title=title,
            context_type=context_type,
            context_id=context_id,
            metadata_=dict(metadata or {}),
            message_count=0,
            total_tokens=0,
            total_cost=0.0,
            last_message_at=now,
            is_archived=False,
        )
        self.db.add(conversation)
        self.db.commit()
        self.db.refresh(conversation)
        logger.info(f"Created conversation {conversation.id} for user {owner_id} on model {model_id}")

        if initial_message:
            self.append_message(conversation, MessageRole.USER, initial_message)
        return conversation

    def get(self, conversation_id: int, owner_id: Optional[int] = None) -> Conversation:
        conversation = self.db.get(Conversation, conversation_id)
        if conversation is None or (owner_id is not None and conversation.owner_id != owner_id):
            raise NotFound(f"Conversation {conversation_id} not found", {"conversation_id": conversation_id})
        return conversation

    def update(
        self,
        conversation: Conversation,
        title: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Conversation:
        if title is not None:
            if not title.strip() or len(title) > 255:
                raise ValidationError("'title' must be 1-255 characters", {"field": "title"})
            conversation.title = title
        if metadata is not None:
            conversation.metadata_ = dict(metadata)
        self.db.commit()
        self.db.refresh(conversation)
        return conversation

    def append_message(
        self,
        conversation: Conversation,
        role: Union[str, MessageRole],
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
        commit: bool = True,
    ) -> ConversationMessage:
        role = _coerce_role(role)
        if not isinstance(content, str):
            raise ValidationError("Message content must be a string", {"field": "content"})

        now = utcnow()
        result = self.db.execute(
            update(Conversation)
            .where(Conversation.id == conversation.id, Conversation.is_archived == False)
            .values(
                message_count=Conversation.message_count + 1,
                last_message_at=case(
                    (Conversation.last_message_at > now, Conversation.last_message_at),
                    else_=now,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            current = self.db.get(Conversation, conversation.id)
            if current is None:
                raise NotFound(f"Conversation {conversation.id} not found", {"conversation_id": conversation.id})
            logger.warning(f"Append to archived conversation {conversation.id} rejected")
            raise StateConflict(
                "Cannot add messages to an archived conversation",
                {"conversation_id": conversation.id},
            )

        # The row is write-locked by the UPDATE until commit, so this is our slot
        sequence = self.db.execute(
            select(Conversation.message_count).where(Conversation.id == conversation.id)
        ).scalar_one()

        message = ConversationMessage(
            conversation_id=conversation.id,
            sequence=sequence,
            role=role.value,
            content=content,
            metadata_=dict(metadata or {}),
            timestamp=now,
        )
        self.db.add(message)
        if commit:
            self.db.commit()
            self.db.refresh(conversation)
            self.db.refresh(message)
        logger.info(f"Appended {role.value} message #{sequence} to conversation {conversation.id}")
        return message

    def messages(self, conversation: Conversation) -> List[ConversationMessage]:
        return (
            self.db.query(ConversationMessage)
            .filter(ConversationMessage.conversation_id == conversation.id)
            .order_by(ConversationMessage.sequence)
            .all()
        )

    def archive(self, conversation: Conversation) -> Conversation:
        return self._set_archived(conversation, True)

    def unarchive(self, conversation: Conversation) -> Conversation:
        return self._set_archived(conversation, False)

    def _set_archived(self, conversation: Conversation, archived: bool) -> Conversation:
        self.db.execute(
            update(Conversation)
            .where(Conversation.id == conversation.id)
            .values(is_archived=archived)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(conversation)
        logger.info(f"Conversation {conversation.id} {'archived' if archived else 'unarchived'}")
        return conversation

    def record_usage(self, conversation: Conversation, usage_log: UsageLog, commit: bool = True) -> None:
        """Fold one usage log into the conversation's token and cost totals."""
        if usage_log.conversation_id is not None and usage_log.conversation_id != conversation.id:
            raise ValidationError(
                "Usage log belongs to a different conversation",
                {"conversation_id": conversation.id, "usage_log_conversation_id": usage_log.conversation_id},
            )
        self.db.execute(
            update(Conversation)
            .where(Conversation.id == conversation.id)
            .values(
                total_tokens=Conversation.total_tokens + (usage_log.total_tokens or 0),
                total_cost=Conversation.total_cost + (usage_log.cost or 0.0),
            )
            .execution_options(synchronize_session=False)
        )
        if commit:
            self.db.commit()
            self.db.refresh(conversation)

    def delete(self, conversation: Conversation) -> None:
        conversation_id = conversation.id
        self.db.delete(conversation)
        self.db.commit()
        logger.info(f"Deleted conversation {conversation_id}")

    def list(
        self,
        owner_id: int,
        model_id: Optional[int] = None,
        context_type: Optional[str] = None,
        archived: Optional[bool] = None,
        search: Optional[str] = None,
        page: int = 1,
        per_page: Optional[int] = None,
    ) -> Page:
        query = self.db.query(Conversation).filter(Conversation.owner_id == owner_id)
        if model_id is not None:
            query = query.filter(Conversation.model_id == model_id)
        if context_type:
            query = query.filter(Conversation.context_type == context_type)
        if archived is not None:
            query = query.filter(Conversation.is_archived == archived)
        if search:
            query = query.filter(Conversation.title.ilike(f"%{search}%"))

        query = query.order_by(Conversation.last_message_at.desc(), Conversation.id.desc())
        return paginate(query, page, per_page)

    def context_types(self) -> List[str]:
        rows = self.db.query(Conversation.context_type).distinct().all()
        return sorted(r[0] for r in rows if r[0])

    def statistics(self, period: PeriodLike, owner_id: Optional[int] = None) -> Dict[str, Any]:
        base = self.db.query(Conversation).filter(Conversation.created_at >= window_start(period, utcnow()))
        if owner_id is not None:
            base = base.filter(Conversation.owner_id == owner_id)

        totals = base.with_entities(
            func.count(Conversation.id),
            func.coalesce(func.sum(Conversation.message_count), 0),
            func.coalesce(func.sum(Conversation.total_tokens), 0),
            func.coalesce(func.sum(Conversation.total_cost), 0.0),
        ).one()
        count, messages, tokens, cost = totals

        by_context = {
            (context or "none"): n
            for context, n in base.with_entities(Conversation.context_type, func.count(Conversation.id))
            .group_by(Conversation.context_type)
            .all()
        }

        return {
            "total_conversations": count,
            "active_conversations": base.filter(Conversation.is_archived == False).count(),
            "archived_conversations": base.filter(Conversation.is_archived == True).count(),
            "total_messages": int(messages),
            "total_tokens": int(tokens),
            "total_cost": round(float(cost), 6),
            "avg_messages_per_conversation": round(messages / count, 2) if count else 0.0,
            "avg_cost_per_conversation": round(float(cost) / count, 6) if count else 0.0,
            "by_context_type": by_context,
        }
