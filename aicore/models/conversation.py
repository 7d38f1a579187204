from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Float, Text, JSON, ForeignKey,
    UniqueConstraint, Index, event,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from aicore.database import Base
from aicore.exceptions import StateConflict
import enum


class MessageRole(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, nullable=False, index=True)
    model_id = Column(Integer, ForeignKey("ai_models.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)

    # Opaque link to a business record (crm lead, invoice, ticket, ...)
    context_type = Column(String(50), nullable=True, index=True)
    context_id = Column(Integer, nullable=True)

    # Rolling aggregates. Only ever changed by single-statement increments.
    message_count = Column(Integer, nullable=False, default=0)
    total_tokens = Column(Integer, nullable=False, default=0)
    total_cost = Column(Float, nullable=False, default=0.0)
    last_message_at = Column(DateTime, nullable=True, index=True)

    is_archived = Column(Boolean, nullable=False, default=False)
    metadata_ = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    messages = relationship(
        "ConversationMessage",
        back_populates="conversation",
        order_by="ConversationMessage.sequence",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    model = relationship("AIModel")

    @property
    def state(self) -> str:
        return "archived" if self.is_archived else "active"


class ConversationMessage(Base):
    """One transcript entry. Written once, never edited or reordered."""
    __tablename__ = "conversation_messages"

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(
        Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    sequence = Column(Integer, nullable=False)  # 1-based position in the transcript
    role = Column(String(20), nullable=False)
    content = Column(Text, nullable=False)
    metadata_ = Column("metadata", JSON, default=dict)
    timestamp = Column(DateTime, nullable=False)

    conversation = relationship("Conversation", back_populates="messages")

    __table_args__ = (
        UniqueConstraint("conversation_id", "sequence", name="uix_conversation_sequence"),
        Index("idx_conversation_messages_conversation", "conversation_id", "sequence"),
    )

    def to_dict(self) -> dict:
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
            "metadata": self.metadata_ or {},
        }


@event.listens_for(ConversationMessage, "before_update")
def _reject_message_update(mapper, connection, target):
    raise StateConflict(
        "Conversation messages are immutable once appended",
        {"message_id": target.id},
    )
