"""Append-only record of every AI invocation attempt. The source for all analytics."""
from sqlalchemy import (
    Column, Integer, String, DateTime, Float, Text, JSON, ForeignKey, Index, event,
)
from sqlalchemy.orm import relationship
from aicore.database import Base
from aicore.exceptions import StateConflict, ValidationError
import enum


class OperationType(str, enum.Enum):
    CHAT = "chat"
    COMPLETION = "completion"
    EMBEDDING = "embedding"
    IMAGE = "image"
    AUDIO = "audio"


class UsageStatus(str, enum.Enum):
    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    CANCELLED = "cancelled"


class UsageLog(Base):
    __tablename__ = "usage_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    model_id = Column(Integer, ForeignKey("ai_models.id"), nullable=False, index=True)
    # Audit rows outlive the conversation they were recorded against
    conversation_id = Column(
        Integer, ForeignKey("conversations.id", ondelete="SET NULL"), nullable=True, index=True
    )
    template_id = Column(Integer, ForeignKey("prompt_templates.id"), nullable=True, index=True)

    operation_type = Column(String(20), nullable=False)
    context_type = Column(String(50), nullable=True)
    context_id = Column(Integer, nullable=True)

    prompt = Column(Text, nullable=True)
    response = Column(Text, nullable=True)

    input_tokens = Column(Integer, nullable=False, default=0)
    output_tokens = Column(Integer, nullable=False, default=0)
    total_tokens = Column(Integer, nullable=False, default=0)
    cost = Column(Float, nullable=False, default=0.0)
    response_time_ms = Column(Integer, nullable=True)

    status = Column(String(20), nullable=False)
    error_message = Column(Text, nullable=True)
    metadata_ = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime, nullable=False)

    model = relationship("AIModel")

    __table_args__ = (
        Index("idx_usage_logs_created", "created_at"),
        Index("idx_usage_logs_user_created", "user_id", "created_at"),
        Index("idx_usage_logs_status_created", "status", "created_at"),
    )


@event.listens_for(UsageLog, "before_insert")
def _enforce_token_totals(mapper, connection, target):
    input_tokens = target.input_tokens or 0
    output_tokens = target.output_tokens or 0
    if input_tokens < 0 or output_tokens < 0:
        raise ValidationError("Token counts must be >= 0")
    if (target.cost or 0) < 0:
        raise ValidationError("Cost must be >= 0")
    target.input_tokens = input_tokens
    target.output_tokens = output_tokens
    target.total_tokens = input_tokens + output_tokens


@event.listens_for(UsageLog, "before_update")
def _reject_usage_log_update(mapper, connection, target):
    raise StateConflict("Usage logs are append-only", {"usage_log_id": target.id})
