from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, Dict, Any


class ConversationCreate(BaseModel):
    model_id: int
    title: str = Field(..., min_length=1, max_length=255)
    context_type: Optional[str] = Field(None, max_length=50)
    context_id: Optional[int] = None
    metadata: Dict[str, Any] = {}
    initial_message: Optional[str] = None


class ConversationUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    metadata: Optional[Dict[str, Any]] = None


class MessageCreate(BaseModel):
    role: str = "user"
    content: str
    metadata: Dict[str, Any] = {}


class MessageResponse(BaseModel):
    id: int
    sequence: int
    role: str
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_")
    timestamp: datetime

    class Config:
        from_attributes = True


class ConversationResponse(BaseModel):
    id: int
    owner_id: int
    model_id: int
    title: str
    context_type: Optional[str] = None
    context_id: Optional[int] = None
    message_count: int
    total_tokens: int
    total_cost: float
    last_message_at: Optional[datetime] = None
    is_archived: bool
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
