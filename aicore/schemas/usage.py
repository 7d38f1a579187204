from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, Dict, Any


class UsageCreate(BaseModel):
    model_id: int
    operation_type: str
    input_tokens: int = Field(0, ge=0)
    output_tokens: int = Field(0, ge=0)
    response_time_ms: Optional[int] = Field(None, ge=0)
    status: str = "success"
    context_type: Optional[str] = Field(None, max_length=50)
    context_id: Optional[int] = None
    conversation_id: Optional[int] = None
    template_id: Optional[int] = None
    prompt: Optional[str] = None
    response: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = {}


class UsageLogResponse(BaseModel):
    id: int
    user_id: int
    model_id: int
    conversation_id: Optional[int] = None
    template_id: Optional[int] = None
    operation_type: str
    context_type: Optional[str] = None
    context_id: Optional[int] = None
    input_tokens: int
    output_tokens: int
    total_tokens: int
    cost: float
    response_time_ms: Optional[int] = None
    status: str
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_")
    created_at: datetime

    class Config:
        from_attributes = True
