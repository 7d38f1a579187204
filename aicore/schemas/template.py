from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, Dict, Any, List


class TemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    category: str = Field(..., min_length=1, max_length=100)
    template: str = Field(..., min_length=1)
    description: Optional[str] = None
    example_data: Dict[str, Any] = {}
    is_public: bool = False
    tags: List[str] = []


class TemplateUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    category: Optional[str] = Field(None, min_length=1, max_length=100)
    template: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    example_data: Optional[Dict[str, Any]] = None
    is_public: Optional[bool] = None
    tags: Optional[List[str]] = None


class TemplateData(BaseModel):
    data: Dict[str, Any] = {}


class TemplateRating(BaseModel):
    rating: int


class TemplateResponse(BaseModel):
    id: int
    owner_id: Optional[int] = None
    name: str
    slug: str
    category: str
    description: Optional[str] = None
    template: str
    variables: List[str] = []
    example_data: Dict[str, Any] = {}
    tags: List[str] = []
    is_public: bool
    is_system: bool
    usage_count: int
    avg_rating: Optional[float] = None
    rating_count: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
