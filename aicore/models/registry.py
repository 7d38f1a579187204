"""Model/Service registry: which provider serves a model and what a token costs."""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Float, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from aicore.database import Base


class ProviderService(Base):
    __tablename__ = "ai_services"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    slug = Column(String(100), nullable=False, unique=True)
    provider = Column(String(30), nullable=False)  # mistral, openai, anthropic, ...
    is_enabled = Column(Boolean, default=True)
    priority = Column(Integer, default=1)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    models = relationship("AIModel", back_populates="service")


class AIModel(Base):
    __tablename__ = "ai_models"

    id = Column(Integer, primary_key=True, index=True)
    service_id = Column(Integer, ForeignKey("ai_services.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    slug = Column(String(100), nullable=False, unique=True)
    model_identifier = Column(String(100), nullable=False)  # what the provider API expects

    # Per-token USD rates; NULL means the rate is unknown and the call is metered at 0
    cost_per_input_token = Column(Float, nullable=True)
    cost_per_output_token = Column(Float, nullable=True)

    is_enabled = Column(Boolean, default=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    service = relationship("ProviderService", back_populates="models")
