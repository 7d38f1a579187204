from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Float, Text, JSON, ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from aicore.database import Base


class PromptTemplate(Base):
    __tablename__ = "prompt_templates"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, nullable=True, index=True)  # NULL for seeded system templates

    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    category = Column(String(100), nullable=False, index=True)
    description = Column(Text, nullable=True)

    template = Column(Text, nullable=False)
    variables = Column(JSON, default=list)  # placeholder names in first-appearance order
    example_data = Column(JSON, default=dict)

    is_public = Column(Boolean, nullable=False, default=False)
    is_system = Column(Boolean, nullable=False, default=False)

    usage_count = Column(Integer, nullable=False, default=0)
    avg_rating = Column(Float, nullable=True)
    rating_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    tag_rows = relationship(
        "PromptTemplateTag",
        back_populates="template",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def tags(self) -> list:
        return sorted(row.tag for row in self.tag_rows)

    @tags.setter
    def tags(self, values) -> None:
        wanted = {str(v).strip() for v in (values or []) if str(v).strip()}
        self.tag_rows = [row for row in self.tag_rows if row.tag in wanted]
        existing = {row.tag for row in self.tag_rows}
        for tag in sorted(wanted - existing):
            self.tag_rows.append(PromptTemplateTag(tag=tag))

    def is_visible_to(self, user_id) -> bool:
        return bool(self.is_public or self.is_system or self.owner_id == user_id)


class PromptTemplateTag(Base):
    __tablename__ = "prompt_template_tags"

    id = Column(Integer, primary_key=True)
    template_id = Column(
        Integer, ForeignKey("prompt_templates.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tag = Column(String(50), nullable=False, index=True)

    template = relationship("PromptTemplate", back_populates="tag_rows")

    __table_args__ = (
        UniqueConstraint("template_id", "tag", name="uix_template_tag"),
    )
