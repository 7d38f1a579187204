"""Prompt templates: placeholder extraction, validation, rendering and bookkeeping.

The module-level functions are pure and work on plain strings and dicts.
``TemplateService`` wraps them with persistence: slugs, counters, ratings,
visibility rules and listing.

Placeholders look like ``{{customer_name}}`` (word characters only). Anything
else between braces is left alone.
"""
import json
import logging
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import update, func, or_
from sqlalchemy.orm import Session

from aicore.exceptions import NotFound, PermissionDenied, StateConflict, ValidationError
from aicore.models.prompt_template import PromptTemplate, PromptTemplateTag
from aicore.models.usage_log import UsageLog
from aicore.services.actor import Actor
from aicore.services.pagination import Page, paginate
from aicore.services.periods import PeriodLike, window_start
from aicore.utils.clock import utcnow

logger = logging.getLogger(__name__)

VARIABLE_PATTERN = re.compile(r"\{\{(\w+)\}\}")

MIN_RATING = 1
MAX_RATING = 5

COPY_SUFFIX = " (Copy)"

UPDATABLE_FIELDS = {"name", "category", "description", "template", "example_data", "is_public", "tags"}

VISIBILITIES = ("public", "private", "system")


@dataclass
class TemplateValidation:
    valid: bool
    missing_variables: List[str] = field(default_factory=list)
    required_variables: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "missing_variables": list(self.missing_variables),
            "required_variables": list(self.required_variables),
        }


def extract_variables(template: Optional[str]) -> List[str]:
    """Unique placeholder names in order of first appearance."""
    if not template:
        return []
    return list(dict.fromkeys(VARIABLE_PATTERN.findall(template)))


def validate(variables: Iterable[str], data: Optional[Dict[str, Any]]) -> TemplateValidation:
    """Report which declared variables have no key in ``data``.

    Presence only: an empty string or None value still counts as supplied.
    """
    data = data or {}
    required = list(dict.fromkeys(variables or []))
    missing = [name for name in required if name not in data]
    return TemplateValidation(valid=not missing, missing_variables=missing, required_variables=required)


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return str(value)


def render(template: Optional[str], data: Optional[Dict[str, Any]]) -> str:
    """Substitute every placeholder. Missing keys become empty strings."""
    data = data or {}
    return VARIABLE_PATTERN.sub(lambda m: _stringify(data.get(m.group(1))), template or "")


def slugify(value: Optional[str]) -> str:
    normalized = unicodedata.normalize("NFKD", value or "").encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", normalized.lower()).strip("-")
    return slug or "template"


def _require_text(value: Any, field_name: str, max_length: Optional[int] = None) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"'{field_name}' is required", {"field": field_name})
    if max_length is not None and len(value) > max_length:
        raise ValidationError(
            f"'{field_name}' must be at most {max_length} characters", {"field": field_name}
        )
    return value


def _check_rating(rating: Any) -> int:
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise ValidationError("Rating must be an integer between 1 and 5", {"rating": rating})
    if not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationError("Rating must be between 1 and 5", {"rating": rating})
    return rating


class TemplateService:
    def __init__(self, db: Session):
        self.db = db

    # -- slugs ---------------------------------------------------------------

    def _slug_taken(self, slug: str, exclude_id: Optional[int] = None) -> bool:
        query = self.db.query(PromptTemplate.id).filter(PromptTemplate.slug == slug)
        if exclude_id is not None:
            query = query.filter(PromptTemplate.id != exclude_id)
        return query.first() is not None

    def unique_slug(self, name: str, exclude_id: Optional[int] = None) -> str:
        base = slugify(name)
        slug = base
        counter = 1
        while self._slug_taken(slug, exclude_id):
            slug = f"{base}-{counter}"
            counter += 1
        return slug

    # -- lifecycle -----------------------------------------------------------

    def create(
        self,
        owner_id: Optional[int],
        name: str,
        category: str,
        template: str,
        description: Optional[str] = None,
        example_data: Optional[Dict[str, Any]] = None,
        is_public: bool = False,
        tags: Optional[Iterable[str]] = None,
        is_system: bool = False,
    ) -> PromptTemplate:
        _require_text(name, "name", 255)
        _require_text(category, "category", 100)
        _require_text(template, "template")

        record = PromptTemplate(
            owner_id=owner_id,
            name=name,
            slug=self.unique_slug(name),
            category=category,
            description=description,
            template=template,
            variables=extract_variables(template),
            example_data=dict(example_data or {}),
            is_public=is_public,
            is_system=is_system,
            usage_count=0,
            avg_rating=None,
            rating_count=0,
        )
        record.tags = tags or []
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        logger.info(f"Created prompt template {record.slug} (owner={owner_id}, vars={record.variables})")
        return record

    def get(self, template_id: int, viewer: Optional[Actor] = None) -> PromptTemplate:
        record = self.db.get(PromptTemplate, template_id)
        if record is None:
            raise NotFound(f"Prompt template {template_id} not found", {"template_id": template_id})
        if viewer is not None and not viewer.is_admin and not record.is_visible_to(viewer.user_id):
            raise NotFound(f"Prompt template {template_id} not found", {"template_id": template_id})
        return record

    def get_by_slug(self, slug: str) -> PromptTemplate:
        record = self.db.query(PromptTemplate).filter(PromptTemplate.slug == slug).first()
        if record is None:
            raise NotFound(f"Prompt template '{slug}' not found", {"slug": slug})
        return record

    def _check_mutable(self, record: PromptTemplate, actor: Actor) -> None:
        if record.is_system:
            raise PermissionDenied("System templates cannot be modified", {"template_id": record.id})
        if not actor.can_manage(record.owner_id):
            raise PermissionDenied(
                "You do not have permission to modify this template", {"template_id": record.id}
            )

    def update(self, record: PromptTemplate, actor: Actor, **changes) -> PromptTemplate:
        self._check_mutable(record, actor)

        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown template fields: {sorted(unknown)}")

        if "name" in changes:
            _require_text(changes["name"], "name", 255)
            if changes["name"] != record.name:
                record.slug = self.unique_slug(changes["name"], exclude_id=record.id)
            record.name = changes["name"]
        if "category" in changes:
            record.category = _require_text(changes["category"], "category", 100)
        if "description" in changes:
            record.description = changes["description"]
        if "template" in changes:
            _require_text(changes["template"], "template")
            if changes["template"] != record.template:
                record.template = changes["template"]
                record.variables = extract_variables(record.template)
        if "example_data" in changes:
            record.example_data = dict(changes["example_data"] or {})
        if "is_public" in changes:
            record.is_public = bool(changes["is_public"])
        if "tags" in changes:
            record.tags = changes["tags"] or []

        self.db.commit()
        self.db.refresh(record)
        logger.info(f"Updated prompt template {record.slug} ({sorted(changes)})")
        return record

    def delete(self, record: PromptTemplate, actor: Actor) -> None:
        self._check_mutable(record, actor)

        references = self.db.query(UsageLog).filter(UsageLog.template_id == record.id).count()
        if references:
            logger.warning(f"Refusing to delete template {record.slug}: {references} usage logs reference it")
            raise StateConflict(
                "Template is referenced by usage logs",
                {"template_id": record.id, "usage_logs": references},
            )

        self.db.delete(record)
        self.db.commit()
        logger.info(f"Deleted prompt template {record.slug}")

    def duplicate(self, record: PromptTemplate, actor: Actor) -> PromptTemplate:
        name = record.name + COPY_SUFFIX
        copy = PromptTemplate(
            owner_id=actor.user_id,
            name=name,
            slug=self.unique_slug(name),
            category=record.category,
            description=record.description,
            template=record.template,
            variables=list(record.variables or []),
            example_data=dict(record.example_data or {}),
            is_public=False,
            is_system=False,
            usage_count=0,
            avg_rating=None,
            rating_count=0,
        )
        copy.tags = record.tags
        self.db.add(copy)
        self.db.commit()
        self.db.refresh(copy)
        logger.info(f"Duplicated prompt template {record.slug} -> {copy.slug} for user {actor.user_id}")
        return copy

    # -- use -----------------------------------------------------------------

    def validate_data(self, record: PromptTemplate, data: Optional[Dict[str, Any]]) -> TemplateValidation:
        return validate(record.variables or [], data)

    def render_for_use(self, record: PromptTemplate, data: Optional[Dict[str, Any]]) -> str:
        """Reject incomplete data, otherwise render and count the use."""
        result = self.validate_data(record, data)
        if not result.valid:
            logger.warning(f"Render of {record.slug} rejected, missing {result.missing_variables}")
            raise ValidationError(
                "Missing required variables: " + ", ".join(result.missing_variables),
                {
                    "missing_variables": result.missing_variables,
                    "required_variables": result.required_variables,
                },
            )
        rendered = render(record.template, data)
        self.increment_usage(record)
        return rendered

    def increment_usage(self, record: PromptTemplate, commit: bool = True) -> None:
        self.db.execute(
            update(PromptTemplate)
            .where(PromptTemplate.id == record.id)
            .values(usage_count=PromptTemplate.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        if commit:
            self.db.commit()
            self.db.refresh(record)

    def rate(self, record: PromptTemplate, rating: int) -> PromptTemplate:
        rating = _check_rating(rating)
        # Both SET expressions read the pre-update row
        self.db.execute(
            update(PromptTemplate)
            .where(PromptTemplate.id == record.id)
            .values(
                avg_rating=(
                    func.coalesce(PromptTemplate.avg_rating, 0.0) * PromptTemplate.rating_count + rating
                ) / (PromptTemplate.rating_count + 1.0),
                rating_count=PromptTemplate.rating_count + 1,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(record)
        logger.info(f"Rated template {record.slug} {rating}/5, avg now {record.avg_rating:.2f}")
        return record

    # -- reads ---------------------------------------------------------------

    def list(
        self,
        viewer: Actor,
        category: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        visibility: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        per_page: Optional[int] = None,
    ) -> Page:
        query = self.db.query(PromptTemplate)

        if visibility == "public":
            query = query.filter(PromptTemplate.is_public == True)
        elif visibility == "private":
            query = query.filter(
                PromptTemplate.is_public == False,
                PromptTemplate.owner_id == viewer.user_id,
            )
        elif visibility == "system":
            query = query.filter(PromptTemplate.is_system == True)
        elif visibility is None:
            query = query.filter(
                or_(
                    PromptTemplate.is_public == True,
                    PromptTemplate.is_system == True,
                    PromptTemplate.owner_id == viewer.user_id,
                )
            )
        else:
            raise ValidationError(f"Unknown visibility: {visibility!r}", {"allowed": list(VISIBILITIES)})

        if category:
            query = query.filter(PromptTemplate.category == category)
        if search:
            pattern = f"%{search}%"
            query = query.filter(
                or_(PromptTemplate.name.ilike(pattern), PromptTemplate.description.ilike(pattern))
            )
        tag_list = [t for t in (tags or []) if t]
        if tag_list:
            query = query.filter(PromptTemplate.tag_rows.any(PromptTemplateTag.tag.in_(tag_list)))

        query = query.order_by(PromptTemplate.usage_count.desc(), PromptTemplate.name.asc())
        return paginate(query, page, per_page)

    def get_popular(self, limit: int = 5) -> List[PromptTemplate]:
        return (
            self.db.query(PromptTemplate)
            .order_by(PromptTemplate.usage_count.desc(), PromptTemplate.name.asc())
            .limit(limit)
            .all()
        )

    def categories(self) -> List[str]:
        rows = self.db.query(PromptTemplate.category).distinct().all()
        return sorted(r[0] for r in rows if r[0])

    def all_tags(self) -> List[str]:
        rows = self.db.query(PromptTemplateTag.tag).distinct().all()
        return sorted(r[0] for r in rows)

    def statistics(self, period: PeriodLike, owner_id: Optional[int] = None) -> Dict[str, Any]:
        base = self.db.query(PromptTemplate).filter(PromptTemplate.created_at >= window_start(period, utcnow()))
        if owner_id is not None:
            base = base.filter(PromptTemplate.owner_id == owner_id)

        avg_rating = base.filter(PromptTemplate.avg_rating.isnot(None)).with_entities(
            func.avg(PromptTemplate.avg_rating)
        ).scalar()
        by_category = dict(
            base.with_entities(PromptTemplate.category, func.count(PromptTemplate.id))
            .group_by(PromptTemplate.category)
            .all()
        )

        return {
            "total_templates": base.count(),
            "public_templates": base.filter(PromptTemplate.is_public == True).count(),
            "private_templates": base.filter(
                PromptTemplate.is_public == False, PromptTemplate.is_system == False
            ).count(),
            "system_templates": base.filter(PromptTemplate.is_system == True).count(),
            "total_usage": int(base.with_entities(func.coalesce(func.sum(PromptTemplate.usage_count), 0)).scalar()),
            "avg_rating": round(float(avg_rating), 2) if avg_rating is not None else 0.0,
            "by_category": by_category,
        }
