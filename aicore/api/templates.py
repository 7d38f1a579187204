from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional, List

from aicore.api.deps import get_actor, page_payload
from aicore.config import get_settings
from aicore.database import get_db
from aicore.schemas.template import (
    TemplateCreate, TemplateUpdate, TemplateData, TemplateRating, TemplateResponse,
)
from aicore.services.actor import Actor
from aicore.services.template_engine import TemplateService

router = APIRouter()


@router.get("")
async def list_templates(
    category: Optional[str] = None,
    tags: Optional[List[str]] = Query(None),
    visibility: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    per_page: Optional[int] = Query(None, ge=1),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    result = TemplateService(db).list(
        actor,
        category=category,
        tags=tags,
        visibility=visibility,
        search=search,
        page=page,
        per_page=per_page,
    )
    return page_payload(result, TemplateResponse)


@router.post("", status_code=201)
async def create_template(payload: TemplateCreate, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    record = TemplateService(db).create(
        actor.user_id,
        payload.name,
        payload.category,
        payload.template,
        description=payload.description,
        example_data=payload.example_data,
        is_public=payload.is_public,
        tags=payload.tags,
    )
    return TemplateResponse.model_validate(record)


@router.get("/popular")
async def popular_templates(limit: int = Query(5, ge=1, le=50), db: Session = Depends(get_db)):
    return {"templates": [TemplateResponse.model_validate(t) for t in TemplateService(db).get_popular(limit)]}


@router.get("/categories")
async def template_categories(db: Session = Depends(get_db)):
    return {"categories": TemplateService(db).categories()}


@router.get("/tags")
async def template_tags(db: Session = Depends(get_db)):
    return {"tags": TemplateService(db).all_tags()}


@router.get("/statistics")
async def template_statistics(
    period: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return TemplateService(db).statistics(
        period or get_settings().default_period,
        owner_id=None if actor.is_admin else actor.user_id,
    )


@router.get("/{template_id}")
async def get_template(template_id: int, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return TemplateResponse.model_validate(TemplateService(db).get(template_id, actor))


@router.put("/{template_id}")
async def update_template(
    template_id: int,
    payload: TemplateUpdate,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    service = TemplateService(db)
    record = service.update(service.get(template_id, actor), actor, **payload.model_dump(exclude_unset=True))
    return TemplateResponse.model_validate(record)


@router.delete("/{template_id}", status_code=204)
async def delete_template(template_id: int, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    service = TemplateService(db)
    service.delete(service.get(template_id, actor), actor)


@router.post("/{template_id}/duplicate", status_code=201)
async def duplicate_template(template_id: int, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    service = TemplateService(db)
    return TemplateResponse.model_validate(service.duplicate(service.get(template_id, actor), actor))


@router.post("/{template_id}/validate")
async def validate_template_data(
    template_id: int,
    payload: TemplateData,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    service = TemplateService(db)
    return service.validate_data(service.get(template_id, actor), payload.data).to_dict()


@router.post("/{template_id}/render")
async def render_template(
    template_id: int,
    payload: TemplateData,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    service = TemplateService(db)
    record = service.get(template_id, actor)
    rendered = service.render_for_use(record, payload.data)
    return {"rendered": rendered, "template_id": record.id, "usage_count": record.usage_count}


@router.post("/{template_id}/rate")
async def rate_template(
    template_id: int,
    payload: TemplateRating,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    service = TemplateService(db)
    record = service.rate(service.get(template_id, actor), payload.rating)
    return {"avg_rating": record.avg_rating, "rating_count": record.rating_count}
