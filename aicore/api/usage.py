from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional

from aicore.api.deps import get_actor
from aicore.config import get_settings
from aicore.database import get_db
from aicore.exceptions import PermissionDenied
from aicore.schemas.usage import UsageCreate, UsageLogResponse
from aicore.services.actor import Actor
from aicore.services.conversation_ledger import ConversationLedger
from aicore.services.template_engine import TemplateService
from aicore.services.usage_metering import UsageMeter

router = APIRouter()


def _scope(actor: Actor, user_id: Optional[int]) -> Optional[int]:
    """Admins may look at anyone (or everyone); other callers only see themselves."""
    if actor.is_admin:
        return user_id
    if user_id is not None and user_id != actor.user_id:
        raise PermissionDenied("Only administrators can view other users' usage", {"user_id": user_id})
    return actor.user_id


def _period(period: Optional[str]) -> str:
    return period or get_settings().default_period


@router.post("", status_code=201)
async def record_usage(payload: UsageCreate, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    # Related records are resolved with the caller's scope so foreign ids read as missing
    conversation = None
    if payload.conversation_id is not None:
        conversation = ConversationLedger(db).get(
            payload.conversation_id, owner_id=None if actor.is_admin else actor.user_id
        )
    template = None
    if payload.template_id is not None:
        template = TemplateService(db).get(payload.template_id, actor)

    log = UsageMeter(db).record_usage(
        user_id=actor.user_id,
        model=payload.model_id,
        operation_type=payload.operation_type,
        input_tokens=payload.input_tokens,
        output_tokens=payload.output_tokens,
        response_time_ms=payload.response_time_ms,
        status=payload.status,
        context_type=payload.context_type,
        context_id=payload.context_id,
        conversation=conversation,
        template=template,
        prompt=payload.prompt,
        response=payload.response,
        error_message=payload.error_message,
        metadata=payload.metadata,
    )
    return UsageLogResponse.model_validate(log)


@router.get("/stats")
async def usage_stats(
    period: Optional[str] = None,
    user_id: Optional[int] = None,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return UsageMeter(db).get_usage_stats(_period(period), _scope(actor, user_id))


@router.get("/daily")
async def daily_usage(
    period: Optional[str] = None,
    user_id: Optional[int] = None,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return {"daily": UsageMeter(db).get_daily_usage(_period(period), _scope(actor, user_id))}


@router.get("/by-operation")
async def usage_by_operation(
    period: Optional[str] = None,
    user_id: Optional[int] = None,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return {"operations": UsageMeter(db).get_usage_by_operation(_period(period), _scope(actor, user_id))}


@router.get("/by-model")
async def usage_by_model(
    period: Optional[str] = None,
    user_id: Optional[int] = None,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return {"models": UsageMeter(db).get_usage_by_model(_period(period), _scope(actor, user_id))}


@router.get("/by-context")
async def usage_by_context(
    period: Optional[str] = None,
    user_id: Optional[int] = None,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return {"contexts": UsageMeter(db).get_usage_by_context(_period(period), _scope(actor, user_id))}


@router.get("/costs")
async def cost_breakdown(
    period: Optional[str] = None,
    user_id: Optional[int] = None,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return UsageMeter(db).get_cost_breakdown(_period(period), _scope(actor, user_id))


@router.get("/performance")
async def performance_metrics(
    period: Optional[str] = None,
    user_id: Optional[int] = None,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return UsageMeter(db).get_performance_metrics(_period(period), _scope(actor, user_id))


@router.get("/performance/models")
async def performance_by_model(
    period: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    if not actor.is_admin:
        raise PermissionDenied("Per-model performance is restricted to administrators")
    return {"models": UsageMeter(db).get_performance_by_model(_period(period))}


@router.get("/errors")
async def error_stats(
    period: Optional[str] = None,
    user_id: Optional[int] = None,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return {"errors": UsageMeter(db).get_error_stats(_period(period), _scope(actor, user_id))}


@router.get("/top-users")
async def top_users(
    period: Optional[str] = None,
    limit: int = Query(10, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    if not actor.is_admin:
        raise PermissionDenied("Top users are restricted to administrators")
    return {"users": UsageMeter(db).get_top_users(_period(period), limit)}


@router.get("/quick-stats")
async def quick_stats(
    user_id: Optional[int] = None,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return UsageMeter(db).get_quick_stats(_scope(actor, user_id))
