from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional

from aicore.api.deps import get_actor, page_payload
from aicore.config import get_settings
from aicore.database import get_db
from aicore.schemas.conversation import (
    ConversationCreate, ConversationUpdate, ConversationResponse, MessageCreate, MessageResponse,
)
from aicore.services.actor import Actor
from aicore.services.conversation_ledger import ConversationLedger

router = APIRouter()


def _load(ledger: ConversationLedger, conversation_id: int, actor: Actor):
    # Admins can reach any conversation, everyone else only their own
    return ledger.get(conversation_id, owner_id=None if actor.is_admin else actor.user_id)


@router.get("")
async def list_conversations(
    model_id: Optional[int] = None,
    context_type: Optional[str] = None,
    archived: Optional[bool] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    per_page: Optional[int] = Query(None, ge=1),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    result = ConversationLedger(db).list(
        actor.user_id,
        model_id=model_id,
        context_type=context_type,
        archived=archived,
        search=search,
        page=page,
        per_page=per_page,
    )
    return page_payload(result, ConversationResponse)


@router.post("", status_code=201)
async def create_conversation(
    payload: ConversationCreate,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    conversation = ConversationLedger(db).create(
        actor.user_id,
        payload.model_id,
        payload.title,
        context_type=payload.context_type,
        context_id=payload.context_id,
        metadata=payload.metadata,
        initial_message=payload.initial_message,
    )
    return ConversationResponse.model_validate(conversation)


@router.get("/statistics")
async def conversation_statistics(
    period: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return ConversationLedger(db).statistics(
        period or get_settings().default_period,
        owner_id=None if actor.is_admin else actor.user_id,
    )


@router.get("/context-types")
async def list_context_types(actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return {"context_types": ConversationLedger(db).context_types()}


@router.get("/{conversation_id}")
async def get_conversation(conversation_id: int, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    ledger = ConversationLedger(db)
    conversation = _load(ledger, conversation_id, actor)
    return {
        "conversation": ConversationResponse.model_validate(conversation),
        "messages": [MessageResponse.model_validate(m) for m in ledger.messages(conversation)],
    }


@router.patch("/{conversation_id}")
async def update_conversation(
    conversation_id: int,
    payload: ConversationUpdate,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    ledger = ConversationLedger(db)
    conversation = ledger.update(
        _load(ledger, conversation_id, actor), title=payload.title, metadata=payload.metadata
    )
    return ConversationResponse.model_validate(conversation)


@router.delete("/{conversation_id}", status_code=204)
async def delete_conversation(conversation_id: int, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    ledger = ConversationLedger(db)
    ledger.delete(_load(ledger, conversation_id, actor))


@router.get("/{conversation_id}/messages")
async def list_messages(conversation_id: int, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    ledger = ConversationLedger(db)
    conversation = _load(ledger, conversation_id, actor)
    return {"messages": [MessageResponse.model_validate(m) for m in ledger.messages(conversation)]}


@router.post("/{conversation_id}/messages", status_code=201)
async def append_message(
    conversation_id: int,
    payload: MessageCreate,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    ledger = ConversationLedger(db)
    message = ledger.append_message(
        _load(ledger, conversation_id, actor), payload.role, payload.content, payload.metadata
    )
    return MessageResponse.model_validate(message)


@router.post("/{conversation_id}/archive")
async def archive_conversation(conversation_id: int, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    ledger = ConversationLedger(db)
    return ConversationResponse.model_validate(ledger.archive(_load(ledger, conversation_id, actor)))


@router.post("/{conversation_id}/unarchive")
async def unarchive_conversation(conversation_id: int, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    ledger = ConversationLedger(db)
    return ConversationResponse.model_validate(ledger.unarchive(_load(ledger, conversation_id, actor)))
