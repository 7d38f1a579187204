import asyncio
import logging
import time
import httpx
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Union

from sqlalchemy.orm import Session

from aicore.exceptions import ProviderFailure, StateConflict
from aicore.models.conversation import Conversation, MessageRole
from aicore.models.prompt_template import PromptTemplate
from aicore.models.registry import AIModel
from aicore.models.usage_log import OperationType, UsageLog, UsageStatus
from aicore.services.conversation_ledger import ConversationLedger
from aicore.services.registry import ModelRegistry
from aicore.services.usage_metering import UsageMeter

logger = logging.getLogger(__name__)


@dataclass
class ProviderResult:
    content: str
    input_tokens: int = 0
    output_tokens: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)


class ProviderCallError(Exception):
    """Raised by a client when a call fails after some tokens were already consumed.

    Chain the underlying error with ``raise ... from exc`` so its status is classified.
    """

    def __init__(self, message: str, input_tokens: int = 0, output_tokens: int = 0):
        super().__init__(message)
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens


class AIProviderClient(ABC):
    """Performs the actual call against an AI provider.

    Implementations report token counts; timing and bookkeeping are done by
    ``InvocationService``. Raise on failure, httpx errors are classified.
    """

    @abstractmethod
    async def invoke(
        self,
        model: AIModel,
        prompt: str,
        history: Optional[List[Dict[str, str]]] = None,
        max_tokens: int = 500,
    ) -> ProviderResult:
        pass


def classify_failure(exc: BaseException) -> UsageStatus:
    if isinstance(exc, ProviderCallError) and exc.__cause__ is not None:
        return classify_failure(exc.__cause__)
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
        return UsageStatus.TIMEOUT
    if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code == 429:
        return UsageStatus.RATE_LIMITED
    return UsageStatus.ERROR


class InvocationService:
    def __init__(self, db: Session, client: AIProviderClient):
        self.db = db
        self.client = client
        self.meter = UsageMeter(db)
        self.ledger = ConversationLedger(db)
        self.registry = ModelRegistry(db)

    async def invoke(
        self,
        user_id: int,
        model: Union[AIModel, int],
        prompt: str,
        operation_type: Union[str, OperationType] = OperationType.CHAT,
        conversation: Optional[Conversation] = None,
        template: Optional[PromptTemplate] = None,
        context_type: Optional[str] = None,
        context_id: Optional[int] = None,
        max_tokens: int = 500,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> UsageLog:
        """Call the provider and record the outcome.

        Exactly one usage log is written per call. On success the prompt and
        reply are appended to ``conversation`` (when given). Any failure is
        recorded with its classified status and re-raised as ProviderFailure.
        """
        model = self.registry.get_model(model)
        if conversation is not None and conversation.is_archived:
            raise StateConflict(
                f"Conversation {conversation.id} is archived", {"conversation_id": conversation.id}
            )

        history = None
        if conversation is not None:
            history = [
                {"role": m.role, "content": m.content} for m in self.ledger.messages(conversation)
            ]
            if context_type is None:
                context_type, context_id = conversation.context_type, conversation.context_id

        started = time.monotonic()
        try:
            result = await self.client.invoke(model, prompt, history=history, max_tokens=max_tokens)
        except Exception as e:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            status = classify_failure(e)
            # Clients may report tokens consumed before the failure
            partial = (e.input_tokens, e.output_tokens) if isinstance(e, ProviderCallError) else (0, 0)
            log = self.meter.record_usage(
                user_id=user_id,
                model=model,
                operation_type=operation_type,
                input_tokens=partial[0],
                output_tokens=partial[1],
                response_time_ms=elapsed_ms,
                status=status,
                context_type=context_type,
                context_id=context_id,
                conversation=conversation,
                template=template,
                prompt=prompt,
                error_message=str(e) or type(e).__name__,
                metadata=metadata,
            )
            logger.warning(f"Provider call for model {model.slug} failed ({status.value}): {e}")
            raise ProviderFailure(f"AI provider call failed: {status.value}", log, status.value) from e

        elapsed_ms = int((time.monotonic() - started) * 1000)
        log = self.meter.record_usage(
            user_id=user_id,
            model=model,
            operation_type=operation_type,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            response_time_ms=elapsed_ms,
            status=UsageStatus.SUCCESS,
            context_type=context_type,
            context_id=context_id,
            conversation=conversation,
            template=template,
            prompt=prompt,
            response=result.content,
            metadata={**(metadata or {}), **result.metadata},
        )

        if conversation is not None:
            self.ledger.append_message(conversation, MessageRole.USER, prompt)
            self.ledger.append_message(
                conversation, MessageRole.ASSISTANT, result.content, {"usage_log_id": log.id}
            )
        return log
