"""Model/Service registry lookups used for cost computation and cost breakdowns."""
import logging
from typing import Optional, Tuple, Union

from sqlalchemy.orm import Session

from aicore.exceptions import NotFound, StateConflict, ValidationError
from aicore.models.conversation import Conversation
from aicore.models.registry import AIModel, ProviderService
from aicore.models.usage_log import UsageLog
from aicore.services.template_engine import slugify

logger = logging.getLogger(__name__)

UNKNOWN_SERVICE = "Unknown"


class ModelRegistry:
    def __init__(self, db: Session):
        self.db = db

    def register_service(
        self,
        name: str,
        provider: str,
        slug: Optional[str] = None,
        is_enabled: bool = True,
        priority: int = 1,
    ) -> ProviderService:
        service = ProviderService(
            name=name,
            slug=slug or slugify(name),
            provider=provider,
            is_enabled=is_enabled,
            priority=priority,
        )
        self.db.add(service)
        self.db.commit()
        self.db.refresh(service)
        logger.info(f"Registered AI service {service.slug} ({provider})")
        return service

    def register_model(
        self,
        service: ProviderService,
        name: str,
        model_identifier: str,
        cost_per_input_token: Optional[float] = None,
        cost_per_output_token: Optional[float] = None,
        slug: Optional[str] = None,
        is_enabled: bool = True,
    ) -> AIModel:
        for rate in (cost_per_input_token, cost_per_output_token):
            if rate is not None and rate < 0:
                raise ValidationError("Token rates must be >= 0")

        model = AIModel(
            service_id=service.id,
            name=name,
            slug=slug or slugify(name),
            model_identifier=model_identifier,
            cost_per_input_token=cost_per_input_token,
            cost_per_output_token=cost_per_output_token,
            is_enabled=is_enabled,
        )
        self.db.add(model)
        self.db.commit()
        self.db.refresh(model)
        logger.info(f"Registered AI model {model.slug} on service {service.slug}")
        return model

    def get_model(self, model: Union[AIModel, int]) -> AIModel:
        if isinstance(model, AIModel):
            return model
        found = self.db.get(AIModel, model)
        if found is None:
            raise NotFound(f"AI model {model} not found", {"model_id": model})
        return found

    @staticmethod
    def get_rates(model: AIModel) -> Tuple[float, float]:
        """(input, output) USD per token; undefined rates meter at zero."""
        return (model.cost_per_input_token or 0.0, model.cost_per_output_token or 0.0)

    @staticmethod
    def service_name(model: Optional[AIModel]) -> str:
        if model is None or model.service is None:
            return UNKNOWN_SERVICE
        return model.service.name

    def delete_model(self, model: AIModel) -> None:
        references = {
            "conversations": self.db.query(Conversation).filter(Conversation.model_id == model.id).count(),
            "usage_logs": self.db.query(UsageLog).filter(UsageLog.model_id == model.id).count(),
        }
        if any(references.values()):
            logger.warning(f"Refusing to delete model {model.slug}: still referenced {references}")
            raise StateConflict(
                f"Model {model.slug} is still referenced",
                {"model_id": model.id, **references},
            )
        self.db.delete(model)
        self.db.commit()
        logger.info(f"Deleted AI model {model.slug}")
