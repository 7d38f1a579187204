# SQLAlchemy models
from aicore.models.registry import ProviderService, AIModel
from aicore.models.conversation import Conversation, ConversationMessage, MessageRole
from aicore.models.prompt_template import PromptTemplate, PromptTemplateTag
from aicore.models.usage_log import UsageLog, OperationType, UsageStatus

__all__ = [
    # Registry
    "ProviderService",
    "AIModel",
    # Conversation ledger
    "Conversation",
    "ConversationMessage",
    # Templates
    "PromptTemplate",
    "PromptTemplateTag",
    # Metering
    "UsageLog",
    # Enums
    "MessageRole",
    "OperationType",
    "UsageStatus",
]
