from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from aicore.api import conversations, templates, usage, health
from aicore.config import get_settings
from aicore.database import engine, Base, SessionLocal
from aicore.exceptions import (
    AICoreError, ValidationError, StateConflict, NotFound, PermissionDenied, ProviderFailure,
)
from aicore.models import AIModel, Conversation, ConversationMessage, PromptTemplate, UsageLog  # noqa: F401
from aicore.services.system_templates import seed_system_templates

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: 422,
    StateConflict: 409,
    NotFound: 404,
    PermissionDenied: 403,
    ProviderFailure: 502,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting AI core service")

    if settings.database_url.startswith("sqlite"):
        logger.info("SQLite detected - creating tables if needed")
        Base.metadata.create_all(bind=engine)

    if settings.seed_system_templates:
        db = SessionLocal()
        try:
            seed_system_templates(db)
        except Exception as e:
            logger.error(f"System template seeding failed: {e}")
        finally:
            db.close()

    yield

    logger.info("Shutting down AI core service")


app = FastAPI(
    title="AI Core",
    description="Prompt templates, conversation ledger and usage analytics",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["*"],
)


@app.exception_handler(AICoreError)
async def core_error_handler(request: Request, exc: AICoreError):
    status_code = ERROR_STATUS.get(type(exc), 400)
    if status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} -> {status_code}: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


app.include_router(conversations.router, prefix="/conversations", tags=["conversations"])
app.include_router(templates.router, prefix="/templates", tags=["templates"])
app.include_router(usage.router, prefix="/usage", tags=["usage"])
app.include_router(health.router, tags=["health"])


# Health check for monitoring/Docker
@app.get("/ping")
async def ping():
    """Simple ping endpoint for health checks."""
    return {"status": "ok"}
