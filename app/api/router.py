from fastapi import APIRouter

from app.api.routes import chat, conversations, crm_tool, health
from app.core.config import get_settings


def get_api_router() -> APIRouter:
    settings = get_settings()
    router = APIRouter(prefix=settings.api_prefix)
    router.include_router(health.router)
    router.include_router(chat.router)  # CRM-aware streaming chat
    router.include_router(conversations.router)
    router.include_router(crm_tool.router)  # agent-facing CRM lookups
    return router
