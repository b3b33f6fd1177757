import logging

from fastapi import APIRouter, Depends, HTTPException, status

from app.core.config import get_settings
from app.models.chat import ConversationCreateRequest, ConversationDetail
from app.services.conversation_repository import (
    ConversationRepository,
    ConversationStoreError,
    get_conversation_repository,
)

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["conversations"])


@router.get("/conversations")
async def list_conversations(
    repository: ConversationRepository = Depends(get_conversation_repository),
) -> dict:
    settings = get_settings()
    try:
        conversations = await repository.list_conversations(settings.demo_user_id)
    except ConversationStoreError as exc:
        LOGGER.warning("Error fetching conversations: %s", exc)
        conversations = []
    return {"conversations": [c.model_dump(mode="json") for c in conversations]}


@router.post("/conversations")
async def create_conversation(
    payload: ConversationCreateRequest,
    repository: ConversationRepository = Depends(get_conversation_repository),
) -> dict:
    settings = get_settings()
    try:
        conversation_id = await repository.create_conversation(
            settings.demo_user_id,
            payload.title,
            payload.property_id,
        )
    except ConversationStoreError as exc:
        LOGGER.error("Error creating conversation: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Error creating conversation"},
        ) from exc
    return {"conversationId": conversation_id}


@router.get("/conversations/{conversation_id}")
async def get_conversation(
    conversation_id: int,
    repository: ConversationRepository = Depends(get_conversation_repository),
) -> dict:
    settings = get_settings()
    try:
        conversation = await repository.get_conversation(conversation_id)
        if conversation is None:
            title = "Conversation not found"
            messages = []
        else:
            messages = await repository.get_messages(conversation_id)
    except ConversationStoreError as exc:
        LOGGER.warning("Error fetching conversation %s: %s", conversation_id, exc)
        conversation = None
        title = "Error loading conversation"
        messages = []

    if conversation is None:
        detail = ConversationDetail(id=conversation_id, title=title, user_id=settings.demo_user_id)
    else:
        detail = ConversationDetail(**conversation.model_dump(), messages=messages)
    return {"conversation": detail.model_dump(mode="json")}


@router.delete("/conversations/{conversation_id}")
async def delete_conversation(
    conversation_id: int,
    repository: ConversationRepository = Depends(get_conversation_repository),
) -> dict:
    try:
        conversation = await repository.get_conversation(conversation_id)
        if conversation is None:
            return {"success": False, "message": "Conversation not found"}
        await repository.delete_conversation(conversation_id)
    except ConversationStoreError as exc:
        LOGGER.warning("Error deleting conversation %s: %s", conversation_id, exc)
        return {"success": False, "message": "Error deleting conversation"}
    return {"success": True}
