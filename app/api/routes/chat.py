from typing import Any, Dict
import json
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from app.models.chat import ChatRequest
from app.services.crm_chat_orchestrator import CrmChatOrchestrator, get_crm_chat_orchestrator

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


def _format_sse(event: str, data: Dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


@router.post("/chat")
async def chat(
    request: ChatRequest,
    orchestrator: CrmChatOrchestrator = Depends(get_crm_chat_orchestrator),
) -> StreamingResponse:
    """CRM 조회 컨텍스트를 붙여 LLM 응답을 SSE로 스트리밍"""
    LOGGER.info(
        "Processing chat request messages=%d conversation_id=%s",
        len(request.messages),
        request.conversation_id,
    )

    async def event_stream():
        terminal_event_sent = False
        async for event in orchestrator.stream_handle(request):
            yield _format_sse(event["event"], event["data"])
            if event["event"] in {"result", "error"}:
                terminal_event_sent = True
        if not terminal_event_sent:
            yield _format_sse("error", {"message": "An error occurred while generating the response."})

    return StreamingResponse(event_stream(), media_type="text/event-stream")
