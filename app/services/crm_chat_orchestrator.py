"""CRM-aware chat: extract → resolve → augment → stream, with detached persistence."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import Depends

from app.core.config import Settings, get_settings
from app.models.chat import ChatRequest
from app.models.crm_query import QueryIntent, ResolutionResult
from app.services.background_tasks import DetachedTaskRunner, get_background_task_runner
from app.services.conversation_repository import ConversationRepository, get_conversation_repository
from app.services.crm_context_augmenter import CrmContextAugmenter, get_crm_context_augmenter
from app.services.crm_intent_resolver import CrmIntentResolver, get_crm_intent_resolver
from app.services.crm_query_extractor import CrmQueryExtractor, get_crm_query_extractor
from app.services.llm_gateway import LLMStreamRequest, TextGenerationError, TextGenerator, get_llm_gateway

LOGGER = logging.getLogger(__name__)

GENERIC_STREAM_ERROR = "An error occurred while generating the response."


class TurnState(IntEnum):
    RECEIVED = 0
    EXTRACTING = 1
    RESOLVING = 2
    AUGMENTING = 3
    STREAMING = 4
    COMPLETED = 5


@dataclass
class ChatTurn:
    """Per-request state. Transitions only move forward."""

    message: str
    conversation_id: Optional[int] = None
    state: TurnState = TurnState.RECEIVED
    history: List[TurnState] = field(default_factory=lambda: [TurnState.RECEIVED])
    intent: Optional[QueryIntent] = None
    result: Optional[ResolutionResult] = None
    had_candidate_pattern: bool = False
    instructions: str = ""

    def advance(self, state: TurnState) -> None:
        if state <= self.state:
            raise ValueError(f"invalid turn transition {self.state.name} -> {state.name}")
        self.state = state
        self.history.append(state)


def make_title(content: str, max_chars: int = 50) -> str:
    if len(content) <= max_chars:
        return content
    return content[:max_chars] + "..."


class CrmChatOrchestrator:
    def __init__(
        self,
        *,
        extractor: CrmQueryExtractor,
        resolver: CrmIntentResolver,
        augmenter: CrmContextAugmenter,
        generator: TextGenerator,
        conversations: ConversationRepository,
        tasks: DetachedTaskRunner,
        settings: Settings,
    ) -> None:
        self.extractor = extractor
        self.resolver = resolver
        self.augmenter = augmenter
        self.generator = generator
        self.conversations = conversations
        self.tasks = tasks
        self.settings = settings

    async def prepare(self, request: ChatRequest) -> ChatTurn:
        """Run extraction, resolution and augmentation for the last message."""
        message = request.last_message.content
        turn = ChatTurn(message=message, conversation_id=request.conversation_id)

        turn.advance(TurnState.EXTRACTING)
        turn.intent = self.extractor.extract(message)
        turn.had_candidate_pattern = self.extractor.looks_like_lookup(message)

        turn.advance(TurnState.RESOLVING)
        if turn.intent is not None:
            turn.result = await self.resolver.resolve(turn.intent)

        turn.advance(TurnState.AUGMENTING)
        turn.instructions = self.augmenter.build_instructions(
            turn.result,
            had_candidate_pattern=turn.had_candidate_pattern,
            message=message,
        )
        LOGGER.info(
            "crm chat prepared intent=%s result=%s candidate=%s",
            type(turn.intent).__name__ if turn.intent else None,
            turn.result.kind.value if turn.result else None,
            turn.had_candidate_pattern,
        )
        return turn

    async def stream_handle(self, request: ChatRequest) -> AsyncIterator[Dict[str, Any]]:
        try:
            turn = await self.prepare(request)
        except Exception:
            LOGGER.exception("Unexpected error preparing CRM context")
            yield {"event": "error", "data": {"message": GENERIC_STREAM_ERROR}}
            return

        turn.advance(TurnState.STREAMING)
        user_task: Optional[asyncio.Task] = None
        if self.settings.persist_conversations:
            user_task = self.tasks.spawn(
                self._persist_user_message(turn.message, request.conversation_id),
                name="persist-user-message",
            )

        generation = LLMStreamRequest(
            purpose="crm_chat",
            system_prompt=turn.instructions,
            messages=request.history(),
            temperature=self.settings.llm_temperature,
            max_tokens=self.settings.llm_max_tokens,
        )
        parts: List[str] = []
        try:
            async for piece in self.generator.stream(generation):
                parts.append(piece)
                yield {"event": "token", "data": {"text": piece}}
        except TextGenerationError as exc:
            LOGGER.error("Error in stream processing: %s", exc)
            yield {"event": "error", "data": {"message": f"Error: {exc}"}}
            return
        except Exception:
            LOGGER.exception("Unexpected error in stream processing")
            yield {"event": "error", "data": {"message": GENERIC_STREAM_ERROR}}
            return

        turn.advance(TurnState.COMPLETED)
        text = "".join(parts)
        if user_task is not None and text:
            self.tasks.spawn(
                self._persist_assistant_message(text, request.conversation_id, user_task),
                name="persist-assistant-message",
            )

        yield {
            "event": "result",
            "data": {
                "text": text,
                "conversationId": request.conversation_id,
                "crm": turn.result.summary() if turn.result else None,
            },
        }

    async def _persist_user_message(self, content: str, conversation_id: Optional[int]) -> int:
        if not conversation_id:
            conversation_id = await self.conversations.create_conversation(
                self.settings.demo_user_id,
                make_title(content, self.settings.conversation_title_max_chars),
            )
        await self.conversations.add_message(content, "user", conversation_id)
        return conversation_id

    async def _persist_assistant_message(
        self,
        text: str,
        conversation_id: Optional[int],
        user_task: asyncio.Task,
    ) -> None:
        try:
            created_id = await user_task
        except Exception:
            # already reported by the runner's error sink
            created_id = None
        target = conversation_id or created_id
        if not target:
            LOGGER.warning("Skipping assistant message persistence: no conversation available")
            return
        await self.conversations.add_message(text, "assistant", target)


def get_crm_chat_orchestrator(
    extractor: CrmQueryExtractor = Depends(get_crm_query_extractor),
    resolver: CrmIntentResolver = Depends(get_crm_intent_resolver),
    augmenter: CrmContextAugmenter = Depends(get_crm_context_augmenter),
    generator: TextGenerator = Depends(get_llm_gateway),
    conversations: ConversationRepository = Depends(get_conversation_repository),
    tasks: DetachedTaskRunner = Depends(get_background_task_runner),
) -> CrmChatOrchestrator:
    return CrmChatOrchestrator(
        extractor=extractor,
        resolver=resolver,
        augmenter=augmenter,
        generator=generator,
        conversations=conversations,
        tasks=tasks,
        settings=get_settings(),
    )
