"""대화/메시지 영속화 저장소."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional

from supabase import Client

from app.core.config import get_settings
from app.models.chat import Conversation, StoredMessage
from app.services.supabase_client import get_supabase_client

LOGGER = logging.getLogger(__name__)

DEFAULT_TITLE = "New Conversation"


class ConversationStoreError(RuntimeError):
    """대화 저장소 에러."""


class ConversationRepository(ABC):
    @abstractmethod
    async def create_conversation(
        self,
        user_id: str,
        title: Optional[str] = None,
        property_id: Optional[int] = None,
    ) -> int:
        ...

    @abstractmethod
    async def add_message(self, content: str, role: str, conversation_id: int) -> int:
        """Store one message and bump the conversation's updated_time."""
        ...

    @abstractmethod
    async def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        ...

    @abstractmethod
    async def list_conversations(self, user_id: str) -> List[Conversation]:
        """Most recently updated first."""
        ...

    @abstractmethod
    async def get_messages(self, conversation_id: int) -> List[StoredMessage]:
        """Oldest first."""
        ...

    @abstractmethod
    async def delete_conversation(self, conversation_id: int) -> None:
        ...


class InMemoryConversationRepository(ConversationRepository):
    def __init__(self) -> None:
        self._conversations: Dict[int, Conversation] = {}
        self._messages: Dict[int, List[StoredMessage]] = {}
        self._next_conversation_id = 1
        self._next_message_id = 1

    async def create_conversation(
        self,
        user_id: str,
        title: Optional[str] = None,
        property_id: Optional[int] = None,
    ) -> int:
        now = datetime.now(timezone.utc)
        conversation_id = self._next_conversation_id
        self._next_conversation_id += 1
        self._conversations[conversation_id] = Conversation(
            id=conversation_id,
            title=title or DEFAULT_TITLE,
            user_id=user_id,
            property_id=property_id,
            created_time=now,
            updated_time=now,
        )
        self._messages[conversation_id] = []
        return conversation_id

    async def add_message(self, content: str, role: str, conversation_id: int) -> int:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise ConversationStoreError(f"conversation {conversation_id} does not exist")
        now = datetime.now(timezone.utc)
        message_id = self._next_message_id
        self._next_message_id += 1
        self._messages[conversation_id].append(
            StoredMessage(
                id=message_id,
                content=content,
                role=role,
                conversation_id=conversation_id,
                created_time=now,
            )
        )
        self._conversations[conversation_id] = conversation.model_copy(update={"updated_time": now})
        return message_id

    async def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        return self._conversations.get(conversation_id)

    async def list_conversations(self, user_id: str) -> List[Conversation]:
        owned = [c for c in self._conversations.values() if c.user_id == user_id]
        owned.sort(key=lambda c: (c.updated_time, c.id), reverse=True)
        return owned

    async def get_messages(self, conversation_id: int) -> List[StoredMessage]:
        return list(self._messages.get(conversation_id, []))

    async def delete_conversation(self, conversation_id: int) -> None:
        self._conversations.pop(conversation_id, None)
        self._messages.pop(conversation_id, None)


class SupabaseConversationRepository(ConversationRepository):
    def __init__(
        self,
        client: Client,
        *,
        conversation_table: str = "conversation",
        message_table: str = "message",
        user_table: str = "user",
    ) -> None:
        self.client = client
        self.conversation_table = conversation_table
        self.message_table = message_table
        self.user_table = user_table

    async def _execute(self, query: Any) -> Any:
        # supabase-py is blocking; keep the round-trip off the event loop
        return await asyncio.to_thread(query.execute)

    async def _ensure_user(self, user_id: str) -> None:
        existing = await self._execute(
            self.client.table(self.user_table).select("user_id").eq("user_id", user_id).limit(1)
        )
        if not existing.data:
            await self._execute(
                self.client.table(self.user_table).insert(
                    {"user_id": user_id, "email": f"{user_id}@example.com"}
                )
            )

    async def create_conversation(
        self,
        user_id: str,
        title: Optional[str] = None,
        property_id: Optional[int] = None,
    ) -> int:
        now = datetime.now(timezone.utc).isoformat()
        data = {
            "user_id": user_id,
            "title": title or DEFAULT_TITLE,
            "property_id": property_id,
            "created_time": now,
            "updated_time": now,
        }
        try:
            await self._ensure_user(user_id)
            response = await self._execute(self.client.table(self.conversation_table).insert(data))
        except Exception as e:
            raise ConversationStoreError(f"Failed to create conversation: {e}") from e
        if not response.data:
            raise ConversationStoreError("Failed to create conversation: empty insert response")
        return int(response.data[0]["id"])

    async def add_message(self, content: str, role: str, conversation_id: int) -> int:
        data = {"content": content, "role": role, "conversation_id": conversation_id}
        try:
            response = await self._execute(self.client.table(self.message_table).insert(data))
        except Exception as e:
            raise ConversationStoreError(f"Failed to add message: {e}") from e

        try:
            await self._execute(
                self.client.table(self.conversation_table)
                .update({"updated_time": datetime.now(timezone.utc).isoformat()})
                .eq("id", conversation_id)
            )
        except Exception as e:
            LOGGER.warning("Failed to bump conversation %s updated_time: %s", conversation_id, e)

        return int(response.data[0]["id"]) if response.data else 0

    async def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        try:
            response = await self._execute(
                self.client.table(self.conversation_table).select("*").eq("id", conversation_id).limit(1)
            )
        except Exception as e:
            raise ConversationStoreError(f"Failed to get conversation: {e}") from e
        rows = response.data or []
        return Conversation.model_validate(rows[0]) if rows else None

    async def list_conversations(self, user_id: str) -> List[Conversation]:
        try:
            response = await self._execute(
                self.client.table(self.conversation_table)
                .select("*")
                .eq("user_id", user_id)
                .order("updated_time", desc=True)
            )
        except Exception as e:
            raise ConversationStoreError(f"Failed to list conversations: {e}") from e
        return [Conversation.model_validate(row) for row in (response.data or [])]

    async def get_messages(self, conversation_id: int) -> List[StoredMessage]:
        try:
            response = await self._execute(
                self.client.table(self.message_table)
                .select("*")
                .eq("conversation_id", conversation_id)
                .order("created_time", desc=False)
            )
        except Exception as e:
            raise ConversationStoreError(f"Failed to get messages: {e}") from e
        return [StoredMessage.model_validate(row) for row in (response.data or [])]

    async def delete_conversation(self, conversation_id: int) -> None:
        try:
            await self._execute(
                self.client.table(self.message_table).delete().eq("conversation_id", conversation_id)
            )
            await self._execute(self.client.table(self.conversation_table).delete().eq("id", conversation_id))
        except Exception as e:
            raise ConversationStoreError(f"Failed to delete conversation: {e}") from e


@lru_cache
def get_conversation_repository() -> ConversationRepository:
    settings = get_settings()
    if settings.supabase_enabled:
        return SupabaseConversationRepository(
            get_supabase_client(),
            conversation_table=settings.conversation_table,
            message_table=settings.message_table,
            user_table=settings.user_table,
        )
    return InMemoryConversationRepository()
