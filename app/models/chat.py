from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict


class ChatBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ChatMessage(ChatBase):
    role: Literal["user", "assistant", "system"]
    content: str


class ChatRequest(ChatBase):
    messages: List[ChatMessage] = Field(..., min_length=1)
    conversation_id: Optional[int] = Field(default=None, alias="conversationId")

    @property
    def last_message(self) -> ChatMessage:
        return self.messages[-1]

    def history(self) -> List[Dict[str, str]]:
        return [{"role": message.role, "content": message.content} for message in self.messages]


class StoredMessage(ChatBase):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[int] = None
    content: str
    role: Literal["user", "assistant"]
    conversation_id: Optional[int] = None
    created_time: Optional[datetime] = None


class Conversation(ChatBase):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int
    title: Optional[str] = None
    user_id: str
    property_id: Optional[int] = None
    created_time: Optional[datetime] = None
    updated_time: Optional[datetime] = None


class ConversationDetail(Conversation):
    messages: List[StoredMessage] = Field(default_factory=list)


class ConversationCreateRequest(ChatBase):
    title: Optional[str] = None
    property_id: Optional[int] = Field(default=None, alias="propertyId")


class CrmToolRequest(ChatBase):
    action: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)
