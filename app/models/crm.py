from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel
from pydantic.config import ConfigDict


class ClientStatus(str, Enum):
    LEAD = "Lead"
    ACTIVE = "Active"
    CLOSED = "Closed"
    LOST = "Lost"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["ClientStatus"]:
        """Case-insensitive lookup; accepts plural forms such as "leads"."""
        if not value:
            return None
        key = value.strip().lower()
        if key == "leads":
            key = "lead"
        for member in cls:
            if member.value.lower() == key:
                return member
        return None


class ClientRecord(BaseModel):
    """A row of the CRM `client` table. Read-only from the assistant's point of view."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: int
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    status: ClientStatus
    source: Optional[str] = None
    last_contact_date: Optional[datetime] = None
    next_follow_up: Optional[datetime] = None
    budget_min: Optional[float] = None
    budget_max: Optional[float] = None
    property_type: Optional[str] = None
    assigned_agent: Optional[str] = None
    notes: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
