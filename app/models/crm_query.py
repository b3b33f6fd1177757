from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union

from app.models.crm import ClientRecord


@dataclass(frozen=True)
class ById:
    client_id: int
    phone_hint: bool = False


@dataclass(frozen=True)
class ByName:
    name: str
    phone_hint: bool = False


@dataclass(frozen=True)
class ByEmail:
    email: str
    phone_hint: bool = False


@dataclass(frozen=True)
class ByStatus:
    status: str
    phone_hint: bool = False


@dataclass(frozen=True)
class ByFollowUpWindow:
    days: int
    phone_hint: bool = False


@dataclass(frozen=True)
class ByPropertyOwnerName:
    name: str
    phone_hint: bool = False


QueryIntent = Union[ById, ByName, ByEmail, ByStatus, ByFollowUpWindow, ByPropertyOwnerName]


class ResolutionKind(str, Enum):
    SINGLE_CLIENT = "single_client"
    CLIENT_LIST = "client_list"
    FOLLOW_UP_LIST = "follow_up_list"
    NO_MATCH = "no_match"


@dataclass
class ResolutionResult:
    kind: ResolutionKind
    records: List[ClientRecord] = field(default_factory=list)
    matched_by: Optional[str] = None
    matched_value: Optional[str] = None
    phone_hint: bool = False

    @property
    def found(self) -> bool:
        return self.kind is not ResolutionKind.NO_MATCH

    @property
    def record(self) -> Optional[ClientRecord]:
        return self.records[0] if self.records else None

    @classmethod
    def no_match(cls, *, phone_hint: bool = False) -> "ResolutionResult":
        return cls(kind=ResolutionKind.NO_MATCH, phone_hint=phone_hint)

    def summary(self) -> dict:
        return {
            "kind": self.kind.value,
            "matchedBy": self.matched_by,
            "matchedValue": self.matched_value,
            "count": len(self.records),
            "phoneHint": self.phone_hint,
        }
