from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from fastapi import Depends

from app.core.config import get_settings
from app.models.crm import ClientRecord
from app.models.crm_query import (
    ByEmail,
    ByFollowUpWindow,
    ById,
    ByName,
    ByPropertyOwnerName,
    ByStatus,
    QueryIntent,
    ResolutionKind,
    ResolutionResult,
)
from app.services.client_repository import ClientRepository, ClientStoreError, get_client_repository

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Strategy = Callable[[QueryIntent], Awaitable[Optional[ResolutionResult]]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CrmIntentResolver:
    """Runs an intent against the CRM store.

    Strategies are tried in a fixed order (email, id, name, property owner, status,
    follow-up window) and the first non-empty result is returned. A store failure in
    one strategy is logged and treated as "nothing found".
    """

    def __init__(
        self,
        repository: ClientRepository,
        *,
        clock: Optional[Clock] = None,
        debug: bool = False,
    ) -> None:
        self.repository = repository
        self.clock = clock or _utcnow
        self.debug = debug
        self._strategies: Tuple[Tuple[str, Strategy], ...] = (
            ("email", self._by_email),
            ("id", self._by_id),
            ("name", self._by_name),
            ("property_owner", self._by_property_owner),
            ("status", self._by_status),
            ("follow_up_window", self._by_follow_up_window),
        )

    def _log_debug(self, message: str, *args) -> None:
        if self.debug:
            LOGGER.info("[crm-resolver] " + message, *args)

    async def resolve(self, intent: Optional[QueryIntent]) -> ResolutionResult:
        if intent is None:
            return ResolutionResult.no_match()
        for label, strategy in self._strategies:
            result = await strategy(intent)
            if result is not None:
                self._log_debug("strategy=%s matched_by=%s count=%d", label, result.matched_by, len(result.records))
                return result
        self._log_debug("no records for intent=%s", intent)
        return ResolutionResult.no_match(phone_hint=intent.phone_hint)

    async def _guarded(self, label: str, call: Callable[[], Awaitable]) -> Optional[object]:
        try:
            return await call()
        except ClientStoreError as exc:
            LOGGER.warning("CRM store failure in %s lookup: %s", label, exc)
            return None

    def _list_result(
        self,
        records: Optional[Sequence[ClientRecord]],
        *,
        matched_by: str,
        matched_value: str,
        intent: QueryIntent,
        kind: ResolutionKind = ResolutionKind.CLIENT_LIST,
    ) -> Optional[ResolutionResult]:
        if not records:
            return None
        return ResolutionResult(
            kind=kind,
            records=list(records),
            matched_by=matched_by,
            matched_value=matched_value,
            phone_hint=intent.phone_hint,
        )

    async def _by_email(self, intent: QueryIntent) -> Optional[ResolutionResult]:
        if not isinstance(intent, ByEmail):
            return None
        records = await self._guarded("email", lambda: self.repository.search_by_email(intent.email))
        return self._list_result(records, matched_by="email", matched_value=intent.email, intent=intent)

    async def _by_id(self, intent: QueryIntent) -> Optional[ResolutionResult]:
        if not isinstance(intent, ById):
            return None
        record = await self._guarded("id", lambda: self.repository.get_by_id(intent.client_id))
        if record is None:
            return None
        return ResolutionResult(
            kind=ResolutionKind.SINGLE_CLIENT,
            records=[record],
            matched_by="id",
            matched_value=str(intent.client_id),
            phone_hint=intent.phone_hint,
        )

    async def _search_name(self, name: str, intent: QueryIntent) -> Optional[ResolutionResult]:
        records = await self._guarded("name", lambda: self.repository.search_by_name(name))
        result = self._list_result(records, matched_by="name", matched_value=name, intent=intent)
        if result is not None or " " not in name.strip():
            return result

        parts = name.split()
        attempts: List[Tuple[str, str]] = [("first_name", parts[0]), ("last_name", parts[-1])]
        for matched_by, part in attempts:
            self._log_debug("retrying name search with %s=%r", matched_by, part)
            records = await self._guarded(matched_by, lambda: self.repository.search_by_name(part))
            result = self._list_result(records, matched_by=matched_by, matched_value=part, intent=intent)
            if result is not None:
                return result
        return None

    async def _by_name(self, intent: QueryIntent) -> Optional[ResolutionResult]:
        if not isinstance(intent, ByName):
            return None
        return await self._search_name(intent.name, intent)

    async def _by_property_owner(self, intent: QueryIntent) -> Optional[ResolutionResult]:
        # Property lookups resolve to the owning client by name.
        if not isinstance(intent, ByPropertyOwnerName):
            return None
        return await self._search_name(intent.name, intent)

    async def _by_status(self, intent: QueryIntent) -> Optional[ResolutionResult]:
        if not isinstance(intent, ByStatus):
            return None
        records = await self._guarded("status", lambda: self.repository.filter_by_status(intent.status))
        return self._list_result(records, matched_by="status", matched_value=intent.status, intent=intent)

    async def _by_follow_up_window(self, intent: QueryIntent) -> Optional[ResolutionResult]:
        if not isinstance(intent, ByFollowUpWindow):
            return None
        start = self.clock()
        try:
            end = start + timedelta(days=int(intent.days))
        except (OverflowError, ValueError, TypeError):
            LOGGER.warning("Ignoring unusable follow-up window: %r days", intent.days)
            return None
        records = await self._guarded(
            "follow_up_window",
            lambda: self.repository.filter_by_follow_up_window(start, end),
        )
        return self._list_result(
            records,
            matched_by="days",
            matched_value=str(intent.days),
            intent=intent,
            kind=ResolutionKind.FOLLOW_UP_LIST,
        )


def get_crm_intent_resolver(
    repository: ClientRepository = Depends(get_client_repository),
) -> CrmIntentResolver:
    return CrmIntentResolver(repository, debug=get_settings().crm_debug)
