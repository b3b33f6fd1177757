"""CRM 고객 레코드 조회 저장소.

The assistant only reads client rows. Every search method runs an exact pass first
and falls back to a partial (substring) pass when the exact pass finds nothing.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError
from supabase import Client

from app.core.config import get_settings
from app.models.crm import ClientRecord, ClientStatus
from app.services.supabase_client import get_supabase_client

LOGGER = logging.getLogger(__name__)


class ClientStoreError(RuntimeError):
    """CRM 저장소 조회 실패."""


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ClientRepository(ABC):
    @abstractmethod
    async def get_by_id(self, client_id: int) -> Optional[ClientRecord]:
        ...

    @abstractmethod
    async def search_by_name(self, term: str) -> List[ClientRecord]:
        """Match first_name or last_name, exact (case-insensitive) then partial."""
        ...

    @abstractmethod
    async def search_by_email(self, term: str) -> List[ClientRecord]:
        ...

    @abstractmethod
    async def filter_by_status(self, status: str) -> List[ClientRecord]:
        ...

    @abstractmethod
    async def filter_by_follow_up_window(self, start: datetime, end: datetime) -> List[ClientRecord]:
        """Clients whose next_follow_up lies in [start, end], ascending by next_follow_up."""
        ...


class InMemoryClientRepository(ClientRepository):
    def __init__(self, records: Optional[Iterable[ClientRecord]] = None) -> None:
        self._data: Dict[int, ClientRecord] = {}
        for record in records or []:
            self.add(record)

    def add(self, record: ClientRecord) -> ClientRecord:
        self._data[record.id] = record
        return record

    async def get_by_id(self, client_id: int) -> Optional[ClientRecord]:
        return self._data.get(client_id)

    async def search_by_name(self, term: str) -> List[ClientRecord]:
        needle = term.lower().strip()
        if not needle:
            return []
        exact = [
            record
            for record in self._data.values()
            if record.first_name.lower() == needle or record.last_name.lower() == needle
        ]
        if exact:
            return exact
        return [
            record
            for record in self._data.values()
            if needle in record.first_name.lower() or needle in record.last_name.lower()
        ]

    async def search_by_email(self, term: str) -> List[ClientRecord]:
        needle = term.lower().strip()
        if not needle:
            return []
        with_email = [record for record in self._data.values() if record.email]
        exact = [record for record in with_email if record.email.lower() == needle]
        if exact:
            return exact
        return [record for record in with_email if needle in record.email.lower()]

    async def filter_by_status(self, status: str) -> List[ClientRecord]:
        parsed = ClientStatus.parse(status)
        if parsed is None:
            return []
        return [record for record in self._data.values() if record.status is parsed]

    async def filter_by_follow_up_window(self, start: datetime, end: datetime) -> List[ClientRecord]:
        start, end = _as_utc(start), _as_utc(end)
        matches = [
            record
            for record in self._data.values()
            if record.next_follow_up is not None and start <= _as_utc(record.next_follow_up) <= end
        ]
        matches.sort(key=lambda record: _as_utc(record.next_follow_up))
        return matches


class SupabaseClientRepository(ClientRepository):
    def __init__(self, client: Client, table: str = "client") -> None:
        self.client = client
        self.table = table

    def _rows(self, response: Any) -> List[ClientRecord]:
        try:
            return [ClientRecord.model_validate(row) for row in (response.data or [])]
        except ValidationError as e:
            raise ClientStoreError(f"Malformed client row: {e}") from e

    async def _execute(self, query: Any) -> Any:
        # supabase-py is blocking; keep the round-trip off the event loop
        return await asyncio.to_thread(query.execute)

    async def get_by_id(self, client_id: int) -> Optional[ClientRecord]:
        try:
            response = await self._execute(
                self.client.table(self.table).select("*").eq("id", client_id).limit(1)
            )
        except Exception as e:
            raise ClientStoreError(f"get_by_id({client_id}) failed: {e}") from e
        rows = self._rows(response)
        return rows[0] if rows else None

    async def search_by_name(self, term: str) -> List[ClientRecord]:
        needle = term.lower().strip()
        if not needle:
            return []
        try:
            exact = await self._execute(
                self.client.table(self.table)
                .select("*")
                .or_(f"first_name.ilike.{needle},last_name.ilike.{needle}")
            )
            if exact.data:
                return self._rows(exact)
            partial = await self._execute(
                self.client.table(self.table)
                .select("*")
                .or_(f"first_name.ilike.%{needle}%,last_name.ilike.%{needle}%")
            )
        except ClientStoreError:
            raise
        except Exception as e:
            raise ClientStoreError(f"search_by_name({term!r}) failed: {e}") from e
        return self._rows(partial)

    async def search_by_email(self, term: str) -> List[ClientRecord]:
        needle = term.lower().strip()
        if not needle:
            return []
        try:
            exact = await self._execute(self.client.table(self.table).select("*").eq("email", needle))
            if exact.data:
                return self._rows(exact)
            partial = await self._execute(
                self.client.table(self.table).select("*").ilike("email", f"%{needle}%")
            )
        except ClientStoreError:
            raise
        except Exception as e:
            raise ClientStoreError(f"search_by_email({term!r}) failed: {e}") from e
        return self._rows(partial)

    async def filter_by_status(self, status: str) -> List[ClientRecord]:
        parsed = ClientStatus.parse(status)
        value = parsed.value if parsed else status.strip()
        try:
            response = await self._execute(self.client.table(self.table).select("*").eq("status", value))
        except Exception as e:
            raise ClientStoreError(f"filter_by_status({status!r}) failed: {e}") from e
        return self._rows(response)

    async def filter_by_follow_up_window(self, start: datetime, end: datetime) -> List[ClientRecord]:
        try:
            response = await self._execute(
                self.client.table(self.table)
                .select("*")
                .gte("next_follow_up", _as_utc(start).isoformat())
                .lte("next_follow_up", _as_utc(end).isoformat())
                .order("next_follow_up", desc=False)
            )
        except Exception as e:
            raise ClientStoreError(f"filter_by_follow_up_window failed: {e}") from e
        return self._rows(response)


@lru_cache
def get_client_repository() -> ClientRepository:
    settings = get_settings()
    if settings.supabase_enabled:
        return SupabaseClientRepository(get_supabase_client(), settings.crm_client_table)
    LOGGER.warning("Supabase not configured; CRM lookups use an empty in-memory store")
    return InMemoryClientRepository()
