from datetime import datetime

import pytest

from app.models.crm import ClientStatus
from app.models.crm_query import (
    ByEmail,
    ByFollowUpWindow,
    ById,
    ByName,
    ByPropertyOwnerName,
    ByStatus,
    ResolutionKind,
)
from app.services.client_repository import ClientRepository, ClientStoreError, InMemoryClientRepository
from app.services.crm_intent_resolver import CrmIntentResolver
from app.services.crm_query_extractor import CrmQueryExtractor

from conftest import NOW, make_client


pytestmark = pytest.mark.anyio


class FailingClientRepository(ClientRepository):
    async def get_by_id(self, client_id):
        raise ClientStoreError("down")

    async def search_by_name(self, term):
        raise ClientStoreError("down")

    async def search_by_email(self, term):
        raise ClientStoreError("down")

    async def filter_by_status(self, status):
        raise ClientStoreError("down")

    async def filter_by_follow_up_window(self, start: datetime, end: datetime):
        raise ClientStoreError("down")


@pytest.fixture
def resolver(client_repository) -> CrmIntentResolver:
    return CrmIntentResolver(client_repository, clock=lambda: NOW)


async def test_resolve_by_id_returns_single_client(resolver):
    result = await resolver.resolve(ById(1))
    assert result.kind is ResolutionKind.SINGLE_CLIENT
    assert result.record.full_name == "Jane Smith"
    assert result.matched_by == "id"
    assert result.matched_value == "1"


async def test_resolve_unknown_id_is_no_match(resolver):
    result = await resolver.resolve(ById(999))
    assert result.kind is ResolutionKind.NO_MATCH
    assert result.found is False
    assert result.records == []


async def test_resolve_none_is_no_match(resolver):
    result = await resolver.resolve(None)
    assert result.kind is ResolutionKind.NO_MATCH


async def test_resolve_single_token_name(resolver):
    result = await resolver.resolve(ByName("jane"))
    assert result.kind is ResolutionKind.CLIENT_LIST
    assert result.matched_by == "name"
    # exact first-name hit wins over the partial "Janet" match
    assert [r.id for r in result.records] == [1]


async def test_resolve_partial_name(resolver):
    result = await resolver.resolve(ByName("jan"))
    assert sorted(r.id for r in result.records) == [1, 3]


async def test_full_name_falls_back_to_first_token(resolver):
    result = await resolver.resolve(ByName("Jane Smith"))
    assert result.matched_by == "first_name"
    assert result.matched_value == "Jane"
    assert [r.id for r in result.records] == [1]


async def test_full_name_falls_back_to_last_token(resolver):
    result = await resolver.resolve(ByName("Zed Stone"))
    assert result.matched_by == "last_name"
    assert result.matched_value == "Stone"
    assert [r.id for r in result.records] == [4]


async def test_unknown_full_name_is_no_match(resolver):
    result = await resolver.resolve(ByName("Zed Quux"))
    assert result.kind is ResolutionKind.NO_MATCH


async def test_property_owner_resolves_like_a_name(resolver):
    result = await resolver.resolve(ByPropertyOwnerName("John Doe"))
    assert result.found
    assert [r.id for r in result.records] == [2]


async def test_resolve_by_email(resolver):
    result = await resolver.resolve(ByEmail("jane.smith@example.com"))
    assert result.matched_by == "email"
    assert [r.id for r in result.records] == [1]


async def test_resolve_by_status_accepts_plural(resolver):
    result = await resolver.resolve(ByStatus("leads"))
    assert result.kind is ResolutionKind.CLIENT_LIST
    assert sorted(r.id for r in result.records) == [2, 3]


async def test_follow_up_window_is_bounded_by_days(resolver):
    result = await resolver.resolve(ByFollowUpWindow(5))
    assert result.kind is ResolutionKind.FOLLOW_UP_LIST
    assert result.matched_by == "days"
    assert result.matched_value == "5"
    assert [r.id for r in result.records] == [1]


async def test_follow_up_window_sorted_ascending(resolver):
    result = await resolver.resolve(ByFollowUpWindow(30))
    assert [r.id for r in result.records] == [1, 2]


async def test_follow_up_window_overflow_is_no_match(resolver):
    result = await resolver.resolve(ByFollowUpWindow(10**12))
    assert result.kind is ResolutionKind.NO_MATCH


async def test_phone_hint_survives_no_match(resolver):
    result = await resolver.resolve(ByName("Zed Quux", phone_hint=True))
    assert result.kind is ResolutionKind.NO_MATCH
    assert result.phone_hint is True


async def test_store_failure_degrades_to_no_match():
    resolver = CrmIntentResolver(FailingClientRepository(), clock=lambda: NOW)
    for intent in (ById(1), ByName("Jane Smith"), ByEmail("x@y.io"), ByStatus("lead"), ByFollowUpWindow(3)):
        result = await resolver.resolve(intent)
        assert result.kind is ResolutionKind.NO_MATCH


async def test_summary_shape(resolver):
    result = await resolver.resolve(ById(1))
    assert result.summary() == {
        "kind": "single_client",
        "matchedBy": "id",
        "matchedValue": "1",
        "count": 1,
        "phoneHint": False,
    }


async def test_first_name_is_tried_before_last_name():
    repository = InMemoryClientRepository(
        [make_client(1, "Jane", "Doe"), make_client(2, "Bob", "Smith")]
    )
    resolver = CrmIntentResolver(repository, clock=lambda: NOW)

    result = await resolver.resolve(CrmQueryExtractor().extract("find Jane Smith in the CRM"))

    assert result.kind is ResolutionKind.CLIENT_LIST
    assert result.matched_by == "first_name"
    assert [r.full_name for r in result.records] == ["Jane Doe"]


async def test_status_without_records_is_no_match():
    repository = InMemoryClientRepository([make_client(1, "Bob", "Stone", status=ClientStatus.CLOSED)])
    resolver = CrmIntentResolver(repository, clock=lambda: NOW)

    result = await resolver.resolve(ByStatus("active"))

    assert result.kind is ResolutionKind.NO_MATCH
