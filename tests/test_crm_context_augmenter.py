import pytest

from app.models.crm_query import ResolutionKind, ResolutionResult
from app.services.crm_context_augmenter import SYSTEM_PROMPT, CrmContextAugmenter
from app.services.crm_query_extractor import CrmQueryExtractor

from conftest import make_client, sample_clients


@pytest.fixture
def augmenter() -> CrmContextAugmenter:
    return CrmContextAugmenter(CrmQueryExtractor(), max_records=5)


def test_found_single_client_block(augmenter):
    jane = sample_clients()[0]
    result = ResolutionResult(
        kind=ResolutionKind.SINGLE_CLIENT,
        records=[jane],
        matched_by="id",
        matched_value="1",
    )
    prompt = augmenter.build_instructions(result, had_candidate_pattern=True)

    assert prompt.startswith(SYSTEM_PROMPT + "\n\n")
    assert "Match type: single client" in prompt
    assert "Matched field: id" in prompt
    assert '"email": "jane.smith@example.com"' in prompt
    assert "comes from the CRM records" in prompt
    assert "phone number prominently" not in prompt


def test_long_lists_are_truncated_with_note(augmenter):
    records = [make_client(i, f"Lead{i}", "Person") for i in range(1, 9)]
    result = ResolutionResult(
        kind=ResolutionKind.CLIENT_LIST,
        records=records,
        matched_by="status",
        matched_value="active",
    )
    prompt = augmenter.augment("base", result, False)

    assert "(Showing 5 of 8 results)" in prompt
    assert "Lead5" in prompt
    assert "Lead6" not in prompt


def test_follow_up_guidance(augmenter):
    result = ResolutionResult(
        kind=ResolutionKind.FOLLOW_UP_LIST,
        records=sample_clients()[:2],
        matched_by="days",
        matched_value="14",
    )
    prompt = augmenter.augment("base", result, True)
    assert "Match type: upcoming follow-ups" in prompt
    assert "chronological order" in prompt
    assert "(Showing" not in prompt


def test_phone_hint_adds_phone_guidance(augmenter):
    result = ResolutionResult(
        kind=ResolutionKind.CLIENT_LIST,
        records=[sample_clients()[0]],
        matched_by="name",
        matched_value="Jane",
        phone_hint=True,
    )
    prompt = augmenter.augment("base", result, True)
    assert "phone number prominently" in prompt


def test_not_found_block_names_the_candidate(augmenter):
    prompt = augmenter.augment(
        "base",
        ResolutionResult.no_match(),
        True,
        message="Do we have a client named Zed Quux?",
    )
    assert prompt.startswith("base\n\nCRM LOOKUP RESULT: no matching records.")
    assert 'for "Zed Quux"' in prompt
    assert "Mention Zed Quux by name" in prompt
    assert "add the record as a new client" in prompt


def test_not_found_block_without_candidate(augmenter):
    prompt = augmenter.augment("base", None, True, message="search the CRM please")
    assert "CRM LOOKUP RESULT: no matching records." in prompt
    assert 'for "' not in prompt


def test_generic_block_when_not_a_lookup(augmenter):
    prompt = augmenter.augment("base", None, False, message="What are mortgage rates?")
    assert prompt == (
        "base\n\nNo CRM records were retrieved for this message. If the user asks about "
        "specific clients, properties or records, say that you do not have that data instead "
        "of making it up."
    )
