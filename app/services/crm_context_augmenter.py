from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import List, Optional

from app.core.config import get_settings
from app.models.crm import ClientRecord
from app.models.crm_query import ResolutionKind, ResolutionResult
from app.services.crm_query_extractor import CrmQueryExtractor, get_crm_query_extractor

LOGGER = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are Dibs AI, an intelligent real estate assistant. You help users find, analyze, "
    "and make smarter property decisions with AI-powered insights. Be helpful, accurate, and "
    "provide detailed information about real estate topics including property values, market "
    "trends, investment strategies, mortgages, and more. You also have read access to the "
    "agency's CRM client records."
)

_MATCH_TYPE_LABELS = {
    ResolutionKind.SINGLE_CLIENT: "single client",
    ResolutionKind.CLIENT_LIST: "client list",
    ResolutionKind.FOLLOW_UP_LIST: "upcoming follow-ups",
}

_KIND_GUIDANCE = {
    ResolutionKind.SINGLE_CLIENT: (
        "- Summarize this client's profile and answer the user's question about them directly."
    ),
    ResolutionKind.CLIENT_LIST: (
        "- Several clients may match. List them briefly by name and status, and if the user "
        "meant one person, ask which one."
    ),
    ResolutionKind.FOLLOW_UP_LIST: (
        "- Present the follow-ups in chronological order with their dates, the client's name "
        "and what the follow-up is about when the notes say so."
    ),
}


def _dump(records: List[ClientRecord]) -> List[dict]:
    return [record.model_dump(mode="json") for record in records]


class CrmContextAugmenter:
    """Turns a CRM lookup outcome into extra instructions for the model."""

    def __init__(
        self,
        extractor: CrmQueryExtractor,
        *,
        max_records: int = 5,
        debug: bool = False,
    ) -> None:
        self.extractor = extractor
        self.max_records = max_records
        self.debug = debug

    def build_instructions(
        self,
        result: Optional[ResolutionResult],
        *,
        had_candidate_pattern: bool,
        message: Optional[str] = None,
    ) -> str:
        return self.augment(SYSTEM_PROMPT, result, had_candidate_pattern, message=message)

    def augment(
        self,
        base: str,
        result: Optional[ResolutionResult],
        had_candidate_pattern: bool,
        *,
        message: Optional[str] = None,
    ) -> str:
        if result is not None and result.found:
            block = self._found_block(result)
            branch = "found"
        elif had_candidate_pattern:
            block = self._not_found_block(message)
            branch = "not_found"
        else:
            block = self._generic_block()
            branch = "generic"
        if self.debug:
            LOGGER.info("[crm-augmenter] branch=%s appended_chars=%d", branch, len(block))
        return f"{base}\n\n{block}"

    def serialize_records(self, result: ResolutionResult) -> str:
        if result.kind is ResolutionKind.SINGLE_CLIENT and result.record is not None:
            return json.dumps(result.record.model_dump(mode="json"), indent=2)
        shown = result.records[: self.max_records]
        text = json.dumps(_dump(shown), indent=2)
        total = len(result.records)
        if total > len(shown):
            text += f"\n(Showing {len(shown)} of {total} results)"
        return text

    def _found_block(self, result: ResolutionResult) -> str:
        lines = [
            "CRM DATA (retrieved from the client records for this message):",
            f"Match type: {_MATCH_TYPE_LABELS[result.kind]}",
            f"Matched field: {result.matched_by}",
            f"Matched value: {result.matched_value}",
            "",
            self.serialize_records(result),
            "",
            "RESPONSE GUIDANCE:",
            _KIND_GUIDANCE[result.kind],
            "- Reference concrete fields from the records: contact info (email, phone), "
            "preferences (property type), budget range, status, follow-up dates, assigned agent "
            "and notes.",
            "- State explicitly that this information comes from the CRM records.",
            "- Only use values present in the records; do not fill gaps with guesses.",
        ]
        if result.phone_hint:
            lines.append(
                "- The user is asking about a phone number: give the client's phone number "
                "prominently at the start of your answer, or say clearly that no phone number "
                "is on file."
            )
        return "\n".join(lines)

    def _not_found_block(self, message: Optional[str]) -> str:
        name = self.extractor.candidate_name(message) if message else None
        subject = f' for "{name}"' if name else ""
        lines = [
            "CRM LOOKUP RESULT: no matching records.",
            f"The user's message looks like a CRM lookup. The CRM records were searched{subject} "
            "and nothing matched.",
            "",
            "RESPONSE GUIDANCE:",
            f"- Tell the user that you searched the CRM and could not find a matching record{subject}.",
            "- Offer to add the record as a new client, or to refine the search.",
            "- Ask for more specific identifying details: full name, email address, phone number "
            "or client ID.",
            "- Suggest checking the spelling or trying an alternate name or term.",
            "- Do not invent client details.",
        ]
        if name:
            lines.insert(
                5,
                f"- Mention {name} by name when you apologize for not finding the record.",
            )
        return "\n".join(lines)

    def _generic_block(self) -> str:
        return (
            "No CRM records were retrieved for this message. If the user asks about specific "
            "clients, properties or records, say that you do not have that data instead of "
            "making it up."
        )


@lru_cache
def get_crm_context_augmenter() -> CrmContextAugmenter:
    settings = get_settings()
    return CrmContextAugmenter(
        get_crm_query_extractor(),
        max_records=settings.crm_max_listed_records,
        debug=settings.crm_debug,
    )
