"""Free-text → CRM lookup intent.

Rules are evaluated top to bottom and the first one that yields an intent wins, so the
order of ``INTENT_RULES`` is the precedence. Email addresses are swapped for a placeholder
before any rule runs so their local part is never read as a person's name.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, List, Match, Optional, Pattern, Sequence, Tuple

from app.core.config import get_settings
from app.models.crm_query import (
    ByEmail,
    ByFollowUpWindow,
    ById,
    ByName,
    ByPropertyOwnerName,
    ByStatus,
    QueryIntent,
)

LOGGER = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
EMAIL_PLACEHOLDER = "<<EMAIL>>"

_WORD = r"[a-z][a-z'’\-]*"
_NAME = rf"(?P<name>{_WORD}(?:\s+{_WORD}){{0,3}}?)"
# stop before a possessive, punctuation, the email placeholder or a trailing clause
_NAME_END = (
    r"(?=\s*(?:<<EMAIL>>|['’]s\b|[?.!,;:]|$)"
    r"|\s+(?:in|from|on|at|with|and|please|for|who|that|whose)\b)"
)
_STATUS = r"(?P<status>leads?|active|closed|lost)"
_FOLLOW_UP = r"follow[\s-]?ups?"
_DAYS = r"(?P<days>\d+)\s+days?\b"

_LEADING_FILLER = {
    "what's", "whats", "what", "is", "are", "was", "about", "me", "show", "get", "give",
    "find", "pull", "up", "the", "a", "an", "for", "of", "client", "customer", "contact",
    "our", "my", "mr", "mrs", "ms", "dr",
}
_REJECTED_NAME_WORDS = {
    "all", "any", "every", "clients", "customers", "contacts", "leads", "client", "customer",
    "contact", "follow", "ups", "follow-up", "follow-ups", "me", "us", "you", "it", "them",
    "everyone", "anyone", "someone", "information", "info", "details", "crm", "database",
    "records", "record", "status", "active", "closed", "lost",
    "house", "houses", "home", "homes", "property", "properties", "listing", "listings",
    "condo", "condos", "apartment", "apartments",
}

PHONE_NAME_PATTERN = re.compile(
    rf"\bphone(?:\s+number)?\s+(?:for|of)\s+{_NAME}{_NAME_END}", re.IGNORECASE
)
PHONE_WORD_PATTERN = re.compile(r"\b(?:phone|number)\b", re.IGNORECASE)
WHO_IS_PATTERN = re.compile(rf"\bwho\s+is\s+{_NAME}{_NAME_END}", re.IGNORECASE)
LOOKUP_PATTERN = re.compile(
    r"\b(?:clients?|customers?|contacts?|leads?|crm|records?|follow[\s-]?ups?|find|search"
    r"|look\s*up|lookup|phone|e-?mail|tell\s+me\s+about|who\s+is|do\s+we\s+have"
    r"|(?:information|info|details)\s+(?:on|about|for))\b",
    re.IGNORECASE,
)


def _clean_name(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    text = raw.replace("’", "'").strip(" \t'\"-.,")
    text = re.sub(r"'s$", "", text, flags=re.IGNORECASE)
    tokens = text.split()
    while tokens and tokens[0].lower() in _LEADING_FILLER:
        tokens.pop(0)
    if not tokens or any(token.lower() in _REJECTED_NAME_WORDS for token in tokens):
        return None
    return " ".join(tokens)


def _to_int(raw: Optional[str]) -> Optional[int]:
    try:
        return int(raw) if raw is not None else None
    except ValueError:
        return None


def _build_id(match: Match[str], _emails: Sequence[str]) -> Optional[QueryIntent]:
    client_id = _to_int(match.group("id"))
    return ById(client_id) if client_id is not None else None


def _build_email(match: Match[str], emails: Sequence[str]) -> Optional[QueryIntent]:
    if emails:
        return ByEmail(emails[0])
    value = (match.group("email") or "").strip()
    if not value or value == EMAIL_PLACEHOLDER:
        return None
    return ByEmail(value)


def _build_name(match: Match[str], _emails: Sequence[str]) -> Optional[QueryIntent]:
    name = _clean_name(match.group("name"))
    return ByName(name) if name else None


def _build_property_owner(match: Match[str], _emails: Sequence[str]) -> Optional[QueryIntent]:
    name = _clean_name(match.group("name"))
    return ByPropertyOwnerName(name) if name else None


def _build_status(match: Match[str], _emails: Sequence[str]) -> Optional[QueryIntent]:
    return ByStatus(match.group("status").lower())


def _build_follow_up(match: Match[str], _emails: Sequence[str]) -> Optional[QueryIntent]:
    days = _to_int(match.group("days"))
    return ByFollowUpWindow(days) if days is not None else None


@dataclass(frozen=True)
class IntentRule:
    label: str
    pattern: Pattern[str]
    build: Callable[[Match[str], Sequence[str]], Optional[QueryIntent]]


def _rule(label: str, pattern: str, build) -> IntentRule:
    return IntentRule(label=label, pattern=re.compile(pattern, re.IGNORECASE), build=build)


NAME_RULES: Tuple[IntentRule, ...] = (
    _rule(
        "name:named",
        rf"\b(?:client|customer|contact|lead)s?\s+(?:named|called)\s+{_NAME}{_NAME_END}",
        _build_name,
    ),
    _rule("name:tell_me_about", rf"\btell\s+me\s+about\s+{_NAME}(?=['’]s\b)", _build_name),
    _rule(
        "name:possessive_details",
        rf"(?<!['’])\b(?P<name>{_WORD}(?:\s+{_WORD})?)['’]s\s+(?:contact\s+)?"
        r"(?:information|info|details|profile|record|file|phone|number|email|budget|status"
        r"|preferences|notes)\b",
        _build_name,
    ),
    _rule(
        "name:find",
        rf"\b(?:find|search\s+for|look\s+up|lookup|pull\s+up)\s+{_NAME}{_NAME_END}",
        _build_name,
    ),
    _rule(
        "name:do_we_have",
        rf"\bdo\s+we\s+have\s+(?:a|an|any)\s+(?:client|customer|contact)s?\s+"
        rf"(?:named|called|by\s+the\s+name(?:\s+of)?)\s+{_NAME}{_NAME_END}",
        _build_name,
    ),
)

PROPERTY_OWNER_RULE = _rule(
    "property_owner",
    rf"\babout\s+{_NAME}(?=['’]s\s+(?:property|properties|house|home|listing|condo|apartment|place)\b)",
    _build_property_owner,
)

INTENT_RULES: Tuple[IntentRule, ...] = (
    _rule(
        "id",
        r"\b(?:client|customer|contact)\s+(?:with\s+)?(?:the\s+)?(?:id\s*(?:#|:|number)?\s*|#\s*)(?P<id>\d+)\b",
        _build_id,
    ),
    _rule(
        "email",
        rf"{re.escape(EMAIL_PLACEHOLDER)}"
        r"|\b(?:client|customer|contact)s?\s+with\s+(?:the\s+)?(?:an\s+)?e-?mail(?:\s+address)?"
        r"\s*(?:of\s+|:\s*)?(?P<email>[^\s,;?!]+)",
        _build_email,
    ),
    *NAME_RULES,
    PROPERTY_OWNER_RULE,
    _rule(
        "status:with_status",
        r"\b(?:clients|customers|contacts)\s+(?:with|in|having)\s+(?:a\s+|the\s+)?status\s+"
        rf"(?:of\s+|=\s*|:\s*)?['\"]?{_STATUS}\b",
        _build_status,
    ),
    _rule(
        "status:list",
        r"\b(?:show|find|list|get|display)\s+(?:me\s+)?(?:all\s+)?(?:(?:the|my|our)\s+)?"
        rf"{_STATUS}\s+(?:clients|customers|contacts)\b",
        _build_status,
    ),
    _rule(
        "follow_up:in_days",
        rf"\b{_FOLLOW_UP}\b(?:\s+\w+){{0,4}}?\s+(?:in|within|for)\s+(?:the\s+)?(?:next\s+)?{_DAYS}",
        _build_follow_up,
    ),
    _rule(
        "follow_up:next_days",
        rf"\b{_FOLLOW_UP}\b(?:\s+\w+){{0,4}}?\s+(?:the\s+)?next\s+{_DAYS}",
        _build_follow_up,
    ),
    _rule(
        "follow_up:days_first",
        rf"\b(?:in|within|for)\s+(?:the\s+)?(?:next\s+)?{_DAYS}.*?\b{_FOLLOW_UP}\b",
        _build_follow_up,
    ),
)


class CrmQueryExtractor:
    """Heuristic CRM intent extraction. Pure function of the input text."""

    def __init__(self, *, rules: Sequence[IntentRule] = INTENT_RULES, debug: bool = False) -> None:
        self.rules = tuple(rules)
        self.debug = debug

    def _log_debug(self, message: str, *args) -> None:
        if self.debug:
            LOGGER.info("[crm-extractor] " + message, *args)

    @staticmethod
    def isolate_emails(message: str) -> Tuple[str, List[str]]:
        emails = EMAIL_PATTERN.findall(message)
        return EMAIL_PATTERN.sub(EMAIL_PLACEHOLDER, message), emails

    def extract(self, message: str) -> Optional[QueryIntent]:
        if not message or not message.strip():
            return None
        text, emails = self.isolate_emails(message)

        intent: Optional[QueryIntent] = None
        for rule in self.rules:
            match = rule.pattern.search(text)
            if not match:
                continue
            intent = rule.build(match, emails)
            if intent is not None:
                self._log_debug("rule=%s intent=%s", rule.label, intent)
                break
            self._log_debug("rule=%s matched but produced no intent", rule.label)

        if intent is None:
            self._log_debug("no intent for message=%r", message[:80])
            return None
        if self.has_phone_reference(text):
            intent = dataclasses.replace(intent, phone_hint=True)
        return intent

    def has_phone_reference(self, message: str) -> bool:
        # TODO: the bare "phone"/"number" fallback also fires on e.g. "a number of houses"; require a
        # nearby person reference once product decides what counts as a phone question.
        return bool(PHONE_NAME_PATTERN.search(message) or PHONE_WORD_PATTERN.search(message))

    def looks_like_lookup(self, message: str) -> bool:
        """Broader "is this a CRM lookup" check used to pick the no-result guidance."""
        return bool(message and LOOKUP_PATTERN.search(message))

    def candidate_name(self, message: str) -> Optional[str]:
        """Best-effort name for personalising the not-found guidance."""
        if not message:
            return None
        text, _ = self.isolate_emails(message)
        for rule in (*NAME_RULES, PROPERTY_OWNER_RULE):
            match = rule.pattern.search(text)
            name = _clean_name(match.group("name")) if match else None
            if name:
                return name
        for pattern in (PHONE_NAME_PATTERN, WHO_IS_PATTERN):
            match = pattern.search(text)
            name = _clean_name(match.group("name")) if match else None
            if name:
                return name
        return None


@lru_cache
def get_crm_query_extractor() -> CrmQueryExtractor:
    return CrmQueryExtractor(debug=get_settings().crm_debug)
