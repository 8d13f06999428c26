"""Canonical forms and edit-distance similarity for duplicate matching."""

from __future__ import annotations

import re

_COMPANY_SUFFIX_RE = re.compile(
    r"\s+(ltd|limited|inc|incorporated|corp|corporation|llc|plc|gmbh|sa|sas|bv|ab|oy|as)\.?$"
)
_LEADING_THE_RE = re.compile(r"^(the\s+)")
_COMPANY_STRIP_RE = re.compile(r"[^\w\s-]")
_HONORIFIC_RE = re.compile(r"\b(mr|mrs|ms|dr|prof|sir|dame|jr|sr|ii|iii|iv|v)\b\.?")
_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")
_NON_DIGIT_RE = re.compile(r"\D")
_LINKEDIN_PREFIX_RE = re.compile(r"^https?://(www\.)?linkedin\.com/in/")


def normalize_company_name(value: str | None) -> str:
    if not value:
        return ""
    text = value.lower().strip()
    text = _COMPANY_SUFFIX_RE.sub("", text)
    text = _LEADING_THE_RE.sub("", text)
    text = _COMPANY_STRIP_RE.sub("", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_person_name(value: str | None) -> str:
    if not value:
        return ""
    text = value.lower().strip()
    text = _HONORIFIC_RE.sub("", text)
    text = _PUNCTUATION_RE.sub("", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_email(value: str | None) -> str:
    if not value:
        return ""
    return value.lower().strip()


def normalize_phone(value: str | None) -> str:
    if not value:
        return ""
    return _NON_DIGIT_RE.sub("", value)


def extract_domain_from_email(value: str | None) -> str:
    if not value or "@" not in value:
        return ""
    return value.split("@", 1)[1].lower()


def normalize_linkedin_url(value: str | None) -> str:
    if not value:
        return ""
    text = _LINKEDIN_PREFIX_RE.sub("", value.lower().strip())
    return text.rstrip("/")


def levenshtein_distance(left: str, right: str) -> int:
    """Unit-cost edit distance, keeping only one row of the DP table."""

    if len(left) < len(right):
        left, right = right, left
    if not right:
        return len(left)

    previous = list(range(len(right) + 1))
    for i, left_char in enumerate(left, start=1):
        current = [i]
        for j, right_char in enumerate(right, start=1):
            substitution = previous[j - 1] + (0 if left_char == right_char else 1)
            current.append(min(previous[j] + 1, current[j - 1] + 1, substitution))
        previous = current
    return previous[-1]


def calculate_string_similarity(left: str | None, right: str | None) -> float:
    # Empty on either side scores 0.0, empty-vs-empty included.
    if not left or not right:
        return 0.0
    if left == right:
        return 1.0
    longest = max(len(left), len(right))
    return (longest - levenshtein_distance(left, right)) / longest
