from __future__ import annotations

import pytest

from app.duplicates.normalization import (
    calculate_string_similarity,
    extract_domain_from_email,
    levenshtein_distance,
    normalize_company_name,
    normalize_email,
    normalize_linkedin_url,
    normalize_person_name,
    normalize_phone,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Acme Corp", "acme"),
        ("Acme Corporation", "acme"),
        ("  ACME  Ltd. ", "acme"),
        ("The Widget Company", "widget company"),
        ("Smith & Sons GmbH", "smith sons"),
        ("Data-Driven Inc", "data-driven"),
        ("", ""),
        (None, ""),
    ],
)
def test_normalize_company_name(raw: str | None, expected: str) -> None:
    assert normalize_company_name(raw) == expected


def test_company_suffix_only_stripped_at_the_end() -> None:
    assert normalize_company_name("Inc Solutions") == "inc solutions"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Dr. Jane Doe", "jane doe"),
        ("Mr John  O'Neil Jr.", "john oneil"),
        ("  MARY-ANN Smith ", "maryann smith"),
        (None, ""),
    ],
)
def test_normalize_person_name(raw: str | None, expected: str) -> None:
    assert normalize_person_name(raw) == expected


def test_normalize_email_and_domain() -> None:
    assert normalize_email("  John.Smith@Example.COM ") == "john.smith@example.com"
    assert extract_domain_from_email("someone@Example.Com") == "example.com"
    assert extract_domain_from_email("not-an-email") == ""
    assert extract_domain_from_email(None) == ""


def test_normalize_phone_keeps_digits_only() -> None:
    assert normalize_phone("+1 (555) 123-4567") == "15551234567"
    assert normalize_phone("ext.") == ""
    assert normalize_phone(None) == ""


@pytest.mark.parametrize(
    "raw",
    [
        "https://www.linkedin.com/in/janedoe/",
        "http://linkedin.com/in/JaneDoe",
        "janedoe",
    ],
)
def test_normalize_linkedin_url(raw: str) -> None:
    assert normalize_linkedin_url(raw) == "janedoe"


@pytest.mark.parametrize(
    ("left", "right", "expected"),
    [
        ("kitten", "sitting", 3),
        ("flaw", "lawn", 2),
        ("", "abc", 3),
        ("abc", "", 3),
        ("same", "same", 0),
    ],
)
def test_levenshtein_distance(left: str, right: str, expected: int) -> None:
    assert levenshtein_distance(left, right) == expected
    assert levenshtein_distance(right, left) == expected


def test_similarity_bounds_and_symmetry() -> None:
    assert calculate_string_similarity("acme", "acme") == 1.0
    assert calculate_string_similarity("abcdefghij", "abcdefghxy") == pytest.approx(0.8)
    assert calculate_string_similarity("abcdefghxy", "abcdefghij") == pytest.approx(0.8)
    assert 0.0 <= calculate_string_similarity("acme", "zenith") < 0.5


def test_similarity_of_empty_values_is_zero() -> None:
    assert calculate_string_similarity("", "acme") == 0.0
    assert calculate_string_similarity("acme", None) == 0.0
    assert calculate_string_similarity("", "") == 0.0
