"""Recruiter free-text search.

A query is turned into a ``CredentialSearchFilter`` by running it through a
list of independent rules. Each rule that fires contributes one term, and all
contributed terms must hold for an entry to match.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final, Literal, TypeAlias

from verichain.models import CredentialSearchFilter, RegistryEntry

SearchField: TypeAlias = Literal["university", "degree", "major"]

_LEADING_NUMBER: Final[re.Pattern[str]] = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+))")
_GPA_CLAUSE: Final[re.Pattern[str]] = re.compile(
    r"gpa\s*[><=]+\s*(\d+\.?\d*)", re.IGNORECASE
)


@dataclass(frozen=True, slots=True)
class KeywordRule:
    tag: str
    keywords: tuple[str, ...]
    field: SearchField
    term: str

    def matches(self, query: str) -> bool:
        return any(
            re.search(rf"\b{re.escape(keyword)}\b", query) is not None
            for keyword in self.keywords
        )


DEFAULT_RULES: Final[tuple[KeywordRule, ...]] = (
    KeywordRule(
        tag="major:computer_science",
        keywords=("cs", "computer science"),
        field="major",
        term="computer",
    ),
    KeywordRule(
        tag="university:stanford", keywords=("stanford",), field="university", term="stanford"
    ),
    KeywordRule(
        tag="university:berkeley", keywords=("berkeley",), field="university", term="berkeley"
    ),
    KeywordRule(tag="university:mit", keywords=("mit",), field="university", term="mit"),
    KeywordRule(tag="degree:bachelor", keywords=("bachelor",), field="degree", term="bachelor"),
    KeywordRule(tag="degree:master", keywords=("master",), field="degree", term="master"),
)


def parse_search_query(
    query: str,
    *,
    rules: tuple[KeywordRule, ...] = DEFAULT_RULES,
    include_revoked: bool = False,
) -> CredentialSearchFilter:
    normalized = query.strip().lower()
    if normalized == "":
        raise ValueError("Search query must not be empty.")

    terms: dict[SearchField, list[str]] = {"university": [], "degree": [], "major": []}
    for rule in rules:
        if rule.matches(normalized) and rule.term not in terms[rule.field]:
            terms[rule.field].append(rule.term)

    gpa_match = _GPA_CLAUSE.search(normalized)
    min_gpa = float(gpa_match.group(1)) if gpa_match is not None else None

    return CredentialSearchFilter(
        university_terms=tuple(terms["university"]),
        degree_terms=tuple(terms["degree"]),
        major_terms=tuple(terms["major"]),
        min_gpa=min_gpa,
        include_revoked=include_revoked,
    )


def parse_gpa(value: str) -> float | None:
    """Read the leading number of a free-text GPA ("3.9/4.0" -> 3.9)."""
    match = _LEADING_NUMBER.match(value)
    if match is None:
        return None
    return float(match.group(1))


def meets_gpa_threshold(entry: RegistryEntry, min_gpa: float | None) -> bool:
    if min_gpa is None:
        return True
    gpa = parse_gpa(entry.gpa)
    return gpa is not None and gpa >= min_gpa


def entry_matches(entry: RegistryEntry, search_filter: CredentialSearchFilter) -> bool:
    if entry.is_revoked and not search_filter.include_revoked:
        return False
    checks = (
        (entry.university_name, search_filter.university_terms),
        (entry.degree_type, search_filter.degree_terms),
        (entry.major, search_filter.major_terms),
    )
    for value, required_terms in checks:
        lowered = value.lower()
        if any(term.lower() not in lowered for term in required_terms):
            return False
    return meets_gpa_threshold(entry, search_filter.min_gpa)


__all__ = [
    "DEFAULT_RULES",
    "KeywordRule",
    "entry_matches",
    "meets_gpa_threshold",
    "parse_gpa",
    "parse_search_query",
]
