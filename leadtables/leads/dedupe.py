from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from leadtables.leads.normalize import CandidateLead


@dataclass(frozen=True)
class ExistingLeadIndex:
    """Keys already present on a table's leads, looked up once per import."""

    domains: frozenset[str] = field(default_factory=frozenset)
    contacts: frozenset[str] = field(default_factory=frozenset)
    website_urls: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class DuplicateCandidate:
    row_index: int
    business_name: str
    reasons: tuple[str, ...]


@dataclass(frozen=True)
class LookupKeys:
    domains: list[str]
    contacts: list[str]
    website_urls: list[str]


def _distinct(values: Iterable[str | None]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        if value:
            seen.setdefault(value, None)
    return list(seen)


def collect_lookup_keys(candidates: Sequence[CandidateLead]) -> LookupKeys:
    return LookupKeys(
        domains=_distinct(candidate.domain for candidate in candidates),
        contacts=_distinct(candidate.contact for candidate in candidates),
        website_urls=_distinct(candidate.website_url for candidate in candidates),
    )


def detect_duplicates(
    candidates: Sequence[CandidateLead],
    index: ExistingLeadIndex,
    row_numbers: Sequence[int] | None = None,
) -> list[DuplicateCandidate]:
    """Flag candidates whose domain, contact or website is already on the table.

    ``row_numbers`` gives the 1-based CSV body row of each candidate; without it the position in
    ``candidates`` is used. Flagged rows are reported only; callers still insert them.
    """
    if row_numbers is None:
        row_numbers = range(1, len(candidates) + 1)

    duplicates: list[DuplicateCandidate] = []
    for position, candidate in zip(row_numbers, candidates):
        reasons: list[str] = []
        if candidate.domain and candidate.domain in index.domains:
            reasons.append("domain")
        if candidate.contact and candidate.contact in index.contacts:
            reasons.append("contact")
        if candidate.website_url and candidate.website_url in index.website_urls:
            reasons.append("website_url")
        if reasons:
            duplicates.append(
                DuplicateCandidate(
                    row_index=position,
                    business_name=candidate.business_name,
                    reasons=tuple(reasons),
                )
            )
    return duplicates
