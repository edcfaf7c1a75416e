from __future__ import annotations

from leadtables.leads.dedupe import ExistingLeadIndex, collect_lookup_keys, detect_duplicates
from leadtables.leads.normalize import CandidateLead


def _candidate(
    business_name: str,
    *,
    contact: str | None = None,
    website_url: str | None = None,
    domain: str | None = None,
) -> CandidateLead:
    return CandidateLead(
        business_name=business_name,
        stage="New",
        contact=contact,
        website_url=website_url,
        domain=domain,
        notes=None,
        source_type="Unknown",
        source_detail=None,
        owner_id=None,
        next_followup_at=None,
        do_not_contact=False,
        dnc_reason=None,
        lost_reason=None,
    )


def test_reasons_follow_fixed_order() -> None:
    candidates = [
        _candidate("Acme", contact="a@acme.com", website_url="https://acme.com", domain="acme.com"),
        _candidate("Globex", contact="g@globex.com", domain="globex.com"),
        _candidate("Initech", website_url="https://initech.com/contact", domain="initech.com"),
    ]
    index = ExistingLeadIndex(
        domains=frozenset({"acme.com", "initech.com"}),
        contacts=frozenset({"a@acme.com"}),
        website_urls=frozenset({"https://acme.com", "https://initech.com/contact"}),
    )

    duplicates = detect_duplicates(candidates, index)

    assert [(item.row_index, item.business_name, item.reasons) for item in duplicates] == [
        (1, "Acme", ("domain", "contact", "website_url")),
        (3, "Initech", ("domain", "website_url")),
    ]


def test_row_numbers_are_reported() -> None:
    candidates = [_candidate("Acme", contact="a@acme.com"), _candidate("Globex", contact="g@globex.com")]
    index = ExistingLeadIndex(contacts=frozenset({"g@globex.com"}))

    duplicates = detect_duplicates(candidates, index, row_numbers=[2, 5])

    assert len(duplicates) == 1
    assert duplicates[0].row_index == 5
    assert duplicates[0].reasons == ("contact",)


def test_missing_values_never_match() -> None:
    index = ExistingLeadIndex(domains=frozenset({""}), contacts=frozenset({""}))

    assert detect_duplicates([_candidate("Acme", contact="", domain=None)], index) == []


def test_lookup_keys_are_distinct_and_ordered() -> None:
    candidates = [
        _candidate("A", contact="x@a.com", domain="a.com", website_url="https://a.com"),
        _candidate("B", contact=None, domain="b.com"),
        _candidate("C", contact="x@a.com", domain="a.com"),
    ]

    keys = collect_lookup_keys(candidates)

    assert keys.domains == ["a.com", "b.com"]
    assert keys.contacts == ["x@a.com"]
    assert keys.website_urls == ["https://a.com"]
