from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date

from leadtables.leads.constants import SOURCE_TYPE_VALUES, STAGE_VALUES
from leadtables.leads.csv_parse import CsvRow
from leadtables.leads.urls import extract_domain, normalize_website_url

_FOLLOWUP_DATE_RE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_TRUTHY_FLAGS = {"1", "true", "yes", "y"}

IMPORT_FIELDS = (
    "business_name",
    "stage",
    "contact",
    "website_url",
    "notes",
    "source_type",
    "source_detail",
    "owner_id",
    "next_followup_at",
    "do_not_contact",
    "dnc_reason",
    "lost_reason",
)

_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "business_name": ("business name", "company_name", "company", "name"),
    "website_url": ("website", "url", "site", "web", "domain"),
    "stage": ("status", "lead_stage"),
    "source_type": ("source", "lead_source"),
    "do_not_contact": ("dnc", "do not contact"),
    "next_followup_at": (
        "next_follow_up_at",
        "next followup",
        "next follow-up",
        "followup_date",
        "follow_up_date",
    ),
    "contact": (
        "email",
        "email_address",
        "work_email",
        "work_email_address",
        "phone",
        "phone_number",
        "phone_no",
        "phone_num",
        "mobile",
        "mobile_number",
        "whatsapp",
        "instagram",
        "ig",
        "contact_info",
        "contact_details",
    ),
    "notes": ("note", "description"),
    "source_detail": ("source detail",),
    "owner_id": ("owner", "owner id", "assignee"),
    "dnc_reason": ("dnc reason",),
    "lost_reason": ("loss_reason", "lost reason"),
}


@dataclass(frozen=True)
class ImportDefaults:
    default_stage: str
    default_source_type: str
    default_source_detail: str | None = None


@dataclass(frozen=True)
class CandidateLead:
    business_name: str
    stage: str
    contact: str | None
    website_url: str | None
    domain: str | None
    notes: str | None
    source_type: str
    source_detail: str | None
    owner_id: str | None
    next_followup_at: str | None
    do_not_contact: bool
    dnc_reason: str | None
    lost_reason: str | None


def is_contacted_incomplete(stage: str, contact: object, next_followup_at: object) -> bool:
    """A Contacted lead needs both a contact and a follow-up date."""
    return stage == "Contacted" and (not contact or not next_followup_at)


def canonicalize_header(value: str) -> str:
    lowered = value.removeprefix("\ufeff").strip().lower()
    return _NON_ALNUM_RE.sub("_", lowered).strip("_")


def _followup_date(value: str | None) -> str | None:
    if not value or not _FOLLOWUP_DATE_RE.fullmatch(value):
        return None
    try:
        date.fromisoformat(value)
    except ValueError:
        return None
    return value


def _to_nullable(value: str | None) -> str | None:
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or None


def _is_affix_match(candidate: str, expected: str) -> bool:
    return (
        candidate == expected
        or candidate.startswith(f"{expected}_")
        or candidate.endswith(f"_{expected}")
        or f"_{expected}_" in candidate
    )


def _find_row_value(row: CsvRow, key: str | None) -> str | None:
    if not key:
        return None
    if key in row:
        return row[key]

    expected = canonicalize_header(key)
    entries = [(canonicalize_header(header), value) for header, value in row.items()]

    for canonical, value in entries:
        if canonical == expected:
            return value
    for canonical, value in entries:
        if _is_affix_match(canonical, expected):
            return value
    if len(expected) >= 5:
        for canonical, value in entries:
            if expected in canonical:
                return value
        for canonical, value in entries:
            if canonical and canonical in expected:
                return value
    return None


def _pick(row: CsvRow, mapping: Mapping[str, str | None], field: str) -> str | None:
    for key in (mapping.get(field), field, *_FIELD_ALIASES.get(field, ())):
        value = _find_row_value(row, key)
        if value is not None:
            return _to_nullable(value)
    return None


def normalize_import_row(
    row: CsvRow,
    mapping: Mapping[str, str | None],
    defaults: ImportDefaults,
) -> CandidateLead | None:
    """Turn one CSV row into a candidate lead; rows without a business name yield ``None``."""
    business_name = _pick(row, mapping, "business_name")
    if business_name is None:
        return None

    website_url = normalize_website_url(_pick(row, mapping, "website_url"))

    stage_raw = _pick(row, mapping, "stage")
    source_type_raw = _pick(row, mapping, "source_type")
    do_not_contact_raw = _pick(row, mapping, "do_not_contact")
    followup_raw = _pick(row, mapping, "next_followup_at")

    return CandidateLead(
        business_name=business_name,
        stage=stage_raw if stage_raw in STAGE_VALUES else defaults.default_stage,
        contact=_pick(row, mapping, "contact"),
        website_url=website_url,
        domain=extract_domain(website_url),
        notes=_pick(row, mapping, "notes"),
        source_type=source_type_raw if source_type_raw in SOURCE_TYPE_VALUES else defaults.default_source_type,
        source_detail=_pick(row, mapping, "source_detail") or defaults.default_source_detail or None,
        owner_id=_pick(row, mapping, "owner_id"),
        next_followup_at=_followup_date(followup_raw),
        do_not_contact=do_not_contact_raw is not None and do_not_contact_raw.lower() in _TRUTHY_FLAGS,
        dnc_reason=_pick(row, mapping, "dnc_reason"),
        lost_reason=_pick(row, mapping, "lost_reason"),
    )
