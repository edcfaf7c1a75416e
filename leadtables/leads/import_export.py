from __future__ import annotations

import csv
import io
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from leadtables.leads.constants import IMPORTED_EVENT_TYPE
from leadtables.leads.csv_parse import parse_csv
from leadtables.leads.dedupe import DuplicateCandidate, ExistingLeadIndex, collect_lookup_keys, detect_duplicates
from leadtables.leads.normalize import CandidateLead, ImportDefaults, is_contacted_incomplete, normalize_import_row
from leadtables.leads.repositories import AuditEntry, LeadRecord, LeadStore, StorageError
from leadtables.leads.results import Err, Ok, Result

EXPORT_TEMPLATES: dict[str, tuple[str, ...]] = {
    "full": (
        "id",
        "business_name",
        "stage",
        "owner_id",
        "contact",
        "website_url",
        "domain",
        "next_followup_at",
        "followup_window",
        "source_type",
        "source_detail",
        "do_not_contact",
        "dnc_reason",
        "lost_reason",
        "services",
        "notes",
        "last_touched_at",
        "is_archived",
        "created_at",
        "updated_at",
    ),
    "calling": (
        "business_name",
        "contact",
        "stage",
        "next_followup_at",
        "followup_window",
        "owner_id",
        "notes",
        "services",
    ),
    "source_report": (
        "business_name",
        "source_type",
        "source_detail",
        "stage",
        "owner_id",
        "services",
        "created_at",
    ),
    "services_report": (
        "business_name",
        "services",
        "stage",
        "owner_id",
        "source_type",
        "created_at",
        "updated_at",
    ),
}


@dataclass(frozen=True)
class ImportSummary:
    imported_count: int = 0
    duplicate_candidates: list[DuplicateCandidate] = field(default_factory=list)
    batch_id: uuid.UUID | None = None
    invalid_rows: int = 0


def _storage_err(code: str, message: str, exc: StorageError, **extra: Any) -> Err:
    return Err(code=code, message=message, details={**exc.as_details(), **extra}, status_code=500)


def _lookup_index(store: LeadStore, table_id: uuid.UUID, candidates: list[CandidateLead]) -> ExistingLeadIndex:
    keys = collect_lookup_keys(candidates)
    return ExistingLeadIndex(
        domains=frozenset(store.existing_values(table_id, "domain", keys.domains) if keys.domains else ()),
        contacts=frozenset(store.existing_values(table_id, "contact", keys.contacts) if keys.contacts else ()),
        website_urls=frozenset(
            store.existing_values(table_id, "website_url", keys.website_urls) if keys.website_urls else ()
        ),
    )


def import_leads(
    store: LeadStore,
    *,
    org_id: str,
    table_id: uuid.UUID,
    actor_user_id: str,
    csv_text: str,
    filename: str,
    mapping: Mapping[str, str | None],
    defaults: ImportDefaults,
) -> Result[ImportSummary]:
    """Parse, normalize, check and store one CSV upload.

    Each storage stage commits independently. A failure reported by a later stage leaves the
    earlier stages' writes in place; in particular an ``IMPORT_AUDIT_FAILED`` result means the
    leads were inserted.
    """
    rows = parse_csv(csv_text)
    if not rows:
        return Ok(ImportSummary())

    row_numbers: list[int] = []
    candidates: list[CandidateLead] = []
    for row_number, row in enumerate(rows, start=1):
        candidate = normalize_import_row(row, mapping, defaults)
        if candidate is None:
            continue
        row_numbers.append(row_number)
        candidates.append(candidate)

    if not candidates:
        return Ok(ImportSummary(invalid_rows=len(rows)))

    try:
        index = _lookup_index(store, table_id, candidates)
    except StorageError as exc:
        return _storage_err("IMPORT_DEDUPE_CHECK_FAILED", "Failed to run duplicate checks", exc)

    duplicates = detect_duplicates(candidates, index, row_numbers)
    insertable = [
        candidate
        for candidate in candidates
        if not is_contacted_incomplete(candidate.stage, candidate.contact, candidate.next_followup_at)
    ]
    invalid_rows = len(candidates) - len(insertable)

    try:
        batch = store.create_import_batch(
            org_id=org_id,
            table_id=table_id,
            created_by=actor_user_id,
            filename=filename,
            source_default_type=defaults.default_source_type,
            source_default_detail=defaults.default_source_detail,
            row_count=len(rows),
        )
    except StorageError as exc:
        return _storage_err("IMPORT_BATCH_CREATE_FAILED", "Failed to create import batch", exc)

    if not insertable:
        return Ok(ImportSummary(duplicate_candidates=duplicates, batch_id=batch.id, invalid_rows=invalid_rows))

    try:
        lead_ids = store.insert_leads(
            org_id=org_id,
            table_id=table_id,
            actor_user_id=actor_user_id,
            candidates=insertable,
        )
    except StorageError as exc:
        return _storage_err("IMPORT_INSERT_FAILED", "Failed to import leads", exc, batch_id=str(batch.id))

    if lead_ids:
        try:
            store.insert_audit_events(
                org_id=org_id,
                table_id=table_id,
                actor_user_id=actor_user_id,
                entries=[
                    AuditEntry(lead_id=lead_id, event_type=IMPORTED_EVENT_TYPE, meta={"batch_id": str(batch.id)})
                    for lead_id in lead_ids
                ],
            )
        except StorageError as exc:
            return _storage_err(
                "IMPORT_AUDIT_FAILED",
                "Import succeeded but audit failed",
                exc,
                batch_id=str(batch.id),
                imported_count=len(lead_ids),
            )

    return Ok(
        ImportSummary(
            imported_count=len(lead_ids),
            duplicate_candidates=duplicates,
            batch_id=batch.id,
            invalid_rows=invalid_rows,
        )
    )


def _export_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def _export_row(lead: LeadRecord, services: list[str], columns: tuple[str, ...]) -> dict[str, str]:
    row: dict[str, str] = {}
    for column in columns:
        value = ", ".join(services) if column == "services" else getattr(lead, column)
        row[column] = _export_cell(value)
    return row


def export_leads_csv(
    store: LeadStore,
    *,
    table_id: uuid.UUID,
    template: str = "full",
    include_archived: bool = False,
    include_dnc: bool = False,
) -> Result[str]:
    columns = EXPORT_TEMPLATES.get(template)
    if columns is None:
        return Err.bad_request(f"Unknown export template: {template}")

    try:
        leads = store.list_leads(table_id, include_archived=include_archived, include_dnc=include_dnc)
    except StorageError as exc:
        return _storage_err("EXPORT_LEAD_FETCH_FAILED", "Failed to fetch leads for export", exc)

    try:
        services = store.service_names_by_lead([lead.id for lead in leads])
    except StorageError as exc:
        return _storage_err("EXPORT_SERVICES_FETCH_FAILED", "Failed to fetch lead services for export", exc)

    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=list(columns), lineterminator="\n")
    writer.writeheader()
    for lead in leads:
        writer.writerow(_export_row(lead, services.get(lead.id, []), columns))
    return Ok(output.getvalue())
