from __future__ import annotations

import dataclasses
import uuid
from collections.abc import Mapping, Sequence
from datetime import date, datetime, timezone
from typing import Any

import pytest

from leadtables.leads.normalize import CandidateLead
from leadtables.leads.repositories import (
    AuditEntry,
    ImportBatchRecord,
    LeadRecord,
    StorageError,
    TableRecord,
)


class InMemoryLeadStore:
    """``LeadStore`` kept in dicts; ``fail(method)`` makes the next calls to ``method`` raise."""

    def __init__(self) -> None:
        self.tables: dict[uuid.UUID, TableRecord] = {}
        self.access: dict[tuple[uuid.UUID, str], str] = {}
        self.leads: dict[uuid.UUID, LeadRecord] = {}
        self.services: dict[uuid.UUID, tuple[uuid.UUID, str]] = {}
        self.links: set[tuple[uuid.UUID, uuid.UUID]] = set()
        self.batches: list[ImportBatchRecord] = []
        self.audit_events: list[dict[str, Any]] = []
        self.lookups: list[tuple[str, list[str]]] = []
        self.failures: dict[str, StorageError] = {}

    def fail(self, method: str, code: str = "OperationalError", message: str = "database unavailable") -> None:
        self.failures[method] = StorageError(code=code, message=message)

    def _check(self, method: str) -> None:
        if method in self.failures:
            raise self.failures[method]

    def add_table(self, org_id: str = "org-1", **overrides: Any) -> TableRecord:
        values: dict[str, Any] = {
            "id": uuid.uuid4(),
            "org_id": org_id,
            "name": "Prospects",
            "default_stage": "New",
            "default_source_type": None,
            "default_source_detail": None,
            "is_archived": False,
        }
        values.update(overrides)
        table = TableRecord(**values)
        self.tables[table.id] = table
        return table

    def add_service(self, table_id: uuid.UUID, name: str) -> uuid.UUID:
        service_id = uuid.uuid4()
        self.services[service_id] = (table_id, name)
        return service_id

    def add_lead(self, table_id: uuid.UUID, **overrides: Any) -> LeadRecord:
        now = datetime.now(timezone.utc)
        values: dict[str, Any] = {
            "id": uuid.uuid4(),
            "org_id": self.tables[table_id].org_id if table_id in self.tables else "org-1",
            "table_id": table_id,
            "business_name": "Existing Co",
            "stage": "New",
            "owner_id": None,
            "next_followup_at": None,
            "followup_window": "Anytime",
            "contact": None,
            "website_url": None,
            "domain": None,
            "notes": None,
            "source_type": "Unknown",
            "source_detail": None,
            "do_not_contact": False,
            "dnc_reason": None,
            "lost_reason": None,
            "is_archived": False,
            "last_touched_at": None,
            "created_by": "seed",
            "updated_by": "seed",
            "created_at": now,
            "updated_at": now,
        }
        values.update(overrides)
        lead = LeadRecord(**values)
        self.leads[lead.id] = lead
        return lead

    def get_table(self, table_id: uuid.UUID) -> TableRecord | None:
        self._check("get_table")
        return self.tables.get(table_id)

    def get_access_level(self, table_id: uuid.UUID, user_id: str) -> str | None:
        self._check("get_access_level")
        return self.access.get((table_id, user_id))

    def existing_values(self, table_id: uuid.UUID, column: str, values: Sequence[str]) -> set[str]:
        self._check("existing_values")
        self.lookups.append((column, list(values)))
        wanted = set(values)
        return {
            getattr(lead, column)
            for lead in self.leads.values()
            if lead.table_id == table_id and getattr(lead, column) in wanted
        }

    def create_import_batch(self, **fields: Any) -> ImportBatchRecord:
        self._check("create_import_batch")
        batch = ImportBatchRecord(id=uuid.uuid4(), **fields)
        self.batches.append(batch)
        return batch

    def insert_leads(
        self,
        *,
        org_id: str,
        table_id: uuid.UUID,
        actor_user_id: str,
        candidates: Sequence[CandidateLead],
    ) -> list[uuid.UUID]:
        self._check("insert_leads")
        inserted: list[uuid.UUID] = []
        for candidate in candidates:
            values = dataclasses.asdict(candidate)
            followup = values.pop("next_followup_at")
            lead = self.add_lead(
                table_id,
                org_id=org_id,
                next_followup_at=date.fromisoformat(followup) if followup else None,
                created_by=actor_user_id,
                updated_by=actor_user_id,
                **values,
            )
            inserted.append(lead.id)
        return inserted

    def insert_audit_events(
        self,
        *,
        org_id: str,
        table_id: uuid.UUID,
        actor_user_id: str,
        entries: Sequence[AuditEntry],
    ) -> None:
        self._check("insert_audit_events")
        for entry in entries:
            self.audit_events.append(
                {
                    "org_id": org_id,
                    "table_id": table_id,
                    "actor_user_id": actor_user_id,
                    "lead_id": entry.lead_id,
                    "event_type": entry.event_type,
                    "meta": entry.meta,
                }
            )

    def missing_lead_ids(self, table_id: uuid.UUID, lead_ids: Sequence[uuid.UUID]) -> list[uuid.UUID]:
        self._check("missing_lead_ids")
        return [
            lead_id
            for lead_id in lead_ids
            if lead_id not in self.leads or self.leads[lead_id].table_id != table_id
        ]

    def missing_service_ids(self, table_id: uuid.UUID, service_ids: Sequence[uuid.UUID]) -> list[uuid.UUID]:
        self._check("missing_service_ids")
        return [
            service_id
            for service_id in service_ids
            if service_id not in self.services or self.services[service_id][0] != table_id
        ]

    def update_leads(
        self,
        table_id: uuid.UUID,
        lead_ids: Sequence[uuid.UUID],
        values: Mapping[str, Any],
        *,
        actor_user_id: str,
    ) -> None:
        self._check("update_leads")
        for lead_id in lead_ids:
            lead = self.leads[lead_id]
            if lead.table_id == table_id:
                self.leads[lead_id] = dataclasses.replace(lead, **values, updated_by=actor_user_id)

    def add_service_links(self, lead_ids: Sequence[uuid.UUID], service_ids: Sequence[uuid.UUID]) -> None:
        self._check("add_service_links")
        self.links.update((lead_id, service_id) for lead_id in lead_ids for service_id in service_ids)

    def remove_service_links(self, lead_ids: Sequence[uuid.UUID], service_ids: Sequence[uuid.UUID]) -> None:
        self._check("remove_service_links")
        self.links.difference_update((lead_id, service_id) for lead_id in lead_ids for service_id in service_ids)

    def replace_service_links(self, lead_id: uuid.UUID, service_ids: Sequence[uuid.UUID]) -> None:
        self._check("replace_service_links")
        self.links = {link for link in self.links if link[0] != lead_id}
        self.links.update((lead_id, service_id) for service_id in service_ids)

    def list_leads(self, table_id: uuid.UUID, *, include_archived: bool, include_dnc: bool) -> list[LeadRecord]:
        self._check("list_leads")
        leads = [
            lead
            for lead in self.leads.values()
            if lead.table_id == table_id
            and (include_archived or not lead.is_archived)
            and (include_dnc or not lead.do_not_contact)
        ]
        return sorted(leads, key=lambda lead: lead.created_at, reverse=True)

    def service_names_by_lead(self, lead_ids: Sequence[uuid.UUID]) -> dict[uuid.UUID, list[str]]:
        self._check("service_names_by_lead")
        names: dict[uuid.UUID, list[str]] = {}
        for lead_id, service_id in self.links:
            if lead_id in lead_ids:
                names.setdefault(lead_id, []).append(self.services[service_id][1])
        return {lead_id: sorted(values) for lead_id, values in names.items()}

    def get_lead(self, lead_id: uuid.UUID) -> LeadRecord | None:
        self._check("get_lead")
        return self.leads.get(lead_id)

    def create_lead(
        self,
        *,
        org_id: str,
        table_id: uuid.UUID,
        actor_user_id: str,
        values: Mapping[str, Any],
    ) -> LeadRecord:
        self._check("create_lead")
        return self.add_lead(table_id, org_id=org_id, created_by=actor_user_id, updated_by=actor_user_id, **values)

    def update_lead(self, lead_id: uuid.UUID, values: Mapping[str, Any], *, actor_user_id: str) -> LeadRecord:
        self._check("update_lead")
        lead = dataclasses.replace(self.leads[lead_id], **values, updated_by=actor_user_id)
        self.leads[lead_id] = lead
        return lead


@pytest.fixture()
def store() -> InMemoryLeadStore:
    return InMemoryLeadStore()
