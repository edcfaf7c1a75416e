"""Storage boundary for lead tables.

The import and bulk pipelines only talk to a ``LeadStore``; rows never leave this module as ORM
objects. ``SqlLeadStore`` commits every write on its own, so a failure in a later stage never
rolls back what an earlier stage already stored.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from leadtables.leads.constants import DEFAULT_FOLLOWUP_WINDOW
from leadtables.leads.models import (
    AuditEvent,
    ImportBatch,
    Lead,
    LeadServiceLink,
    LeadTable,
    TableAccess,
    TableService,
    utcnow,
)
from leadtables.leads.normalize import CandidateLead

LOOKUP_COLUMNS = ("domain", "contact", "website_url")

_CONFLICT_TOLERANT_INSERTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


class StorageError(Exception):
    def __init__(self, code: str, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details

    @classmethod
    def from_sqlalchemy(cls, exc: SQLAlchemyError) -> StorageError:
        original = getattr(exc, "orig", None)
        return cls(code=type(exc).__name__, message=str(original or exc)[:500])

    def as_details(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


@dataclass(frozen=True)
class TableRecord:
    id: uuid.UUID
    org_id: str
    name: str
    default_stage: str
    default_source_type: str | None
    default_source_detail: str | None
    is_archived: bool


@dataclass(frozen=True)
class LeadRecord:
    id: uuid.UUID
    org_id: str
    table_id: uuid.UUID
    business_name: str
    stage: str
    owner_id: str | None
    next_followup_at: date | None
    followup_window: str
    contact: str | None
    website_url: str | None
    domain: str | None
    notes: str | None
    source_type: str
    source_detail: str | None
    do_not_contact: bool
    dnc_reason: str | None
    lost_reason: str | None
    is_archived: bool
    last_touched_at: datetime | None
    created_by: str | None
    updated_by: str | None
    created_at: datetime
    updated_at: datetime
    service_ids: tuple[uuid.UUID, ...] = ()


@dataclass(frozen=True)
class ImportBatchRecord:
    id: uuid.UUID
    org_id: str
    table_id: uuid.UUID
    created_by: str
    filename: str
    source_default_type: str
    source_default_detail: str | None
    row_count: int


@dataclass(frozen=True)
class AuditEntry:
    lead_id: uuid.UUID
    event_type: str
    meta: dict[str, Any] = field(default_factory=dict)


class LeadStore(Protocol):
    def get_table(self, table_id: uuid.UUID) -> TableRecord | None: ...

    def get_access_level(self, table_id: uuid.UUID, user_id: str) -> str | None: ...

    def existing_values(self, table_id: uuid.UUID, column: str, values: Sequence[str]) -> set[str]: ...

    def create_import_batch(
        self,
        *,
        org_id: str,
        table_id: uuid.UUID,
        created_by: str,
        filename: str,
        source_default_type: str,
        source_default_detail: str | None,
        row_count: int,
    ) -> ImportBatchRecord: ...

    def insert_leads(
        self,
        *,
        org_id: str,
        table_id: uuid.UUID,
        actor_user_id: str,
        candidates: Sequence[CandidateLead],
    ) -> list[uuid.UUID]: ...

    def insert_audit_events(
        self,
        *,
        org_id: str,
        table_id: uuid.UUID,
        actor_user_id: str,
        entries: Sequence[AuditEntry],
    ) -> None: ...

    def missing_lead_ids(self, table_id: uuid.UUID, lead_ids: Sequence[uuid.UUID]) -> list[uuid.UUID]: ...

    def missing_service_ids(self, table_id: uuid.UUID, service_ids: Sequence[uuid.UUID]) -> list[uuid.UUID]: ...

    def update_leads(
        self,
        table_id: uuid.UUID,
        lead_ids: Sequence[uuid.UUID],
        values: Mapping[str, Any],
        *,
        actor_user_id: str,
    ) -> None: ...

    def add_service_links(self, lead_ids: Sequence[uuid.UUID], service_ids: Sequence[uuid.UUID]) -> None: ...

    def remove_service_links(self, lead_ids: Sequence[uuid.UUID], service_ids: Sequence[uuid.UUID]) -> None: ...

    def replace_service_links(self, lead_id: uuid.UUID, service_ids: Sequence[uuid.UUID]) -> None: ...

    def list_leads(
        self,
        table_id: uuid.UUID,
        *,
        include_archived: bool,
        include_dnc: bool,
    ) -> list[LeadRecord]: ...

    def service_names_by_lead(self, lead_ids: Sequence[uuid.UUID]) -> dict[uuid.UUID, list[str]]: ...

    def get_lead(self, lead_id: uuid.UUID) -> LeadRecord | None: ...

    def create_lead(
        self,
        *,
        org_id: str,
        table_id: uuid.UUID,
        actor_user_id: str,
        values: Mapping[str, Any],
    ) -> LeadRecord: ...

    def update_lead(self, lead_id: uuid.UUID, values: Mapping[str, Any], *, actor_user_id: str) -> LeadRecord: ...


def _parse_date(value: str | date | None) -> date | None:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise StorageError(code="INVALID_DATE", message=f"invalid date value: {value}") from exc


def _table_record(row: LeadTable) -> TableRecord:
    return TableRecord(
        id=row.id,
        org_id=row.org_id,
        name=row.name,
        default_stage=row.default_stage,
        default_source_type=row.default_source_type,
        default_source_detail=row.default_source_detail,
        is_archived=row.is_archived,
    )


def _lead_record(row: Lead, service_ids: Sequence[uuid.UUID] = ()) -> LeadRecord:
    return LeadRecord(
        id=row.id,
        org_id=row.org_id,
        table_id=row.table_id,
        business_name=row.business_name,
        stage=row.stage,
        owner_id=row.owner_id,
        next_followup_at=row.next_followup_at,
        followup_window=row.followup_window,
        contact=row.contact,
        website_url=row.website_url,
        domain=row.domain,
        notes=row.notes,
        source_type=row.source_type,
        source_detail=row.source_detail,
        do_not_contact=row.do_not_contact,
        dnc_reason=row.dnc_reason,
        lost_reason=row.lost_reason,
        is_archived=row.is_archived,
        last_touched_at=row.last_touched_at,
        created_by=row.created_by,
        updated_by=row.updated_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
        service_ids=tuple(service_ids),
    )


def _batch_record(row: ImportBatch) -> ImportBatchRecord:
    return ImportBatchRecord(
        id=row.id,
        org_id=row.org_id,
        table_id=row.table_id,
        created_by=row.created_by,
        filename=row.filename,
        source_default_type=row.source_default_type,
        source_default_detail=row.source_default_detail,
        row_count=row.row_count,
    )


class SqlLeadStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    @contextmanager
    def _reading(self) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageError.from_sqlalchemy(exc) from exc

    @contextmanager
    def _writing(self) -> Iterator[None]:
        try:
            yield
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageError.from_sqlalchemy(exc) from exc
        except StorageError:
            self.session.rollback()
            raise

    def _service_ids_for(self, lead_id: uuid.UUID) -> list[uuid.UUID]:
        return list(
            self.session.scalars(
                select(LeadServiceLink.service_id)
                .where(LeadServiceLink.lead_id == lead_id)
                .order_by(LeadServiceLink.service_id)
            ).all()
        )

    def _insert_links(self, pairs: Sequence[tuple[uuid.UUID, uuid.UUID]]) -> None:
        """Insert lead/service pairs; pairs that already exist, even ones committed concurrently, are skipped."""
        if not pairs:
            return
        dialect = self.session.get_bind().dialect.name
        insert = _CONFLICT_TOLERANT_INSERTS.get(dialect)
        if insert is None:
            raise StorageError(code="UNSUPPORTED_DIALECT", message=f"no conflict-tolerant insert for {dialect}")
        statement = insert(LeadServiceLink.__table__).on_conflict_do_nothing(index_elements=["lead_id", "service_id"])
        self.session.execute(
            statement,
            [{"id": uuid.uuid4(), "lead_id": lead_id, "service_id": service_id} for lead_id, service_id in pairs],
        )

    def get_table(self, table_id: uuid.UUID) -> TableRecord | None:
        with self._reading():
            row = self.session.get(LeadTable, table_id)
            return _table_record(row) if row is not None else None

    def get_access_level(self, table_id: uuid.UUID, user_id: str) -> str | None:
        with self._reading():
            return self.session.scalar(
                select(TableAccess.access_level).where(
                    TableAccess.table_id == table_id,
                    TableAccess.user_id == user_id,
                )
            )

    def existing_values(self, table_id: uuid.UUID, column: str, values: Sequence[str]) -> set[str]:
        if column not in LOOKUP_COLUMNS:
            raise ValueError(f"unsupported lookup column: {column}")
        if not values:
            return set()
        lead_column = getattr(Lead, column)
        with self._reading():
            found = self.session.scalars(
                select(lead_column).where(Lead.table_id == table_id, lead_column.in_(list(values)))
            ).all()
        return {str(value) for value in found if value is not None}

    def create_import_batch(
        self,
        *,
        org_id: str,
        table_id: uuid.UUID,
        created_by: str,
        filename: str,
        source_default_type: str,
        source_default_detail: str | None,
        row_count: int,
    ) -> ImportBatchRecord:
        with self._writing():
            batch = ImportBatch(
                org_id=org_id,
                table_id=table_id,
                created_by=created_by,
                filename=filename,
                source_default_type=source_default_type,
                source_default_detail=source_default_detail,
                row_count=row_count,
            )
            self.session.add(batch)
            self.session.flush()
            record = _batch_record(batch)
        return record

    def insert_leads(
        self,
        *,
        org_id: str,
        table_id: uuid.UUID,
        actor_user_id: str,
        candidates: Sequence[CandidateLead],
    ) -> list[uuid.UUID]:
        with self._writing():
            rows = [
                Lead(
                    org_id=org_id,
                    table_id=table_id,
                    business_name=candidate.business_name,
                    stage=candidate.stage,
                    owner_id=candidate.owner_id,
                    next_followup_at=_parse_date(candidate.next_followup_at),
                    followup_window=DEFAULT_FOLLOWUP_WINDOW,
                    contact=candidate.contact,
                    website_url=candidate.website_url,
                    domain=candidate.domain,
                    notes=candidate.notes,
                    source_type=candidate.source_type,
                    source_detail=candidate.source_detail,
                    do_not_contact=candidate.do_not_contact,
                    dnc_reason=candidate.dnc_reason,
                    lost_reason=candidate.lost_reason,
                    created_by=actor_user_id,
                    updated_by=actor_user_id,
                )
                for candidate in candidates
            ]
            self.session.add_all(rows)
            self.session.flush()
            inserted = [row.id for row in rows]
        return inserted

    def insert_audit_events(
        self,
        *,
        org_id: str,
        table_id: uuid.UUID,
        actor_user_id: str,
        entries: Sequence[AuditEntry],
    ) -> None:
        with self._writing():
            self.session.add_all(
                [
                    AuditEvent(
                        org_id=org_id,
                        table_id=table_id,
                        lead_id=entry.lead_id,
                        actor_user_id=actor_user_id,
                        event_type=entry.event_type,
                        meta=dict(entry.meta),
                    )
                    for entry in entries
                ]
            )

    def missing_lead_ids(self, table_id: uuid.UUID, lead_ids: Sequence[uuid.UUID]) -> list[uuid.UUID]:
        if not lead_ids:
            return []
        with self._reading():
            found = set(
                self.session.scalars(
                    select(Lead.id).where(Lead.table_id == table_id, Lead.id.in_(list(lead_ids)))
                ).all()
            )
        return [lead_id for lead_id in lead_ids if lead_id not in found]

    def missing_service_ids(self, table_id: uuid.UUID, service_ids: Sequence[uuid.UUID]) -> list[uuid.UUID]:
        if not service_ids:
            return []
        with self._reading():
            found = set(
                self.session.scalars(
                    select(TableService.id).where(
                        TableService.table_id == table_id,
                        TableService.id.in_(list(service_ids)),
                    )
                ).all()
            )
        return [service_id for service_id in service_ids if service_id not in found]

    def update_leads(
        self,
        table_id: uuid.UUID,
        lead_ids: Sequence[uuid.UUID],
        values: Mapping[str, Any],
        *,
        actor_user_id: str,
    ) -> None:
        with self._writing():
            self.session.execute(
                update(Lead)
                .where(Lead.table_id == table_id, Lead.id.in_(list(lead_ids)))
                .values(**values, updated_by=actor_user_id, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )

    def add_service_links(self, lead_ids: Sequence[uuid.UUID], service_ids: Sequence[uuid.UUID]) -> None:
        with self._writing():
            self._insert_links([(lead_id, service_id) for lead_id in lead_ids for service_id in service_ids])

    def remove_service_links(self, lead_ids: Sequence[uuid.UUID], service_ids: Sequence[uuid.UUID]) -> None:
        with self._writing():
            self.session.execute(
                delete(LeadServiceLink)
                .where(
                    LeadServiceLink.lead_id.in_(list(lead_ids)),
                    LeadServiceLink.service_id.in_(list(service_ids)),
                )
                .execution_options(synchronize_session=False)
            )

    def replace_service_links(self, lead_id: uuid.UUID, service_ids: Sequence[uuid.UUID]) -> None:
        with self._writing():
            self.session.execute(
                delete(LeadServiceLink)
                .where(LeadServiceLink.lead_id == lead_id)
                .execution_options(synchronize_session=False)
            )
            self._insert_links([(lead_id, service_id) for service_id in dict.fromkeys(service_ids)])

    def list_leads(
        self,
        table_id: uuid.UUID,
        *,
        include_archived: bool,
        include_dnc: bool,
    ) -> list[LeadRecord]:
        stmt = select(Lead).where(Lead.table_id == table_id).order_by(Lead.created_at.desc())
        if not include_archived:
            stmt = stmt.where(Lead.is_archived.is_(False))
        if not include_dnc:
            stmt = stmt.where(Lead.do_not_contact.is_(False))
        with self._reading():
            rows = self.session.scalars(stmt).all()
            return [_lead_record(row) for row in rows]

    def service_names_by_lead(self, lead_ids: Sequence[uuid.UUID]) -> dict[uuid.UUID, list[str]]:
        if not lead_ids:
            return {}
        with self._reading():
            rows = self.session.execute(
                select(LeadServiceLink.lead_id, TableService.name)
                .join(TableService, TableService.id == LeadServiceLink.service_id)
                .where(LeadServiceLink.lead_id.in_(list(lead_ids)))
                .order_by(TableService.name)
            ).all()
        names: dict[uuid.UUID, list[str]] = {}
        for lead_id, name in rows:
            names.setdefault(lead_id, []).append(name)
        return names

    def get_lead(self, lead_id: uuid.UUID) -> LeadRecord | None:
        with self._reading():
            row = self.session.get(Lead, lead_id)
            if row is None:
                return None
            return _lead_record(row, self._service_ids_for(row.id))

    def create_lead(
        self,
        *,
        org_id: str,
        table_id: uuid.UUID,
        actor_user_id: str,
        values: Mapping[str, Any],
    ) -> LeadRecord:
        payload = dict(values)
        with self._writing():
            payload["next_followup_at"] = _parse_date(payload.get("next_followup_at"))
            lead = Lead(
                org_id=org_id,
                table_id=table_id,
                created_by=actor_user_id,
                updated_by=actor_user_id,
                **payload,
            )
            self.session.add(lead)
            self.session.flush()
            record = _lead_record(lead)
        return record

    def update_lead(self, lead_id: uuid.UUID, values: Mapping[str, Any], *, actor_user_id: str) -> LeadRecord:
        with self._writing():
            lead = self.session.get(Lead, lead_id)
            if lead is None:
                raise StorageError(code="NOT_FOUND", message=f"lead {lead_id} not found")
            for field_name, value in values.items():
                if field_name == "next_followup_at":
                    value = _parse_date(value)
                setattr(lead, field_name, value)
            lead.updated_by = actor_user_id
            self.session.flush()
            record = _lead_record(lead, self._service_ids_for(lead.id))
        return record
