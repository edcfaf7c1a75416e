from __future__ import annotations

import dataclasses
import logging
import time
import uuid
from typing import Any

from opentelemetry import trace

from leadtables.blob_storage import LocalBlobStorage
from leadtables.core.auth import AuthUser
from leadtables.leads.bulk import (
    BulkActionOutcome,
    BulkActionRequest,
    apply_bulk_action,
    check_lead_ids,
    check_service_scope,
)
from leadtables.leads.constants import DEFAULT_FOLLOWUP_WINDOW, DEFAULT_SOURCE_TYPE
from leadtables.leads.import_export import ImportSummary, export_leads_csv, import_leads
from leadtables.leads.normalize import ImportDefaults, is_contacted_incomplete
from leadtables.leads.permissions import TablePermissionOracle
from leadtables.leads.repositories import AuditEntry, LeadRecord, LeadStore, StorageError, TableRecord
from leadtables.leads.results import Err, Ok, Result
from leadtables.leads.schemas import ImportConfig, LeadCreate, LeadUpdate
from leadtables.leads.urls import extract_domain, normalize_website_url
from leadtables.metrics import observe_bulk_action, observe_import
from leadtables.otel import mark_span_failed

import_logger = logging.getLogger("leadtables.leads.import")
bulk_logger = logging.getLogger("leadtables.leads.bulk")
tracer = trace.get_tracer("leadtables.leads")

_UNSAFE_PATH_SEGMENTS = {"", ".", ".."}
_NON_NULLABLE_LEAD_FIELDS = {"business_name", "stage", "followup_window", "source_type", "do_not_contact", "is_archived"}
_PATCHABLE_LEAD_FIELDS = (
    "business_name",
    "stage",
    "owner_id",
    "next_followup_at",
    "followup_window",
    "contact",
    "notes",
    "source_type",
    "source_detail",
    "do_not_contact",
    "dnc_reason",
    "lost_reason",
    "is_archived",
)


def _storage_err(code: str, message: str, exc: StorageError) -> Err:
    return Err(code=code, message=message, details=exc.as_details(), status_code=500)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


class TableAccessService:
    def __init__(self, store: LeadStore, user: AuthUser) -> None:
        self.store = store
        self.user = user
        self.oracle = TablePermissionOracle(store, user)

    def resolve_table(self, table_id: uuid.UUID, *, edit: bool) -> Result[TableRecord]:
        try:
            table = self.store.get_table(table_id)
        except StorageError as exc:
            return _storage_err("TABLE_LOOKUP_FAILED", "Failed to lookup table", exc)
        if table is None or not self.oracle.is_visible(table):
            return Err.not_found("Table not found")

        try:
            allowed = self.oracle.can_edit_table(table) if edit else self.oracle.can_read_table(table)
        except StorageError as exc:
            return _storage_err("TABLE_PERMISSION_CHECK_FAILED", "Failed permission check", exc)
        if not allowed:
            return Err.forbidden("Edit access required" if edit else "Read access required")
        return Ok(table)


class ImportService(TableAccessService):
    def __init__(self, store: LeadStore, user: AuthUser, blob_storage: LocalBlobStorage) -> None:
        super().__init__(store, user)
        self.blob_storage = blob_storage

    def import_upload(
        self,
        table_id: uuid.UUID,
        *,
        content: bytes,
        filename: str,
        config: ImportConfig,
    ) -> Result[ImportSummary]:
        table_result = self.resolve_table(table_id, edit=True)
        if isinstance(table_result, Err):
            return table_result
        return self._run(table_result.value, content=content, filename=filename, config=config)

    def import_from_storage(
        self,
        table_id: uuid.UUID,
        *,
        storage_path: str,
        config: ImportConfig,
    ) -> Result[ImportSummary]:
        table_result = self.resolve_table(table_id, edit=True)
        if isinstance(table_result, Err):
            return table_result

        segments = storage_path.split("/")
        if len(segments) < 2 or not segments[0] or not segments[1]:
            return Err.bad_request("storage_path must follow org_id/table_id/... format")
        if any(segment in _UNSAFE_PATH_SEGMENTS for segment in segments):
            return Err.bad_request("storage_path must not contain empty, '.' or '..' segments")
        if segments[0] != self.user.org_id or segments[1] != str(table_id):
            return Err.bad_request("storage_path must belong to the same org and table")

        try:
            content = self.blob_storage.download(storage_path, within=f"{segments[0]}/{segments[1]}")
        except (OSError, ValueError) as exc:
            return Err(
                code="IMPORT_STORAGE_DOWNLOAD_FAILED",
                message="Failed to download CSV from storage",
                details={"message": str(exc)},
                status_code=500,
            )
        return self._run(table_result.value, content=content, filename=segments[-1], config=config)

    def _defaults(self, table: TableRecord, config: ImportConfig) -> ImportDefaults:
        return ImportDefaults(
            default_stage=config.default_stage or table.default_stage,
            default_source_type=config.default_source_type or table.default_source_type or DEFAULT_SOURCE_TYPE,
            default_source_detail=(
                config.default_source_detail
                if config.default_source_detail is not None
                else table.default_source_detail
            ),
        )

    def _run(self, table: TableRecord, *, content: bytes, filename: str, config: ImportConfig) -> Result[ImportSummary]:
        started = time.perf_counter()
        mapping = config.mapping.model_dump(exclude_none=True) if config.mapping is not None else {}
        defaults = self._defaults(table, config)

        with tracer.start_as_current_span("leads.import") as span:
            span.set_attribute("table_id", str(table.id))
            import_logger.info("import.started", extra={"table_id": str(table.id), "user_id": self.user.sub})

            result = import_leads(
                self.store,
                org_id=self.user.org_id,
                table_id=table.id,
                actor_user_id=self.user.sub,
                csv_text=content.decode("utf-8-sig", errors="replace"),
                filename=filename,
                mapping=mapping,
                defaults=defaults,
            )

            if isinstance(result, Err):
                mark_span_failed(span, result.code, result.message)
                observe_import("failed")
                import_logger.warning(
                    "import.failed",
                    extra={
                        "table_id": str(table.id),
                        "error_code": result.code,
                        "error": result.message,
                        "duration_ms": _elapsed_ms(started),
                        "user_id": self.user.sub,
                    },
                )
                return result

            summary = result.value
            duplicate_count = len(summary.duplicate_candidates)
            span.set_attribute("imported_count", summary.imported_count)
            span.set_attribute("invalid_rows", summary.invalid_rows)
            span.set_attribute("duplicate_count", duplicate_count)
            observe_import(
                "succeeded",
                imported_count=summary.imported_count,
                invalid_rows=summary.invalid_rows,
                duplicate_count=duplicate_count,
            )
            import_logger.info(
                "import.finished",
                extra={
                    "table_id": str(table.id),
                    "batch_id": str(summary.batch_id) if summary.batch_id else None,
                    "imported_count": summary.imported_count,
                    "invalid_rows": summary.invalid_rows,
                    "duplicate_count": duplicate_count,
                    "duration_ms": _elapsed_ms(started),
                    "user_id": self.user.sub,
                },
            )
            return result


class BulkActionService(TableAccessService):
    def apply(self, table_id: uuid.UUID, request: BulkActionRequest) -> Result[BulkActionOutcome]:
        table_result = self.resolve_table(table_id, edit=True)
        if isinstance(table_result, Err):
            return table_result

        invalid_ids = check_lead_ids(request.lead_ids)
        if invalid_ids is not None:
            return invalid_ids

        try:
            missing = self.store.missing_lead_ids(table_id, request.lead_ids)
        except StorageError as exc:
            return _storage_err("LEAD_SCOPE_CHECK_FAILED", "Failed to verify lead scope", exc)
        if missing:
            return Err.not_found("One or more leads were not found")

        started = time.perf_counter()
        with tracer.start_as_current_span("leads.bulk") as span:
            span.set_attribute("table_id", str(table_id))
            span.set_attribute("action", request.action)
            span.set_attribute("lead_count", len(request.lead_ids))

            result = apply_bulk_action(
                self.store,
                org_id=self.user.org_id,
                table_id=table_id,
                actor_user_id=self.user.sub,
                lead_ids=request.lead_ids,
                action=request.action,
                payload=request.payload,
            )

            if isinstance(result, Err):
                mark_span_failed(span, result.code, result.message)
                observe_bulk_action(request.action, "failed")
                bulk_logger.warning(
                    "bulk.failed",
                    extra={
                        "table_id": str(table_id),
                        "action": request.action,
                        "error_code": result.code,
                        "error": result.message,
                        "duration_ms": _elapsed_ms(started),
                        "user_id": self.user.sub,
                    },
                )
                return result

            span.set_attribute("affected_count", result.value.affected_count)
            observe_bulk_action(request.action, "succeeded")
            bulk_logger.info(
                "bulk.applied",
                extra={
                    "table_id": str(table_id),
                    "action": request.action,
                    "affected_count": result.value.affected_count,
                    "duration_ms": _elapsed_ms(started),
                    "user_id": self.user.sub,
                },
            )
            return result


class ExportService(TableAccessService):
    def export(
        self,
        table_id: uuid.UUID,
        *,
        template: str,
        include_archived: bool,
        include_dnc: bool,
    ) -> Result[str]:
        table_result = self.resolve_table(table_id, edit=False)
        if isinstance(table_result, Err):
            return table_result
        if not self.user.is_admin:
            return Err.forbidden("Admin access required")
        return export_leads_csv(
            self.store,
            table_id=table_id,
            template=template,
            include_archived=include_archived,
            include_dnc=include_dnc,
        )


class LeadService(TableAccessService):
    def _audit(self, lead: LeadRecord, event_type: str, meta: dict[str, Any]) -> Err | None:
        try:
            self.store.insert_audit_events(
                org_id=lead.org_id,
                table_id=lead.table_id,
                actor_user_id=self.user.sub,
                entries=[AuditEntry(lead_id=lead.id, event_type=event_type, meta=meta)],
            )
        except StorageError as exc:
            return _storage_err("LEAD_AUDIT_FAILED", "Lead saved but audit failed", exc)
        return None

    def create(self, table_id: uuid.UUID, dto: LeadCreate) -> Result[LeadRecord]:
        table_result = self.resolve_table(table_id, edit=True)
        if isinstance(table_result, Err):
            return table_result
        table = table_result.value

        stage = dto.stage or table.default_stage
        source_type = dto.source_type or table.default_source_type or DEFAULT_SOURCE_TYPE
        if is_contacted_incomplete(stage, dto.contact, dto.next_followup_at):
            return Err.bad_request("Contacted stage requires next_followup_at and contact")

        service_ids = list(dict.fromkeys(dto.service_ids or []))
        scope_error = check_service_scope(self.store, table_id, service_ids)
        if scope_error is not None:
            return scope_error

        website_url = normalize_website_url(dto.website_url)
        values = {
            "business_name": dto.business_name,
            "stage": stage,
            "owner_id": str(dto.owner_id) if dto.owner_id is not None else None,
            "next_followup_at": dto.next_followup_at,
            "followup_window": dto.followup_window or DEFAULT_FOLLOWUP_WINDOW,
            "contact": dto.contact,
            "website_url": website_url,
            "domain": extract_domain(website_url),
            "notes": dto.notes,
            "source_type": source_type,
            "source_detail": dto.source_detail if dto.source_detail is not None else table.default_source_detail,
            "do_not_contact": bool(dto.do_not_contact),
            "dnc_reason": dto.dnc_reason,
            "lost_reason": dto.lost_reason,
            "is_archived": bool(dto.is_archived),
        }
        try:
            lead = self.store.create_lead(
                org_id=self.user.org_id,
                table_id=table_id,
                actor_user_id=self.user.sub,
                values=values,
            )
        except StorageError as exc:
            return _storage_err("LEAD_CREATE_FAILED", "Failed to create lead", exc)

        if service_ids:
            try:
                self.store.replace_service_links(lead.id, service_ids)
            except StorageError as exc:
                return _storage_err("LEAD_SERVICE_LINK_FAILED", "Lead created but failed to link services", exc)
            lead = dataclasses.replace(lead, service_ids=tuple(service_ids))

        audit_error = self._audit(lead, "created", {"stage": stage, "source_type": source_type})
        if audit_error is not None:
            return audit_error
        return Ok(lead)

    def update(self, lead_id: uuid.UUID, dto: LeadUpdate) -> Result[LeadRecord]:
        try:
            lead = self.store.get_lead(lead_id)
        except StorageError as exc:
            return _storage_err("LEAD_LOOKUP_FAILED", "Failed to lookup lead", exc)
        if lead is None:
            return Err.not_found("Lead not found")

        table_result = self.resolve_table(lead.table_id, edit=True)
        if isinstance(table_result, Err):
            return Err.not_found("Lead not found") if table_result.status_code == 404 else table_result

        provided = dto.model_fields_set
        if dto.service_ids is not None:
            scope_error = check_service_scope(self.store, lead.table_id, dto.service_ids)
            if scope_error is not None:
                return scope_error

        next_stage = dto.stage if dto.stage is not None else lead.stage
        next_contact = dto.contact if "contact" in provided else lead.contact
        next_followup = dto.next_followup_at if "next_followup_at" in provided else lead.next_followup_at
        if is_contacted_incomplete(next_stage, next_contact, next_followup):
            return Err.bad_request("Contacted stage requires next_followup_at and contact")

        values: dict[str, Any] = {}
        for field_name in _PATCHABLE_LEAD_FIELDS:
            if field_name not in provided:
                continue
            value = getattr(dto, field_name)
            if value is None and field_name in _NON_NULLABLE_LEAD_FIELDS:
                continue
            values[field_name] = str(value) if field_name == "owner_id" and value is not None else value
        if "website_url" in provided:
            website_url = normalize_website_url(dto.website_url)
            values["website_url"] = website_url
            values["domain"] = extract_domain(website_url)

        try:
            updated = self.store.update_lead(lead_id, values, actor_user_id=self.user.sub)
        except StorageError as exc:
            return _storage_err("LEAD_UPDATE_FAILED", "Failed to update lead", exc)

        if dto.service_ids is not None:
            service_ids = list(dict.fromkeys(dto.service_ids))
            try:
                self.store.replace_service_links(lead_id, service_ids)
            except StorageError as exc:
                return _storage_err("LEAD_SERVICE_SET_FAILED", "Failed to set lead services", exc)
            updated = dataclasses.replace(updated, service_ids=tuple(service_ids))

        changed = sorted(values)
        if dto.service_ids is not None:
            changed.append("service_ids")
        audit_error = self._audit(updated, "updated", {"fields": changed})
        if audit_error is not None:
            return audit_error
        return Ok(updated)
