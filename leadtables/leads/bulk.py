"""Bulk lead mutations.

One call applies exactly one action to a set of leads of a single table. Everything that can be
checked up front is checked before the first write: the lead id list, the action tag, the action
payload, the Contacted rule and the service id scope. Once the mutation is stored, one audit event
per lead is written; a failed audit write is reported even though the mutation is kept.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ValidationError

from leadtables.leads.constants import BULK_ACTIONS, MAX_BULK_LEAD_IDS
from leadtables.leads.normalize import is_contacted_incomplete
from leadtables.leads.repositories import AuditEntry, LeadStore, StorageError
from leadtables.leads.results import Err, Ok, Result
from leadtables.leads.schemas import (
    ArchivePayload,
    AssignOwnerPayload,
    ChangeStagePayload,
    ServicesPayload,
    SetFollowupPayload,
    SetSourcePayload,
)

PAYLOAD_MODELS: dict[str, type[BaseModel]] = {
    "assign_owner": AssignOwnerPayload,
    "change_stage": ChangeStagePayload,
    "set_source": SetSourcePayload,
    "set_followup": SetFollowupPayload,
    "add_services": ServicesPayload,
    "remove_services": ServicesPayload,
    "archive": ArchivePayload,
}


@dataclass(frozen=True)
class BulkActionRequest:
    lead_ids: tuple[uuid.UUID, ...]
    action: str
    payload: Mapping[str, Any]


@dataclass(frozen=True)
class BulkActionOutcome:
    action: str
    affected_count: int


def check_lead_ids(lead_ids: Sequence[uuid.UUID]) -> Err | None:
    if not lead_ids:
        return Err.bad_request("lead_ids must not be empty")
    if len(lead_ids) > MAX_BULK_LEAD_IDS:
        return Err.bad_request(f"lead_ids must contain at most {MAX_BULK_LEAD_IDS} entries")
    if len(set(lead_ids)) != len(lead_ids):
        return Err.bad_request("lead_ids must be unique")
    return None


def check_service_scope(store: LeadStore, table_id: uuid.UUID, service_ids: Sequence[uuid.UUID]) -> Err | None:
    if not service_ids:
        return None
    try:
        missing = store.missing_service_ids(table_id, service_ids)
    except StorageError as exc:
        return Err(
            code="SERVICE_SCOPE_CHECK_FAILED",
            message="Failed to verify service scope",
            details=exc.as_details(),
            status_code=500,
        )
    if missing:
        return Err(
            code="INVALID_SERVICE_IDS",
            message="One or more service ids are invalid",
            details={"service_ids": [str(service_id) for service_id in missing]},
            status_code=400,
        )
    return None


def parse_payload(action: str, payload: Mapping[str, Any] | None) -> Result[BaseModel]:
    model = PAYLOAD_MODELS.get(action)
    if model is None:
        return Err.bad_request("Unsupported bulk action", details={"action": action})
    try:
        return Ok(model.model_validate(dict(payload or {})))
    except ValidationError as exc:
        return Err(
            code="VALIDATION_ERROR",
            message="Invalid bulk action payload",
            details={"issues": exc.errors(include_url=False, include_context=False)},
            status_code=400,
        )


def _update_values(parsed: BaseModel) -> dict[str, Any]:
    if isinstance(parsed, AssignOwnerPayload):
        return {"owner_id": str(parsed.owner_id) if parsed.owner_id is not None else None}
    if isinstance(parsed, ChangeStagePayload):
        return {"stage": parsed.stage, "next_followup_at": parsed.next_followup_at, "contact": parsed.contact}
    if isinstance(parsed, SetSourcePayload):
        return {"source_type": parsed.source_type, "source_detail": parsed.source_detail}
    if isinstance(parsed, SetFollowupPayload):
        values: dict[str, Any] = {"next_followup_at": parsed.next_followup_at}
        if parsed.followup_window is not None:
            values["followup_window"] = parsed.followup_window
        return values
    if isinstance(parsed, ArchivePayload):
        return {"is_archived": True}
    raise TypeError(f"no column update for {type(parsed).__name__}")


def _mutate(
    store: LeadStore,
    *,
    table_id: uuid.UUID,
    lead_ids: Sequence[uuid.UUID],
    action: str,
    parsed: BaseModel,
    actor_user_id: str,
) -> None:
    if action == "add_services":
        store.add_service_links(lead_ids, list(dict.fromkeys(parsed.service_ids)))
    elif action == "remove_services":
        store.remove_service_links(lead_ids, list(dict.fromkeys(parsed.service_ids)))
    else:
        store.update_leads(table_id, lead_ids, _update_values(parsed), actor_user_id=actor_user_id)


def apply_bulk_action(
    store: LeadStore,
    *,
    org_id: str,
    table_id: uuid.UUID,
    actor_user_id: str,
    lead_ids: Sequence[uuid.UUID],
    action: str,
    payload: Mapping[str, Any] | None = None,
    now: datetime | None = None,
) -> Result[BulkActionOutcome]:
    """Apply ``action`` to ``lead_ids``, which the caller has already scoped to ``table_id``."""
    invalid_ids = check_lead_ids(lead_ids)
    if invalid_ids is not None:
        return invalid_ids
    if action not in BULK_ACTIONS:
        return Err.bad_request("Unsupported bulk action", details={"action": action})

    parsed_result = parse_payload(action, payload)
    if isinstance(parsed_result, Err):
        return parsed_result
    parsed = parsed_result.value

    if isinstance(parsed, ChangeStagePayload) and is_contacted_incomplete(
        parsed.stage, parsed.contact, parsed.next_followup_at
    ):
        return Err.bad_request("Contacted stage requires next_followup_at and contact in bulk payload")

    if isinstance(parsed, ServicesPayload):
        scope_error = check_service_scope(store, table_id, parsed.service_ids)
        if scope_error is not None:
            return scope_error

    occurred_at = (now or datetime.now(timezone.utc)).isoformat()
    try:
        _mutate(
            store,
            table_id=table_id,
            lead_ids=lead_ids,
            action=action,
            parsed=parsed,
            actor_user_id=actor_user_id,
        )
    except StorageError as exc:
        return Err(
            code=f"BULK_{action.upper()}_FAILED",
            message=f"Failed bulk {action.replace('_', ' ')}",
            details=exc.as_details(),
            status_code=500,
        )

    audit_meta = {"action": action, "payload": dict(payload or {}), "occurred_at": occurred_at}
    try:
        store.insert_audit_events(
            org_id=org_id,
            table_id=table_id,
            actor_user_id=actor_user_id,
            entries=[AuditEntry(lead_id=lead_id, event_type=f"bulk_{action}", meta=audit_meta) for lead_id in lead_ids],
        )
    except StorageError as exc:
        return Err(
            code="BULK_AUDIT_FAILED",
            message="Bulk action succeeded but audit failed",
            details=exc.as_details(),
            status_code=500,
        )

    return Ok(BulkActionOutcome(action=action, affected_count=len(lead_ids)))
