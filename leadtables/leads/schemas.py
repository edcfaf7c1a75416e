from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator

from leadtables.leads.constants import FollowupWindow, SourceType, Stage


def _strip(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def _trim_to_none(value: Any) -> Any:
    if isinstance(value, str):
        trimmed = value.strip()
        return trimmed or None
    return value


Trimmed = Annotated[str, BeforeValidator(_strip)]
NullableText = Annotated[str | None, BeforeValidator(_trim_to_none)]

BulkAction = Literal[
    "assign_owner",
    "change_stage",
    "set_source",
    "set_followup",
    "add_services",
    "remove_services",
    "archive",
]
ExportTemplate = Literal["full", "calling", "source_report", "services_report"]


class ImportMappingConfig(BaseModel):
    business_name: str | None = None
    stage: str | None = None
    contact: str | None = None
    website_url: str | None = None
    notes: str | None = None
    source_type: str | None = None
    source_detail: str | None = None
    owner_id: str | None = None
    next_followup_at: str | None = None
    do_not_contact: str | None = None
    dnc_reason: str | None = None
    lost_reason: str | None = None


class ImportConfig(BaseModel):
    mapping: ImportMappingConfig | None = None
    default_stage: Stage | None = None
    default_source_type: SourceType | None = None
    default_source_detail: Trimmed | None = Field(default=None, max_length=300)


class ImportStorageRequest(BaseModel):
    storage_path: Trimmed = Field(min_length=1)
    config: ImportConfig | None = None


class DuplicateCandidateRead(BaseModel):
    row_index: int
    business_name: str
    reasons: list[str]


class ImportResultRead(BaseModel):
    imported_count: int
    duplicate_candidates: list[DuplicateCandidateRead]
    batch_id: UUID | None
    invalid_rows: int


class BulkLeadActionRequest(BaseModel):
    lead_ids: list[UUID]
    action: BulkAction
    payload: dict[str, Any] | None = None


class BulkActionResultRead(BaseModel):
    success: bool = True
    action: BulkAction
    affected_count: int


class AssignOwnerPayload(BaseModel):
    owner_id: UUID | None


class ChangeStagePayload(BaseModel):
    stage: Stage
    next_followup_at: date | None = None
    contact: NullableText = None


class SetSourcePayload(BaseModel):
    source_type: SourceType
    source_detail: NullableText = None


class SetFollowupPayload(BaseModel):
    next_followup_at: date | None
    followup_window: FollowupWindow | None = None


class ServicesPayload(BaseModel):
    service_ids: list[UUID] = Field(min_length=1)


class ArchivePayload(BaseModel):
    pass


class LeadCreate(BaseModel):
    business_name: Trimmed = Field(
        min_length=1,
        max_length=180,
    )
    stage: Stage | None = None
    owner_id: UUID | None = None
    next_followup_at: date | None = None
    followup_window: FollowupWindow | None = None
    contact: NullableText = None
    website_url: NullableText = None
    notes: NullableText = None
    source_type: SourceType | None = None
    source_detail: NullableText = None
    do_not_contact: bool | None = None
    dnc_reason: NullableText = None
    lost_reason: NullableText = None
    is_archived: bool | None = None
    service_ids: list[UUID] | None = None


class LeadUpdate(BaseModel):
    business_name: Trimmed | None = Field(
        default=None,
        min_length=1,
        max_length=180,
    )
    stage: Stage | None = None
    owner_id: UUID | None = None
    next_followup_at: date | None = None
    followup_window: FollowupWindow | None = None
    contact: NullableText = None
    website_url: NullableText = None
    notes: NullableText = None
    source_type: SourceType | None = None
    source_detail: NullableText = None
    do_not_contact: bool | None = None
    dnc_reason: NullableText = None
    lost_reason: NullableText = None
    is_archived: bool | None = None
    service_ids: list[UUID] | None = None

    @model_validator(mode="after")
    def validate_not_empty(self) -> LeadUpdate:
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class LeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    org_id: str
    table_id: UUID
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
    created_at: datetime
    updated_at: datetime
    service_ids: list[UUID] = Field(default_factory=list)
