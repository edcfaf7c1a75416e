from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.datastructures import UploadFile

from leadtables.blob_storage import LocalBlobStorage, get_blob_storage
from leadtables.core.auth import AuthUser, get_current_user
from leadtables.core.database import get_db
from leadtables.leads.bulk import BulkActionRequest
from leadtables.leads.import_export import ImportSummary
from leadtables.leads.repositories import LeadStore, SqlLeadStore
from leadtables.leads.results import Err
from leadtables.leads.schemas import (
    BulkActionResultRead,
    BulkLeadActionRequest,
    DuplicateCandidateRead,
    ExportTemplate,
    ImportConfig,
    ImportResultRead,
    ImportStorageRequest,
    LeadCreate,
    LeadRead,
    LeadUpdate,
)
from leadtables.leads.service import BulkActionService, ExportService, ImportService, LeadService

tables_router = APIRouter(prefix="/api/tables", tags=["leads.tables"])
leads_router = APIRouter(prefix="/api/leads", tags=["leads"])


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any = None

    def to_payload(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            error["details"] = jsonable_encoder(self.details)
        return {"error": error}


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    payload = ErrorEnvelope(code=code, message=message, details=details)
    return JSONResponse(status_code=status_code, content=payload.to_payload())


def err_response(request: Request, err: Err) -> JSONResponse:
    return error_response(
        request,
        status_code=err.status_code,
        code=err.code,
        message=err.message,
        details=err.details,
    )


def validation_error_response(request: Request, errors: list[Any]) -> JSONResponse:
    return error_response(
        request,
        status_code=status.HTTP_400_BAD_REQUEST,
        code="VALIDATION_ERROR",
        message="Request validation failed",
        details={"issues": errors},
    )


def get_store(db: Session = Depends(get_db)) -> LeadStore:
    return SqlLeadStore(db)


def _import_result(summary: ImportSummary) -> ImportResultRead:
    return ImportResultRead(
        imported_count=summary.imported_count,
        duplicate_candidates=[
            DuplicateCandidateRead(
                row_index=candidate.row_index,
                business_name=candidate.business_name,
                reasons=list(candidate.reasons),
            )
            for candidate in summary.duplicate_candidates
        ],
        batch_id=summary.batch_id,
        invalid_rows=summary.invalid_rows,
    )


@tables_router.post("/{table_id}/import", response_model=ImportResultRead)
async def import_table_leads(
    request: Request,
    table_id: uuid.UUID,
    store: LeadStore = Depends(get_store),
    user: AuthUser = Depends(get_current_user),
    blob_storage: LocalBlobStorage = Depends(get_blob_storage),
) -> ImportResultRead | JSONResponse:
    service = ImportService(store, user, blob_storage)
    content_type = request.headers.get("content-type", "")

    if "multipart/form-data" in content_type:
        form = await request.form()
        file_entry = form.get("file")
        if not isinstance(file_entry, UploadFile):
            return error_response(
                request,
                status_code=status.HTTP_400_BAD_REQUEST,
                code="BAD_REQUEST",
                message="file is required in multipart form-data",
            )

        config = ImportConfig()
        config_raw = form.get("config")
        if isinstance(config_raw, str) and config_raw.strip():
            try:
                config = ImportConfig.model_validate_json(config_raw)
            except ValidationError as exc:
                return validation_error_response(request, exc.errors(include_url=False, include_context=False))

        content = await file_entry.read()
        result = await run_in_threadpool(
            service.import_upload,
            table_id,
            content=content,
            filename=file_entry.filename or "import.csv",
            config=config,
        )
    else:
        try:
            body = await request.json()
            payload = ImportStorageRequest.model_validate(body)
        except ValidationError as exc:
            return validation_error_response(request, exc.errors(include_url=False, include_context=False))
        except ValueError as exc:
            # undecodable bytes as well as malformed JSON
            return validation_error_response(request, [{"type": "json_invalid", "loc": ["body"], "msg": str(exc)}])

        result = await run_in_threadpool(
            service.import_from_storage,
            table_id,
            storage_path=payload.storage_path,
            config=payload.config or ImportConfig(),
        )

    if isinstance(result, Err):
        return err_response(request, result)
    return _import_result(result.value)


@tables_router.post("/{table_id}/leads/bulk", response_model=BulkActionResultRead)
def bulk_update_leads(
    request: Request,
    table_id: uuid.UUID,
    dto: BulkLeadActionRequest,
    store: LeadStore = Depends(get_store),
    user: AuthUser = Depends(get_current_user),
) -> BulkActionResultRead | JSONResponse:
    result = BulkActionService(store, user).apply(
        table_id,
        BulkActionRequest(lead_ids=tuple(dto.lead_ids), action=dto.action, payload=dto.payload or {}),
    )
    if isinstance(result, Err):
        return err_response(request, result)
    return BulkActionResultRead(action=dto.action, affected_count=result.value.affected_count)


@tables_router.get("/{table_id}/export", response_model=None)
def export_table_leads(
    request: Request,
    table_id: uuid.UUID,
    template: ExportTemplate = Query(default="full"),
    include_archived: Literal["1", "0"] | None = Query(default=None, alias="includeArchived"),
    include_dnc: Literal["1", "0"] | None = Query(default=None, alias="includeDnc"),
    store: LeadStore = Depends(get_store),
    user: AuthUser = Depends(get_current_user),
) -> Response:
    result = ExportService(store, user).export(
        table_id,
        template=template,
        include_archived=include_archived == "1",
        include_dnc=include_dnc == "1",
    )
    if isinstance(result, Err):
        return err_response(request, result)
    return Response(
        content=result.value,
        media_type="text/csv; charset=utf-8",
        headers={
            "Content-Disposition": f'attachment; filename="table-{table_id}-{template}.csv"',
            "Cache-Control": "no-store",
        },
    )


@tables_router.post("/{table_id}/leads", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    request: Request,
    table_id: uuid.UUID,
    dto: LeadCreate,
    store: LeadStore = Depends(get_store),
    user: AuthUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    result = LeadService(store, user).create(table_id, dto)
    if isinstance(result, Err):
        return err_response(request, result)
    return LeadRead.model_validate(result.value)


@leads_router.patch("/{lead_id}", response_model=LeadRead)
def patch_lead(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadUpdate,
    store: LeadStore = Depends(get_store),
    user: AuthUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    result = LeadService(store, user).update(lead_id, dto)
    if isinstance(result, Err):
        return err_response(request, result)
    return LeadRead.model_validate(result.value)
