from __future__ import annotations

import json
import logging
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadtables.core.auth import AuthUser, get_current_user
from leadtables.core.database import Base, get_db
from leadtables.leads.models import Lead, LeadTable
from leadtables.logging import JsonLogFormatter
from leadtables.main import app


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: AuthUser(sub="user-1", org_id="org-1", roles=["admin"])
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def table(db_session: Session) -> LeadTable:
    row = LeadTable(org_id="org-1", name="Prospects")
    db_session.add(row)
    db_session.commit()
    return row


def test_logs_include_correlation_id_for_http(
    client: TestClient,
    table: LeadTable,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO)

    response = client.get(f"/api/tables/{table.id}/export", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 200

    records = [
        record
        for record in caplog.records
        if record.name == "leadtables.request" and record.getMessage() == "http.request"
    ]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "path", None) == "/api/tables/{id}/export"
        and getattr(record, "status_code", None) == 200
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_import_logs_summary_with_correlation_id(
    client: TestClient,
    table: LeadTable,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO)

    response = client.post(
        f"/api/tables/{table.id}/import",
        files={"file": ("leads.csv", b"business_name,stage\nAcme,New\nGlobex,Contacted\n", "text/csv")},
        headers={"X-Correlation-Id": "corr-import-1"},
    )
    assert response.status_code == 200

    records = [record for record in caplog.records if record.name == "leadtables.leads.import"]
    assert [record.getMessage() for record in records] == ["import.started", "import.finished"]
    finished = records[-1]
    assert getattr(finished, "correlation_id", None) == "corr-import-1"
    assert getattr(finished, "table_id", None) == str(table.id)
    assert getattr(finished, "imported_count", None) == 1
    assert getattr(finished, "invalid_rows", None) == 1
    assert getattr(finished, "user_id", None) == "user-1"


def test_bulk_failure_is_logged(
    client: TestClient,
    db_session: Session,
    table: LeadTable,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO)
    lead = Lead(org_id="org-1", table_id=table.id, business_name="Acme")
    db_session.add(lead)
    db_session.commit()

    response = client.post(
        f"/api/tables/{table.id}/leads/bulk",
        json={"lead_ids": [str(lead.id)], "action": "change_stage", "payload": {"stage": "Contacted"}},
    )
    assert response.status_code == 400

    records = [record for record in caplog.records if record.name == "leadtables.leads.bulk"]
    assert len(records) == 1
    assert records[0].getMessage() == "bulk.failed"
    assert records[0].levelno == logging.WARNING
    assert getattr(records[0], "error_code", None) == "BAD_REQUEST"
    assert getattr(records[0], "action", None) == "change_stage"


def test_json_formatter_keeps_known_fields_only() -> None:
    record = logging.makeLogRecord(
        {
            "name": "leadtables.leads.import",
            "levelname": "WARNING",
            "msg": "import.failed",
            "correlation_id": "corr-1",
            "error_code": "IMPORT_INSERT_FAILED",
            "error": "x" * 600,
            "secret": "hidden",
        }
    )

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["msg"] == "import.failed"
    assert payload["correlation_id"] == "corr-1"
    assert payload["fields"]["error_code"] == "IMPORT_INSERT_FAILED"
    assert len(payload["fields"]["error"]) == 500
    assert "secret" not in payload["fields"]
