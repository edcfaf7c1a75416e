from __future__ import annotations

import csv
import io
from collections.abc import Generator
from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadtables.core.auth import AuthUser, get_current_user
from leadtables.core.database import Base, get_db
from leadtables.leads.models import Lead, LeadServiceLink, LeadTable, TableAccess, TableService
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
def user() -> AuthUser:
    return AuthUser(sub="admin-1", org_id="org-1", roles=["Admin"])


@pytest.fixture()
def client(db_session: Session, user: AuthUser) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def table(db_session: Session) -> LeadTable:
    row = LeadTable(org_id="org-1", name="Prospects")
    db_session.add(row)
    db_session.flush()
    seo = TableService(table_id=row.id, name="SEO")
    ads = TableService(table_id=row.id, name="Ads")
    acme = Lead(
        org_id="org-1",
        table_id=row.id,
        business_name="Acme",
        contact="a@acme.com",
        next_followup_at=date(2024, 3, 1),
        source_type="Referral",
        source_detail="Trade show",
    )
    db_session.add_all(
        [
            seo,
            ads,
            acme,
            Lead(org_id="org-1", table_id=row.id, business_name="Archived Co", is_archived=True),
            Lead(org_id="org-1", table_id=row.id, business_name="Blocked Co", do_not_contact=True),
        ]
    )
    db_session.flush()
    db_session.add_all(
        [
            LeadServiceLink(lead_id=acme.id, service_id=seo.id),
            LeadServiceLink(lead_id=acme.id, service_id=ads.id),
        ]
    )
    db_session.commit()
    return row


def _rows(text: str) -> list[dict[str, str]]:
    return list(csv.DictReader(io.StringIO(text)))


def test_export_full_template(client: TestClient, table: LeadTable) -> None:
    response = client.get(f"/api/tables/{table.id}/export")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.headers["content-disposition"] == f'attachment; filename="table-{table.id}-full.csv"'
    assert response.headers["cache-control"] == "no-store"

    rows = _rows(response.text)
    assert len(rows) == 1
    row = rows[0]
    assert list(row)[:3] == ["id", "business_name", "stage"]
    assert row["business_name"] == "Acme"
    assert row["next_followup_at"] == "2024-03-01"
    assert row["do_not_contact"] == "false"
    assert row["is_archived"] == "false"
    assert row["services"] == "Ads, SEO"
    assert row["owner_id"] == ""


def test_export_filters(client: TestClient, table: LeadTable) -> None:
    archived = client.get(f"/api/tables/{table.id}/export", params={"template": "calling", "includeArchived": "1"})
    everything = client.get(
        f"/api/tables/{table.id}/export",
        params={"template": "services_report", "includeArchived": "1", "includeDnc": "1"},
    )

    assert sorted(row["business_name"] for row in _rows(archived.text)) == ["Acme", "Archived Co"]
    assert sorted(row["business_name"] for row in _rows(everything.text)) == ["Acme", "Archived Co", "Blocked Co"]
    assert list(_rows(everything.text)[0]) == [
        "business_name",
        "services",
        "stage",
        "owner_id",
        "source_type",
        "created_at",
        "updated_at",
    ]


def test_source_report_template(client: TestClient, table: LeadTable) -> None:
    response = client.get(f"/api/tables/{table.id}/export", params={"template": "source_report"})

    assert response.status_code == 200
    assert response.text.splitlines()[0] == "business_name,source_type,source_detail,stage,owner_id,services,created_at"
    (row,) = _rows(response.text)
    assert (row["source_type"], row["source_detail"]) == ("Referral", "Trade show")


def test_unknown_template_is_rejected(client: TestClient, table: LeadTable) -> None:
    response = client.get(f"/api/tables/{table.id}/export", params={"template": "everything"})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_export_requires_admin(client: TestClient, db_session: Session, user: AuthUser, table: LeadTable) -> None:
    user.roles = ["sales"]
    db_session.add(TableAccess(table_id=table.id, user_id="admin-1", access_level="edit"))
    db_session.commit()

    response = client.get(f"/api/tables/{table.id}/export")

    assert response.status_code == 403
    assert response.json()["error"] == {"code": "FORBIDDEN", "message": "Admin access required"}


def test_export_without_access_is_forbidden(client: TestClient, user: AuthUser, table: LeadTable) -> None:
    user.roles = ["sales"]

    response = client.get(f"/api/tables/{table.id}/export")

    assert response.status_code == 403
    assert response.json()["error"]["message"] == "Read access required"
