# tests/conftest.py
import os
import tempfile

# The app reads DATABASE_URL at import time; point it at a throwaway SQLite file first
_db_dir = tempfile.mkdtemp(prefix="quotation-builder-")
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(_db_dir, "test.db")

import pytest
from fastapi.testclient import TestClient

import main
from database import Base, SessionLocal, engine
from models import Quotation
from seed import create_user, seed_master_data


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_master_data(db)
    finally:
        db.close()
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(main.app)


@pytest.fixture
def owner(db):
    user, token = create_user(db, "owner@example.com", "tenant-a", name="Owner")
    return user, token


@pytest.fixture
def auth_headers(owner):
    return {"Authorization": f"Bearer {owner[1]}"}


@pytest.fixture
def other_tenant_headers(db):
    _, token = create_user(db, "rival@example.com", "tenant-b", name="Rival")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def quotation(db):
    """A bare draft quotation row for writer tests."""
    row = Quotation(tenant_id="tenant-a", quotation_number="QT2026100001", version=1, title="Villa")
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@pytest.fixture
def create_quotation(client, auth_headers):
    def _create(**fields):
        fields.setdefault("title", "Villa interiors")
        response = client.post("/quotations/", json=fields, headers=auth_headers)
        assert response.status_code == 200, response.text
        return response.json()
    return _create


@pytest.fixture
def set_status(client, auth_headers):
    def _set(quotation_id, *statuses):
        for status in statuses:
            response = client.patch(
                f"/quotations/{quotation_id}/status", json={"status": status}, headers=auth_headers
            )
            assert response.status_code == 200, response.text
    return _set
