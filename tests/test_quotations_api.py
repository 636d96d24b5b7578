import logging
import re
from datetime import datetime

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

import routes.quotations as quotation_routes
from models import Quotation, QuotationActivity
from routes.quotations import get_next_quotation_number
from seed import create_user


TREE = [
    {
        "name": "Living Room",
        "components": [
            {"name": "TV Unit", "lineItems": [
                {"name": "Back panel", "length": 2400, "width": 1200, "rate": 1500, "amount": 1500},
            ]},
        ],
    },
    {
        "name": "Kitchen",
        "components": [
            {"name": "Cabinets", "lineItems": [{"name": "Shutters", "quantity": 6}]},
        ],
        "lineItems": [{"name": "Chimney installation"}],
    },
]


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/").json()["status"] == "running"


def test_create_quotation_starts_as_draft(create_quotation, owner):
    user, _ = owner
    quotation = create_quotation(title="Sea view apartment", lead_id="lead-1")

    assert re.fullmatch(r"QT\d{6}0001", quotation["quotation_number"])
    assert quotation["version"] == 1
    assert quotation["status"] == "draft"
    assert quotation["tenant_id"] == "tenant-a"
    assert quotation["created_by"] == user.id
    assert quotation["assigned_to"] == user.id
    assert quotation["tax_percent"] == 18.0
    assert quotation["valid_until"] is not None


def test_quotation_numbers_increase_within_the_month(create_quotation):
    first = create_quotation()
    second = create_quotation()

    assert int(second["quotation_number"][-4:]) == int(first["quotation_number"][-4:]) + 1
    assert second["quotation_number"][:8] == first["quotation_number"][:8]


def test_list_quotations_filters(client, auth_headers, create_quotation, set_status):
    draft = create_quotation(lead_id="lead-1")
    sent = create_quotation(lead_id="lead-2")
    set_status(sent["id"], "sent", "approved")

    response = client.get("/quotations/", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["total"] == 2

    active = client.get("/quotations/?status=active", headers=auth_headers).json()
    assert [q["id"] for q in active["quotations"]] == [draft["id"]]

    by_lead = client.get("/quotations/?lead_id=lead-2", headers=auth_headers).json()
    assert [q["id"] for q in by_lead["quotations"]] == [sent["id"]]


def test_list_only_shows_own_tenant(client, create_quotation, other_tenant_headers):
    create_quotation()

    response = client.get("/quotations/", headers=other_tenant_headers)
    assert response.json()["total"] == 0


def test_get_quotation_returns_tree_and_versions(client, auth_headers, create_quotation):
    quotation = create_quotation()
    client.patch(f"/quotations/{quotation['id']}", json={"spaces": TREE}, headers=auth_headers)

    response = client.get(f"/quotations/{quotation['id']}", headers=auth_headers)
    assert response.status_code == 200
    body = response.json()

    assert set(body) == {"quotation", "spaces", "components", "lineItems", "allLineItems", "versions"}
    assert body["quotation"]["created_user"]["email"] == "owner@example.com"
    assert [s["name"] for s in body["spaces"]] == ["Living Room", "Kitchen"]
    kitchen = body["spaces"][1]
    assert kitchen["components"][0]["lineItems"][0]["name"] == "Shutters"
    assert [i["name"] for i in kitchen["lineItems"]] == ["Chimney installation"]
    assert body["components"] == []
    assert body["lineItems"] == []
    assert len(body["allLineItems"]) == 3
    assert [v["version"] for v in body["versions"]] == [1]


def test_get_quotation_of_other_tenant_is_not_found(client, create_quotation, other_tenant_headers):
    quotation = create_quotation()

    response = client.get(f"/quotations/{quotation['id']}", headers=other_tenant_headers)
    assert response.status_code == 404


def test_patch_applies_only_allowed_fields(client, auth_headers, create_quotation, owner):
    user, _ = owner
    quotation = create_quotation()

    response = client.patch(
        f"/quotations/{quotation['id']}",
        json={
            "title": "Revised title",
            "grand_total": 125000,
            "quotation_number": "HACKED",
            "tenant_id": "tenant-b",
            "version": 99,
            "unknown": "ignored",
        },
        headers=auth_headers,
    )
    assert response.status_code == 200
    updated = response.json()["quotation"]

    assert updated["title"] == "Revised title"
    assert updated["grand_total"] == 125000
    assert updated["quotation_number"] == quotation["quotation_number"]
    assert updated["tenant_id"] == "tenant-a"
    assert updated["version"] == 1
    assert updated["updated_by"] == user.id
    assert updated["updated_user"]["id"] == user.id


def test_patch_flat_line_items(client, auth_headers, create_quotation):
    quotation = create_quotation()

    response = client.patch(
        f"/quotations/{quotation['id']}",
        json={"lineItems": [{"name": "Site survey"}, {"name": "Design fee", "rate": 5000}]},
        headers=auth_headers,
    )
    assert response.status_code == 200

    body = client.get(f"/quotations/{quotation['id']}", headers=auth_headers).json()
    assert body["spaces"] == []
    assert [i["name"] for i in body["lineItems"]] == ["Site survey", "Design fee"]


def test_spaces_win_over_flat_line_items(client, auth_headers, create_quotation):
    quotation = create_quotation()

    client.patch(
        f"/quotations/{quotation['id']}",
        json={"spaces": TREE, "lineItems": [{"name": "Ignored"}]},
        headers=auth_headers,
    )

    body = client.get(f"/quotations/{quotation['id']}", headers=auth_headers).json()
    assert "Ignored" not in [i["name"] for i in body["allLineItems"]]
    assert len(body["spaces"]) == 2


def test_patch_on_approved_quotation_is_rejected(client, auth_headers, create_quotation, set_status):
    quotation = create_quotation(title="Locked")
    client.patch(f"/quotations/{quotation['id']}", json={"spaces": TREE}, headers=auth_headers)
    set_status(quotation["id"], "sent", "approved")

    response = client.patch(
        f"/quotations/{quotation['id']}",
        json={"title": "Changed", "spaces": []},
        headers=auth_headers,
    )
    assert response.status_code == 400
    assert "revision" in response.json()["detail"]

    body = client.get(f"/quotations/{quotation['id']}", headers=auth_headers).json()
    assert body["quotation"]["title"] == "Locked"
    assert len(body["spaces"]) == 2


def test_patch_status_follows_workflow(client, auth_headers, create_quotation):
    quotation = create_quotation()

    response = client.patch(f"/quotations/{quotation['id']}", json={"status": "approved"}, headers=auth_headers)
    assert response.status_code == 400

    response = client.patch(f"/quotations/{quotation['id']}", json={"status": "sent"}, headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["quotation"]["status"] == "sent"
    assert response.json()["quotation"]["sent_at"] is not None


def test_status_endpoint(client, auth_headers, create_quotation):
    quotation = create_quotation()
    url = f"/quotations/{quotation['id']}/status"

    assert client.patch(url, json={"status": "bogus"}, headers=auth_headers).status_code == 400
    assert client.patch(url, json={"status": "approved"}, headers=auth_headers).status_code == 400

    response = client.patch(url, json={"status": "sent"}, headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["sent_at"] is not None

    # Same status again is a no-op
    assert client.patch(url, json={"status": "sent"}, headers=auth_headers).status_code == 200

    response = client.patch(url, json={"status": "rejected", "notes": "Over budget"}, headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "rejected"
    assert response.json()["rejection_reason"] == "Over budget"
    assert response.json()["rejected_at"] is not None

    assert client.patch(url, json={"status": "negotiating"}, headers=auth_headers).status_code == 400


def test_expired_is_terminal(client, auth_headers, create_quotation, set_status):
    quotation = create_quotation()
    set_status(quotation["id"], "expired")

    response = client.patch(
        f"/quotations/{quotation['id']}/status", json={"status": "sent"}, headers=auth_headers
    )
    assert response.status_code == 400


def test_revision_copies_tree_and_bumps_version(client, auth_headers, create_quotation, set_status):
    quotation = create_quotation()
    client.patch(f"/quotations/{quotation['id']}", json={"spaces": TREE}, headers=auth_headers)
    set_status(quotation["id"], "sent", "approved")

    response = client.post(f"/quotations/{quotation['id']}/revision", headers=auth_headers)
    assert response.status_code == 200
    revision = response.json()["quotation"]

    assert revision["quotation_number"] == quotation["quotation_number"]
    assert revision["version"] == 2
    assert revision["status"] == "draft"
    assert revision["parent_quotation_id"] == quotation["id"]
    assert response.json()["message"] == "Created revision v2"

    body = client.get(f"/quotations/{revision['id']}", headers=auth_headers).json()
    assert [s["name"] for s in body["spaces"]] == ["Living Room", "Kitchen"]
    assert len(body["allLineItems"]) == 3
    assert [v["version"] for v in body["versions"]] == [2, 1]

    original = client.get(f"/quotations/{quotation['id']}", headers=auth_headers).json()
    assert original["quotation"]["status"] == "approved"
    assert {s["id"] for s in original["spaces"]}.isdisjoint({s["id"] for s in body["spaces"]})


def test_patch_can_create_new_version(client, auth_headers, create_quotation):
    quotation = create_quotation(title="First cut")
    client.patch(f"/quotations/{quotation['id']}", json={"spaces": TREE}, headers=auth_headers)

    response = client.patch(
        f"/quotations/{quotation['id']}",
        json={"create_new_version": True, "version_notes": "Client asked for oak", "grand_total": 90000},
        headers=auth_headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True

    new_version = client.get(f"/quotations/{body['newVersionId']}", headers=auth_headers).json()
    assert new_version["quotation"]["version"] == 2
    assert new_version["quotation"]["notes"] == "Client asked for oak"
    assert new_version["quotation"]["grand_total"] == 90000
    assert new_version["quotation"]["title"] == "First cut"
    assert len(new_version["spaces"]) == 2

    original = client.get(f"/quotations/{quotation['id']}", headers=auth_headers).json()
    assert original["quotation"]["grand_total"] == 0


def test_new_version_with_spaces_uses_submitted_tree(client, auth_headers, create_quotation):
    quotation = create_quotation()
    client.patch(f"/quotations/{quotation['id']}", json={"spaces": TREE}, headers=auth_headers)

    response = client.patch(
        f"/quotations/{quotation['id']}",
        json={"create_new_version": True, "spaces": [{"name": "Study"}]},
        headers=auth_headers,
    )
    new_id = response.json()["newVersionId"]

    body = client.get(f"/quotations/{new_id}", headers=auth_headers).json()
    assert [s["name"] for s in body["spaces"]] == ["Study"]


def test_duplicate_creates_independent_quotation(client, auth_headers, create_quotation):
    quotation = create_quotation(title="Penthouse")
    client.patch(f"/quotations/{quotation['id']}", json={"spaces": TREE}, headers=auth_headers)

    response = client.post(f"/quotations/{quotation['id']}/duplicate", headers=auth_headers)
    assert response.status_code == 200
    duplicate = response.json()["quotation"]

    assert duplicate["quotation_number"] != quotation["quotation_number"]
    assert duplicate["version"] == 1
    assert duplicate["status"] == "draft"
    assert duplicate["title"] == "Penthouse (Copy)"
    assert duplicate["parent_quotation_id"] is None

    body = client.get(f"/quotations/{duplicate['id']}", headers=auth_headers).json()
    assert len(body["spaces"]) == 2
    assert [v["version"] for v in body["versions"]] == [1]


def test_activity_log(client, auth_headers, create_quotation, set_status, db):
    quotation = create_quotation()
    client.patch(f"/quotations/{quotation['id']}", json={"title": "Updated"}, headers=auth_headers)
    set_status(quotation["id"], "sent")

    response = client.get(f"/quotations/{quotation['id']}/activities", headers=auth_headers)
    assert response.status_code == 200
    types = {a["activity_type"] for a in response.json()}
    assert {"created", "updated", "status_changed"} <= types

    rows = db.query(QuotationActivity).filter(QuotationActivity.quotation_id == quotation["id"]).all()
    assert len(rows) == len(response.json())


def _fail(*args, **kwargs):
    raise SQLAlchemyError("connection lost")


def _failing_commit(self):
    raise OperationalError("COMMIT", {}, Exception("database is locked"))


def test_super_admin_without_tenant_cannot_create(client, db):
    _, token = create_user(db, "root@example.com", None, is_super_admin=True)

    response = client.post("/quotations/", json={"title": "Nowhere"}, headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403
    assert db.query(Quotation).count() == 0


def test_create_rolls_back_and_reports_failed_commit(client, auth_headers, db, monkeypatch, caplog):
    monkeypatch.setattr(Session, "commit", _failing_commit)

    with caplog.at_level(logging.ERROR):
        response = client.post("/quotations/", json={"title": "Villa"}, headers=auth_headers)

    assert response.status_code == 500
    assert response.json() == {"detail": "Failed to create quotation"}
    assert any(r.name == "routes.quotations" for r in caplog.records)
    monkeypatch.undo()
    assert db.query(Quotation).count() == 0


def test_quotation_sequence_is_numeric(db):
    now = datetime(2026, 10, 5)
    for number in ("QT2026109999", "QT20261010000"):
        db.add(Quotation(tenant_id="tenant-a", quotation_number=number, version=1))
    db.commit()

    assert get_next_quotation_number(db, now) == "QT20261010001"
    # Other months are not affected
    assert get_next_quotation_number(db, datetime(2026, 11, 1)) == "QT2026110001"


def test_create_after_ten_thousand_quotations_in_a_month(create_quotation, db):
    now = datetime.utcnow()
    prefix = f"QT{now.year}{now.month:02d}"
    db.add(Quotation(tenant_id="tenant-b", quotation_number=f"{prefix}9999", version=1))
    db.add(Quotation(tenant_id="tenant-b", quotation_number=f"{prefix}10000", version=1))
    db.commit()

    quotation = create_quotation()
    assert quotation["quotation_number"] == f"{prefix}10001"


def test_failed_tree_replace_keeps_previous_quotation(client, auth_headers, create_quotation, monkeypatch, caplog):
    quotation = create_quotation(title="Villa interiors")
    client.patch(f"/quotations/{quotation['id']}", json={"spaces": TREE}, headers=auth_headers)
    monkeypatch.setattr(quotation_routes, "replace_quotation_tree", _fail)

    with caplog.at_level(logging.ERROR):
        response = client.patch(
            f"/quotations/{quotation['id']}",
            json={"title": "Half written", "spaces": [{"name": "Balcony"}]},
            headers=auth_headers,
        )

    assert response.status_code == 500
    assert response.json() == {"detail": "Failed to update quotation"}
    assert any(r.name == "routes.quotations" for r in caplog.records)

    body = client.get(f"/quotations/{quotation['id']}", headers=auth_headers).json()
    assert body["quotation"]["title"] == "Villa interiors"
    assert [s["name"] for s in body["spaces"]] == ["Living Room", "Kitchen"]
    assert len(body["allLineItems"]) == 3


def test_failed_revision_copy_leaves_no_new_version(client, auth_headers, create_quotation, monkeypatch):
    quotation = create_quotation()
    client.patch(f"/quotations/{quotation['id']}", json={"spaces": TREE}, headers=auth_headers)
    monkeypatch.setattr(quotation_routes, "copy_quotation_tree", _fail)

    response = client.post(f"/quotations/{quotation['id']}/revision", headers=auth_headers)
    assert response.status_code == 500
    assert response.json() == {"detail": "Failed to create revision"}

    body = client.get(f"/quotations/{quotation['id']}", headers=auth_headers).json()
    assert [v["version"] for v in body["versions"]] == [1]
    assert len(body["spaces"]) == 2
