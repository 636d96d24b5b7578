from auth import hash_api_token
from models import User, UserStatus
from seed import create_user


def test_missing_token_is_unauthorized(client):
    response = client.get("/quotations/")
    assert response.status_code == 401
    assert response.json()["detail"] == "Not authenticated"


def test_non_bearer_scheme_is_unauthorized(client, owner):
    _, token = owner
    response = client.get("/quotations/", headers={"Authorization": f"Basic {token}"})
    assert response.status_code == 401


def test_unknown_token_is_unauthorized(client):
    response = client.get("/quotations/", headers={"Authorization": "Bearer not-a-real-token"})
    assert response.status_code == 401


def test_valid_token_is_accepted(client, auth_headers):
    assert client.get("/quotations/", headers=auth_headers).status_code == 200


def test_tokens_are_stored_hashed(db, owner):
    user, token = owner
    stored = db.query(User).filter(User.id == user.id).first()
    assert stored.api_token_hash == hash_api_token(token)
    assert stored.api_token_hash != token


def test_disabled_user_is_forbidden(client, db):
    user, token = create_user(db, "former@example.com", "tenant-a")
    user.status = UserStatus.disabled.value
    db.commit()

    response = client.get("/quotations/", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403


def test_user_without_tenant_is_forbidden(client, db):
    _, token = create_user(db, "drifter@example.com", None)

    response = client.get("/quotations/", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403


def test_super_admin_without_tenant_is_allowed(client, db):
    _, token = create_user(db, "root@example.com", None, is_super_admin=True)

    response = client.get("/quotations/", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200


def test_client_portal_needs_no_login(client):
    # Unknown token, but the request gets past authentication
    assert client.get("/quotations/client/abc").status_code == 404


def test_bearer_scheme_is_documented(client):
    schema = client.get("/openapi.json").json()
    assert schema["components"]["securitySchemes"]["HTTPBearer"]["scheme"] == "bearer"
