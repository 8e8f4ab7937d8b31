from datetime import datetime, timedelta, timezone

import bcrypt

from clientflow.auth.security import verify_password
from clientflow.models.models import AuthUser, PasswordReset, Profile
from clientflow.routes.profile import PORTAL_MARKER

from conftest import PASSWORD, auth_headers, make_client, make_portal_user


def signup(client, email, password="Str0ngPass", **data):
    return client.post("/auth/signup", json={"email": email, "password": password, "data": data or None})


def password_grant(client, email, password):
    return client.post("/auth/token", params={"grant_type": "password"}, json={"email": email, "password": password})


def test_signup_then_sign_in(client, db):
    resp = signup(client, "New.User@ClientFlow.io", full_name="New User")
    assert resp.status_code == 200
    session = resp.json()
    assert session["token_type"] == "bearer"
    assert session["user"]["email"] == "new.user@clientflow.io"
    assert session["user"]["user_metadata"] == {"full_name": "New User"}

    assert password_grant(client, "new.user@clientflow.io", "Str0ngPass").status_code == 200
    bad = password_grant(client, "new.user@clientflow.io", "wrong-pass")
    assert bad.status_code == 400
    assert bad.json()["detail"] == "Invalid login credentials"


def test_signup_rejects_duplicates_and_short_passwords(client, db):
    assert signup(client, "dup@clientflow.io").status_code == 200
    assert signup(client, "dup@clientflow.io").status_code == 422
    assert signup(client, "short@clientflow.io", password="abc").status_code == 422


def test_unsupported_grant(client):
    resp = client.post("/auth/token", params={"grant_type": "magic"}, json={})
    assert resp.status_code == 400


def test_refresh_tokens_are_single_use(client, db, employee):
    first = password_grant(client, employee.email, PASSWORD).json()

    def refresh(token):
        return client.post("/auth/token", params={"grant_type": "refresh_token"}, json={"refresh_token": token})

    rotated = refresh(first["refresh_token"])
    assert rotated.status_code == 200
    assert rotated.json()["refresh_token"] != first["refresh_token"]
    assert refresh(first["refresh_token"]).status_code == 401

    # An access token is not a refresh token
    assert refresh(first["access_token"]).status_code == 401


def test_logout_revokes_refresh_tokens(client, db, employee):
    session = password_grant(client, employee.email, PASSWORD).json()
    headers = {"Authorization": f"Bearer {session['access_token']}"}
    assert client.post("/auth/logout", headers=headers).status_code == 204
    resp = client.post("/auth/token", params={"grant_type": "refresh_token"}, json={"refresh_token": session["refresh_token"]})
    assert resp.status_code == 401


def test_password_recovery(client, db, employee):
    assert client.post("/auth/recover", json={"email": "nobody@clientflow.io"}).json() == {"status": "ok"}
    assert client.post("/auth/recover", json={"email": employee.email}).json() == {"status": "ok"}
    token = db.query(PasswordReset).filter(PasswordReset.user_id == employee.id).one().token

    resp = client.post("/auth/password/reset", json={"token": token, "new_password": "Brand-new-1"})
    assert resp.json() == {"status": "ok"}
    assert password_grant(client, employee.email, "Brand-new-1").status_code == 200
    assert password_grant(client, employee.email, PASSWORD).status_code == 400
    # Tokens are single-use
    assert client.post("/auth/password/reset", json={"token": token, "new_password": "Another-1"}).status_code == 400


def test_expired_reset_token(client, db, employee):
    db.add(PasswordReset(user_id=employee.id, token="stale", expires_at=datetime.now(timezone.utc) - timedelta(minutes=1)))
    db.commit()
    resp = client.post("/auth/password/reset", json={"token": "stale", "new_password": "Brand-new-1"})
    assert resp.status_code == 400


def test_update_user_merges_metadata(client, employee, employee_headers):
    resp = client.put("/auth/user", json={"data": {"theme": "dark"}}, headers=employee_headers)
    assert resp.json()["user_metadata"] == {"full_name": "Emma Employee", "theme": "dark"}
    assert client.get("/auth/user", headers=employee_headers).json()["email"] == employee.email


def test_imported_bcrypt_hashes_still_verify():
    hashed = bcrypt.hashpw(b"legacy-pass", bcrypt.gensalt()).decode()
    assert verify_password("legacy-pass", hashed)
    assert not verify_password("other", hashed)


def test_first_profile_is_admin_then_employees(client, db):
    first = signup(client, "founder@clientflow.io", full_name="Fay Founder").json()
    second = signup(client, "hire@clientflow.io").json()

    resp = client.get("/api/profile", headers=auth_headers(first["user"]["id"]))
    assert resp.json()["role"] == "admin"
    assert resp.json()["full_name"] == "Fay Founder"

    resp = client.get("/api/profile", headers=auth_headers(second["user"]["id"]))
    assert resp.json()["role"] == "employee"
    assert resp.json()["full_name"] == "hire"
    assert db.query(Profile).count() == 2


def test_portal_accounts_are_flagged(client, db):
    acme = make_client(db, "Acme")
    portal = make_portal_user(db, "contact@acme.io", acme.id)
    body = client.get("/api/profile", headers=auth_headers(portal.auth_user_id)).json()
    assert body[PORTAL_MARKER] is True
    assert body["client_id"] == str(acme.id)
    assert body["last_login_at"] is not None
    # No staff profile was created for them
    assert db.query(Profile).count() == 0


def test_patch_own_profile(client, employee_headers):
    resp = client.patch("/api/profile", json={"phone": "555-987-6543", "full_name": "  "}, headers=employee_headers)
    assert resp.status_code == 200
    assert resp.json()["phone"] == "555-987-6543"
    assert resp.json()["full_name"] == "Emma Employee"
    # Role is not editable here
    resp = client.patch("/api/profile", json={"role": "admin"}, headers=employee_headers)
    assert resp.json()["role"] == "employee"


def test_deactivated_user_cannot_call_the_api(client, db, employee, employee_headers):
    db.query(AuthUser).filter(AuthUser.id == employee.id).update({AuthUser.is_active: False})
    db.commit()
    assert client.get("/api/profile", headers=employee_headers).status_code == 401
