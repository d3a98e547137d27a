from datetime import datetime, timedelta, timezone

import pytest

from security import create_access_token, get_password_hash, verify_password, ensure_password_hash


# ==================== PASSWORDS ====================

def test_password_hash_is_salted_and_verifiable():
    first = get_password_hash("hunter22")
    second = get_password_hash("hunter22")

    assert first != second
    assert verify_password("hunter22", first)
    assert not verify_password("hunter23", first)
    assert not verify_password("hunter22", "")


def test_existing_digest_is_not_hashed_again():
    digest = get_password_hash("hunter22")
    assert ensure_password_hash(digest) == digest
    assert ensure_password_hash("") == ""


# ==================== ADMIN SIGNUP & LOGIN ====================

def test_admin_signup_issues_token(client):
    response = client.post("/api/auth/admin/signup", json={
        "name": "Principal Skinner",
        "email": "skinner@school.org",
        "username": "skinner",
        "password": "springfield",
    })

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["data"]["user"]["role"] == "admin"
    assert body["data"]["token"]
    assert "token=" in response.headers["set-cookie"]


def test_admin_signup_conflicts(client, admin):
    response = client.post("/api/auth/admin/signup", json={
        "name": "Other", "email": "admin@school.org", "username": "other", "password": "secret123",
    })
    assert response.status_code == 409

    response = client.post("/api/auth/admin/signup", json={
        "name": "Other", "email": "other@school.org", "username": "admin", "password": "secret123",
    })
    assert response.status_code == 409


def test_admin_signup_rejects_short_password(client):
    response = client.post("/api/auth/admin/signup", json={
        "name": "Other", "email": "other@school.org", "username": "other", "password": "12345",
    })
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_login_with_email_or_username(client, db, admin):
    by_email = client.post("/api/auth/login", json={"email": "admin@school.org", "password": "adminpass"})
    by_username = client.post("/api/auth/login", json={"identifier": "admin", "password": "adminpass"})

    assert by_email.status_code == 200
    assert by_username.status_code == 200
    assert by_username.json()["data"]["user"]["email"] == "admin@school.org"
    assert db.get_user(admin["id"])["loginCount"] == 2


def test_login_rejects_bad_credentials(client, admin):
    wrong_password = client.post("/api/auth/login", json={"identifier": "admin", "password": "nope"})
    unknown = client.post("/api/auth/login", json={"identifier": "ghost", "password": "adminpass"})

    assert wrong_password.status_code == 401
    assert unknown.status_code == 401
    assert wrong_password.json() == {"success": False, "error": "Invalid credentials"}


@pytest.mark.parametrize("role", ["admin", "teacher", "student", "parent"])
def test_login_without_password_signals_setup(client, db, admin, role):
    user = db.create_user({
        "name": "Fresh",
        "email": f"fresh-{role}@school.org",
        "username": f"fresh_{role}",
        "role": role,
        "addedBy": None if role == "admin" else admin["id"],
    })

    response = client.post("/api/auth/login", json={"identifier": user["email"], "password": "anything"})

    assert response.status_code == 403
    body = response.json()
    assert body["needsSetup"] is True
    assert body["email"] == user["email"]


def test_login_without_owner_is_rejected(client, make_member):
    make_member("teacher", "rogue@school.org", addedBy=None)

    response = client.post("/api/auth/login", json={"identifier": "rogue@school.org", "password": "secret123"})

    assert response.status_code == 401


def test_login_deactivated_account(client, make_member):
    make_member("teacher", "gone@school.org", isActive=False)

    response = client.post("/api/auth/login", json={"identifier": "gone@school.org", "password": "secret123"})

    assert response.status_code == 403


# ==================== REGISTRATION ====================

def test_provisioned_teacher_completes_registration(client, db, admin_headers, teacher_payload):
    created = client.post("/api/teachers", json=teacher_payload, headers=admin_headers)
    assert created.status_code == 201
    credentials = created.json()["loginCredentials"]
    assert len(credentials["temporaryPassword"]) == 8

    check = client.post("/api/auth/check-email", json={"email": teacher_payload["email"]})
    assert check.status_code == 200
    assert check.json()["data"]["needsSetup"] is True

    mismatch = client.post("/api/auth/complete-registration", json={
        "email": teacher_payload["email"], "password": "secret123", "confirmPassword": "secret124",
    })
    assert mismatch.status_code == 400

    short = client.post("/api/auth/complete-registration", json={
        "email": teacher_payload["email"], "password": "12345", "confirmPassword": "12345",
    })
    assert short.status_code == 400

    done = client.post("/api/auth/complete-registration", json={
        "email": teacher_payload["email"], "password": "secret123", "confirmPassword": "secret123",
    })
    assert done.status_code == 200
    assert done.json()["data"]["user"]["username"] == credentials["username"]
    registered = db.get_user_by_email(teacher_payload["email"])
    assert registered["isActive"] is True
    assert registered["loginCount"] == 0
    assert registered["lastLogin"] is None

    again = client.post("/api/auth/complete-registration", json={
        "email": teacher_payload["email"], "password": "secret123", "confirmPassword": "secret123",
    })
    assert again.status_code == 409
    assert again.json()["needsLogin"] is True

    login = client.post("/api/auth/login", json={"identifier": credentials["username"], "password": "secret123"})
    assert login.status_code == 200


def test_temporary_code_is_not_a_password(client, db, admin_headers, teacher_payload):
    created = client.post("/api/teachers", json=teacher_payload, headers=admin_headers).json()
    code = created["loginCredentials"]["temporaryPassword"]

    response = client.post("/api/auth/login", json={"identifier": teacher_payload["email"], "password": code})

    assert response.status_code == 403
    assert response.json()["needsSetup"] is True
    assert db.get_user_by_email(teacher_payload["email"])["password"] == ""


def test_check_email_unknown_and_unowned(client, make_member):
    make_member("student", "orphan@school.org", addedBy=None)

    assert client.post("/api/auth/check-email", json={"email": "nobody@school.org"}).status_code == 404
    assert client.post("/api/auth/check-email", json={"email": "orphan@school.org"}).status_code == 403


def test_complete_registration_requires_owner(client, make_member):
    make_member("student", "orphan@school.org", password="", addedBy=None)

    response = client.post("/api/auth/complete-registration", json={
        "email": "orphan@school.org", "password": "secret123", "confirmPassword": "secret123",
    })

    assert response.status_code == 403


# ==================== GATES ====================

def test_verify_requires_token(client):
    response = client.get("/api/auth/verify")
    assert response.status_code == 401
    assert response.json()["success"] is False


def test_verify_accepts_header_or_cookie(client, admin, auth_headers):
    headers = auth_headers(admin)

    via_header = client.get("/api/auth/verify", headers=headers)
    assert via_header.status_code == 200
    assert via_header.json()["data"]["user"]["id"] == admin["id"]
    assert via_header.json()["data"]["valid"] is True

    client.cookies.set("token", headers["Authorization"].split(" ", 1)[1])
    via_cookie = client.get("/api/auth/verify")
    assert via_cookie.status_code == 200


def test_expired_session_token(client, admin, settings):
    token = create_access_token({"userId": admin["id"]}, settings.secret_key, timedelta(minutes=-1))

    response = client.get("/api/auth/verify", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
    assert response.json()["error"] == "Token has expired"


def test_token_for_deleted_user(client, db, admin, auth_headers):
    headers = auth_headers(admin)
    db.delete_user(admin["id"])

    assert client.get("/api/auth/verify", headers=headers).status_code == 401


def test_unowned_member_is_forbidden_everywhere(client, make_member, auth_headers):
    headers = auth_headers(make_member("teacher", "rogue@school.org", addedBy=None))

    assert client.get("/api/auth/profile", headers=headers).status_code == 403
    assert client.get("/api/student-performance/class", headers=headers).status_code == 403
    assert client.get("/api/teacher-performance/rogue@school.org", headers=headers).status_code == 403


def test_deactivated_user_at_each_gate(client, make_member, auth_headers):
    headers = auth_headers(make_member("teacher", "gone@school.org", isActive=False))

    assert client.get("/api/auth/profile", headers=headers).status_code == 401
    assert client.get("/api/student-performance/class", headers=headers).status_code == 403
    assert client.get("/api/auth/verify", headers=headers).status_code == 403


def test_role_gate_requires_finished_registration(client, make_member, auth_headers):
    headers = auth_headers(make_member("teacher", "new@school.org", password=""))

    response = client.get("/api/student-performance/class", headers=headers)

    assert response.status_code == 403


def test_role_gate_rejects_other_roles(client, make_member, auth_headers):
    headers = auth_headers(make_member("parent", "mum@home.org"))

    assert client.get("/api/student-performance/class", headers=headers).status_code == 403
    assert client.get("/api/teachers", headers=headers).status_code == 403


# ==================== PASSWORD RESET ====================

def test_forgot_and_reset_password(client, db, admin):
    forgot = client.post("/api/auth/forgot-password", json={"email": "admin@school.org"})
    assert forgot.status_code == 200
    token = forgot.json()["resetToken"]
    assert token in forgot.json()["resetLink"]

    reset = client.post("/api/auth/reset-password", json={
        "token": token, "password": "brandnew", "confirmPassword": "brandnew",
    })
    assert reset.status_code == 200

    stored = db.get_user(admin["id"])
    assert stored["resetPasswordToken"] is None
    assert verify_password("brandnew", stored["password"])

    reused = client.post("/api/auth/reset-password", json={
        "token": token, "password": "another1", "confirmPassword": "another1",
    })
    assert reused.status_code == 400


def test_forgot_password_for_unknown_email(client):
    response = client.post("/api/auth/forgot-password", json={"email": "nobody@school.org"})

    assert response.status_code == 200
    assert "resetToken" not in response.json()


def test_expired_reset_token_is_rejected(client, db, admin, settings):
    token = create_access_token(
        {"userId": admin["id"], "type": "password_reset"},
        settings.secret_key,
        timedelta(minutes=-1),
    )
    db.update_user(
        admin["id"],
        resetPasswordToken=token,
        resetPasswordExpires=(datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat(),
    )

    response = client.post("/api/auth/reset-password", json={
        "token": token, "password": "brandnew", "confirmPassword": "brandnew",
    })

    assert response.status_code == 400
    assert "expired" in response.json()["error"]
    assert verify_password("adminpass", db.get_user(admin["id"])["password"])


def test_reset_token_past_stored_expiry_is_rejected(client, db, admin, settings):
    token = create_access_token(
        {"userId": admin["id"], "type": "password_reset"},
        settings.secret_key,
        timedelta(hours=1),
    )
    db.update_user(
        admin["id"],
        resetPasswordToken=token,
        resetPasswordExpires=(datetime.now(timezone.utc) - timedelta(seconds=1)).isoformat(),
    )

    response = client.post("/api/auth/reset-password", json={
        "token": token, "password": "brandnew", "confirmPassword": "brandnew",
    })

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid or expired reset token"
    assert verify_password("adminpass", db.get_user(admin["id"])["password"])
    assert db.get_user(admin["id"])["resetPasswordToken"] == token


def test_session_token_cannot_reset_password(client, admin, auth_headers):
    token = auth_headers(admin)["Authorization"].split(" ", 1)[1]

    response = client.post("/api/auth/reset-password", json={
        "token": token, "password": "brandnew", "confirmPassword": "brandnew",
    })

    assert response.status_code == 400


# ==================== PROFILE ====================

def test_profile_read_and_update(client, admin_headers):
    profile = client.get("/api/auth/profile", headers=admin_headers)
    assert profile.status_code == 200
    assert "password" not in profile.json()["data"]

    updated = client.put("/api/auth/profile", json={"name": "Chief Admin", "phone": "5550001111"},
                         headers=admin_headers)
    assert updated.status_code == 200
    assert updated.json()["data"]["name"] == "Chief Admin"


def test_change_password(client, admin_headers):
    wrong = client.post("/api/auth/change-password", json={
        "currentPassword": "nope", "newPassword": "newsecret",
    }, headers=admin_headers)
    assert wrong.status_code == 401

    ok = client.post("/api/auth/change-password", json={
        "currentPassword": "adminpass", "newPassword": "newsecret",
    }, headers=admin_headers)
    assert ok.status_code == 200

    login = client.post("/api/auth/login", json={"identifier": "admin", "password": "newsecret"})
    assert login.status_code == 200


def test_logout(client, admin_headers):
    response = client.post("/api/auth/logout", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["success"] is True


# ==================== SERVICE ====================

def test_health_and_stats(client, admin_headers, make_member, auth_headers):
    assert client.get("/api/health").json()["status"] == "ok"

    stats = client.get("/api/stats", headers=admin_headers)
    assert stats.status_code == 200
    assert stats.json()["data"]["total_users"] == 1

    teacher_headers = auth_headers(make_member("teacher", "mr.lee@school.org"))
    assert client.get("/api/stats", headers=teacher_headers).status_code == 403
