"""
API tests for the auth flows that drive the OTP engine: registration,
resend, two-factor login, password reset and change.
"""
from app.core.dependencies import otp_policy
from app.core.security import otp_hasher
from app.models.otp import OTPChannel, OTPPurpose
from app.models.user import User
from app.services.otp_service import OTPService
from app.services.otp_store import SQLAlchemyOTPStore

PASSWORD = "s3cure-pass"


def register(client, email="grace@example.com", **extra):
    body = {"name": "Grace Hopper", "email": email, "password": PASSWORD, **extra}
    return client.post("/auth/register", json=body)


def register_and_verify(client, dispatcher, email="grace@example.com"):
    assert register(client, email).status_code == 201
    response = client.post(
        "/auth/verify-register", json={"email": email, "otp": dispatcher.last_code()}
    )
    assert response.status_code == 200
    return response.json()


def auth_header(tokens):
    return {"Authorization": f"Bearer {tokens['access_token']}"}


def wrong(code: str) -> str:
    return str((int(code[0]) + 1) % 10) + code[1:]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


# ── Registration ──────────────────────────────────────────────────────────────

def test_register_sends_code_by_email(client, dispatcher):
    response = register(client)

    assert response.status_code == 201
    [sent] = dispatcher.sent
    assert sent["channel"] == OTPChannel.EMAIL
    assert sent["destination"] == "grace@example.com"
    assert len(sent["code"]) == 6 and sent["code"].isdigit()
    assert sent["context"]["purpose"] == OTPPurpose.REGISTER
    assert sent["context"]["name"] == "Grace Hopper"
    assert sent["context"]["expiry_minutes"] == 15


def test_verify_register_returns_tokens_and_marks_verified(client, dispatcher):
    body = register_and_verify(client, dispatcher)

    assert body["access_token"]
    assert body["refresh_token"]
    assert body["user"]["email"] == "grace@example.com"
    assert body["user"]["is_verified"] is True

    me = client.get("/users/me", headers=auth_header(body))
    assert me.status_code == 200
    assert me.json()["verified_at"] is not None


def test_verify_register_with_wrong_code_reports_attempt(client, dispatcher):
    register(client)
    code = dispatcher.last_code()

    response = client.post("/auth/verify-register", json={"email": "grace@example.com", "otp": wrong(code)})

    assert response.status_code == 400
    body = response.json()
    assert body["reason"] == "INVALID_OTP"
    assert body["attempt"] == 1
    assert body["max_attempts"] == 3
    assert "attempt 1/3" in body["detail"]


def test_verify_register_blocks_after_budget_is_spent(client, dispatcher):
    register(client)
    code = dispatcher.last_code()
    for _ in range(3):
        client.post("/auth/verify-register", json={"email": "grace@example.com", "otp": wrong(code)})

    response = client.post("/auth/verify-register", json={"email": "grace@example.com", "otp": code})
    assert response.status_code == 400
    assert response.json()["reason"] == "MAX_RETRY_EXCEEDED"

    response = client.post("/auth/verify-register", json={"email": "grace@example.com", "otp": code})
    assert response.json()["reason"] == "NO_PENDING_OTP"


def test_verify_register_rejects_malformed_code(client, dispatcher):
    register(client)
    response = client.post("/auth/verify-register", json={"email": "grace@example.com", "otp": "12ab56"})
    assert response.status_code == 422


def test_verify_register_unknown_user(client):
    response = client.post("/auth/verify-register", json={"email": "nobody@example.com", "otp": "123456"})
    assert response.status_code == 404


def test_verify_register_twice_is_rejected(client, dispatcher):
    register_and_verify(client, dispatcher)
    response = client.post(
        "/auth/verify-register", json={"email": "grace@example.com", "otp": dispatcher.last_code()}
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "User already verified"


def test_register_conflicts(client, dispatcher):
    register(client)
    response = register(client)
    assert response.status_code == 409
    assert "not verified" in response.json()["detail"]

    client.post("/auth/verify-register", json={"email": "grace@example.com", "otp": dispatcher.last_code()})
    response = register(client)
    assert response.status_code == 409
    assert response.json()["detail"] == "Email already in use."


def test_register_over_sms_requires_phone(client, dispatcher):
    response = register(client, channel="sms")
    assert response.status_code == 400
    assert dispatcher.sent == []


def test_register_over_sms_delivers_to_phone(client, dispatcher):
    response = register(client, channel="sms", phone="+15550001111")
    assert response.status_code == 201
    [sent] = dispatcher.sent
    assert sent["channel"] == OTPChannel.SMS
    assert sent["destination"] == "+15550001111"

    response = client.post(
        "/auth/verify-register",
        json={"email": "grace@example.com", "otp": sent["code"], "channel": "sms"},
    )
    assert response.status_code == 200


# ── Resend ────────────────────────────────────────────────────────────────────

def test_resend_inside_cooldown_is_throttled(client, dispatcher):
    register(client)

    response = client.post("/auth/send-otp", json={"email": "grace@example.com", "purpose": "register"})

    assert response.status_code == 429
    body = response.json()
    assert body["reason"] == "RESEND_TOO_SOON"
    assert 0 < body["wait_seconds"] <= 60
    assert response.headers["Retry-After"] == str(body["wait_seconds"])
    assert len(dispatcher.sent) == 1


def test_resend_on_another_channel_is_independent(client, dispatcher):
    register(client, phone="+15550001111")

    response = client.post(
        "/auth/send-otp",
        json={"email": "grace@example.com", "purpose": "register", "channel": "whatsapp"},
    )

    assert response.status_code == 200
    assert dispatcher.sent[-1]["channel"] == OTPChannel.WHATSAPP


def test_resend_for_unknown_email_looks_successful(client, dispatcher):
    response = client.post("/auth/send-otp", json={"email": "nobody@example.com", "purpose": "register"})
    assert response.status_code == 200
    assert dispatcher.sent == []


def test_resend_rejects_unknown_purpose(client):
    response = client.post("/auth/send-otp", json={"email": "grace@example.com", "purpose": "bogus"})
    assert response.status_code == 422


def test_resend_register_for_verified_account_looks_successful(client, dispatcher):
    register_and_verify(client, dispatcher)
    sent_before = len(dispatcher.sent)

    response = client.post("/auth/send-otp", json={"email": "grace@example.com", "purpose": "register"})

    assert response.status_code == 200
    assert len(dispatcher.sent) == sent_before


def test_resend_cannot_issue_two_factor_codes(client, dispatcher):
    register_and_verify(client, dispatcher)
    sent_before = len(dispatcher.sent)

    response = client.post(
        "/auth/send-otp", json={"email": "grace@example.com", "purpose": "two_factor_auth"}
    )

    assert response.status_code == 422
    assert len(dispatcher.sent) == sent_before


# ── Login ─────────────────────────────────────────────────────────────────────

def test_login_requires_verified_account(client, dispatcher):
    register(client)
    response = client.post("/auth/login", json={"email": "grace@example.com", "password": PASSWORD})
    assert response.status_code == 403


def test_login_with_wrong_password(client, dispatcher):
    register_and_verify(client, dispatcher)
    response = client.post("/auth/login", json={"email": "grace@example.com", "password": "wrong-pass"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid email or password"


def test_login_without_two_factor_returns_tokens(client, dispatcher):
    register_and_verify(client, dispatcher)
    response = client.post("/auth/login", json={"email": "grace@example.com", "password": PASSWORD})

    assert response.status_code == 200
    body = response.json()
    assert body["otp_required"] is False
    assert body["access_token"]
    assert body["user"]["email"] == "grace@example.com"


def test_two_factor_login(client, dispatcher):
    tokens = register_and_verify(client, dispatcher)
    response = client.put("/users/me", json={"two_factor_enabled": True}, headers=auth_header(tokens))
    assert response.status_code == 200
    assert response.json()["two_factor_enabled"] is True

    response = client.post("/auth/login", json={"email": "grace@example.com", "password": PASSWORD})
    assert response.status_code == 200
    body = response.json()
    assert body["otp_required"] is True
    assert body["access_token"] is None
    assert dispatcher.sent[-1]["context"]["purpose"] == OTPPurpose.TWO_FACTOR_AUTH

    response = client.post(
        "/auth/login/verify", json={"user_id": body["user_id"], "otp": dispatcher.last_code()}
    )
    assert response.status_code == 200
    assert response.json()["access_token"]


def test_two_factor_login_rejects_register_code(client, dispatcher):
    tokens = register_and_verify(client, dispatcher)
    register_code = dispatcher.last_code()
    client.put("/users/me", json={"two_factor_enabled": True}, headers=auth_header(tokens))
    body = client.post("/auth/login", json={"email": "grace@example.com", "password": PASSWORD}).json()

    two_factor_code = dispatcher.last_code()
    guess = register_code if register_code != two_factor_code else wrong(two_factor_code)
    response = client.post("/auth/login/verify", json={"user_id": body["user_id"], "otp": guess})
    assert response.status_code == 400
    assert response.json()["reason"] == "INVALID_OTP"


def test_login_verify_requires_two_factor_account(client, dispatcher, session_factory):
    tokens = register_and_verify(client, dispatcher)
    user_id = tokens["user"]["id"]

    # Even a correct code is refused when the account never asked for two-factor login.
    with session_factory() as session:
        user = session.query(User).filter(User.email == "grace@example.com").one()
        code = OTPService(
            SQLAlchemyOTPStore(session), otp_policy, otp_hasher
        ).generate_otp(user.id, OTPPurpose.TWO_FACTOR_AUTH, OTPChannel.EMAIL)

    response = client.post("/auth/login/verify", json={"user_id": user_id, "otp": code})
    assert response.status_code == 401


def test_login_verify_rejects_unverified_account(client, dispatcher, session_factory):
    register(client)
    with session_factory() as session:
        user = session.query(User).filter(User.email == "grace@example.com").one()
        user.two_factor_enabled = True
        session.commit()
        user_id = str(user.id)
        code = OTPService(
            SQLAlchemyOTPStore(session), otp_policy, otp_hasher
        ).generate_otp(user.id, OTPPurpose.TWO_FACTOR_AUTH, OTPChannel.EMAIL)

    response = client.post("/auth/login/verify", json={"user_id": user_id, "otp": code})
    assert response.status_code == 401


def test_login_verify_unknown_user(client):
    response = client.post(
        "/auth/login/verify",
        json={"user_id": "00000000-0000-0000-0000-000000000000", "otp": "123456"},
    )
    assert response.status_code == 401


def test_refresh_rotates_tokens(client, dispatcher):
    tokens = register_and_verify(client, dispatcher)

    response = client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert response.status_code == 200
    assert response.json()["access_token"]

    response = client.post("/auth/refresh", json={"refresh_token": tokens["access_token"]})
    assert response.status_code == 401


def test_users_me_requires_token(client):
    assert client.get("/users/me").status_code == 401


# ── Password reset / change ───────────────────────────────────────────────────

def test_password_reset_flow(client, dispatcher):
    register_and_verify(client, dispatcher)

    response = client.post("/auth/forgot-password", json={"email": "grace@example.com"})
    assert response.status_code == 200
    assert dispatcher.sent[-1]["context"]["purpose"] == OTPPurpose.RESET_PASSWORD

    response = client.post(
        "/auth/reset-password",
        json={
            "email": "grace@example.com",
            "otp": dispatcher.last_code(),
            "new_password": "brand-new-pass",
            "confirm_password": "brand-new-pass",
        },
    )
    assert response.status_code == 200

    response = client.post("/auth/login", json={"email": "grace@example.com", "password": "brand-new-pass"})
    assert response.status_code == 200


def test_forgot_password_for_unknown_email_looks_successful(client, dispatcher):
    response = client.post("/auth/forgot-password", json={"email": "nobody@example.com"})
    assert response.status_code == 200
    assert dispatcher.sent == []


def test_reset_password_for_unknown_email(client):
    response = client.post(
        "/auth/reset-password",
        json={
            "email": "nobody@example.com",
            "otp": "123456",
            "new_password": "brand-new-pass",
            "confirm_password": "brand-new-pass",
        },
    )
    assert response.status_code == 400
    assert response.json()["reason"] == "NO_PENDING_OTP"


def test_reset_password_mismatched_confirmation(client):
    response = client.post(
        "/auth/reset-password",
        json={
            "email": "grace@example.com",
            "otp": "123456",
            "new_password": "brand-new-pass",
            "confirm_password": "different-pass",
        },
    )
    assert response.status_code == 422


def test_change_password(client, dispatcher):
    tokens = register_and_verify(client, dispatcher)

    response = client.patch(
        "/auth/change-password",
        json={"current_password": "not-it-at-all", "new_password": "another-pass"},
        headers=auth_header(tokens),
    )
    assert response.status_code == 400

    response = client.patch(
        "/auth/change-password",
        json={"current_password": PASSWORD, "new_password": "another-pass"},
        headers=auth_header(tokens),
    )
    assert response.status_code == 200

    response = client.post("/auth/login", json={"email": "grace@example.com", "password": "another-pass"})
    assert response.status_code == 200


# ── Profile / roles ───────────────────────────────────────────────────────────

def test_register_rejects_malformed_phone(client, dispatcher):
    response = register(client, phone="call me maybe")
    assert response.status_code == 422
    assert dispatcher.sent == []


def test_empty_phone_clears_the_number(client, dispatcher):
    assert register(client, phone="+15550001111").status_code == 201
    tokens = client.post(
        "/auth/verify-register", json={"email": "grace@example.com", "otp": dispatcher.last_code()}
    ).json()

    response = client.put("/users/me", json={"phone": ""}, headers=auth_header(tokens))
    assert response.status_code == 200
    assert response.json()["phone"] is None

    response = client.put("/users/me", json={"phone": "12ab"}, headers=auth_header(tokens))
    assert response.status_code == 422


def test_admin_only_route_requires_admin_role(client, dispatcher, session_factory):
    tokens = register_and_verify(client, dispatcher)

    assert client.get("/auth/admin-only").status_code == 401
    assert client.get("/auth/admin-only", headers=auth_header(tokens)).status_code == 403

    with session_factory() as session:
        user = session.query(User).filter(User.email == "grace@example.com").one()
        user.role = "admin"
        session.commit()

    response = client.get("/auth/admin-only", headers=auth_header(tokens))
    assert response.status_code == 200
    assert response.json()["message"] == "This is an admin-only endpoint!"
