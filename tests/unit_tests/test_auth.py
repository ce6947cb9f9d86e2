"""Tests for the /api/auth endpoints."""

from app.config import FLOW_COOKIE_NAME
from tests.mocks.models import MOCK_CODE, MOCK_EMAIL, MOCK_SESSION

REGISTRATION = {
    "name": "Test User",
    "email": MOCK_EMAIL,
    "password": "secret1",
    "confirm_password": "secret1",
}


def _register(client, **overrides):
    return client.post("/api/auth/register", json={**REGISTRATION, **overrides})


class TestRegister:
    def test_register_starts_verification(self, client):
        resp = _register(client)
        assert resp.status_code == 200
        data = resp.json()
        assert data["next_step"] == "verify_code"
        assert data["flow_kind"] == "registration"
        assert MOCK_EMAIL in data["message"]
        assert FLOW_COOKIE_NAME in resp.cookies

    def test_register_password_mismatch(self, client):
        resp = _register(client, confirm_password="other1")
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Passwords do not match"

    def test_register_invalid_email(self, client):
        resp = _register(client, email="not-an-email")
        assert resp.status_code == 422

    def test_register_remote_rate_limit(self, client, auth_factory):
        auth_factory.errors["initiate_registration"] = "Email rate limit exceeded"
        resp = _register(client)
        assert resp.status_code == 429

    def test_register_remote_rejection(self, client, auth_factory):
        auth_factory.errors["initiate_registration"] = "User already registered"
        resp = _register(client)
        assert resp.status_code == 400
        assert "User already registered" in resp.json()["detail"]

    def test_register_without_confirmation_signs_in(self, client, auth_factory):
        auth_factory.signup_session = MOCK_SESSION
        resp = _register(client)
        assert resp.json()["next_step"] == "home"
        assert "session" in resp.cookies

    def test_register_session_lookup_failure(self, client, auth_factory):
        auth_factory.signup_session = MOCK_SESSION
        auth_factory.session_error = "Connection reset by peer"
        resp = _register(client)
        assert resp.status_code == 502
        assert "Registration Error" in resp.json()["detail"]
        assert "session" not in resp.cookies


class TestVerificationScreen:
    def test_no_flow_cookie(self, client):
        resp = client.get("/api/auth/verification")
        assert resp.status_code == 409
        assert resp.json()["detail"]["redirect_to"] == "/login"

    def test_unknown_flow(self, client):
        client.cookies.set(FLOW_COOKIE_NAME, "stale-flow")
        resp = client.get("/api/auth/verification")
        assert resp.status_code == 409

    def test_loads_pending_verification(self, client):
        _register(client)
        resp = client.get("/api/auth/verification")
        assert resp.status_code == 200
        data = resp.json()
        assert data["email"] == MOCK_EMAIL
        assert data["flow_kind"] == "registration"
        assert data["resend_available"] is True

    def test_verify_success_signs_in(self, client, auth_factory):
        _register(client)
        resp = client.post("/api/auth/verification/verify", json={"code": MOCK_CODE})
        assert resp.status_code == 200
        data = resp.json()
        assert data["kind"] == "success"
        assert data["next_step"] == "home"
        assert "session" in resp.cookies

        me = client.get("/api/auth/me")
        assert me.status_code == 200
        assert me.json()["email"] == MOCK_EMAIL

        calls = auth_factory.last.calls_to("verify_code")
        assert calls[0][2].value == "signup"

    def test_verify_twice_requires_new_flow(self, client):
        _register(client)
        client.post("/api/auth/verification/verify", json={"code": MOCK_CODE})
        resp = client.post("/api/auth/verification/verify", json={"code": MOCK_CODE})
        assert resp.status_code == 409

    def test_verify_bad_format(self, client, auth_factory):
        _register(client)
        resp = client.post("/api/auth/verification/verify", json={"code": "12ab56"})
        assert resp.status_code == 400
        assert resp.json()["detail"]["kind"] == "invalid_code"
        assert auth_factory.last.calls_to("verify_code") == []

    def test_verify_expired(self, client, auth_factory):
        _register(client)
        auth_factory.last.errors["verify_code"] = "Token has expired or is invalid"
        resp = client.post("/api/auth/verification/verify", json={"code": "000000"})
        assert resp.status_code == 400
        assert resp.json()["detail"]["kind"] == "expired_code"

        # Pending record survives the failure
        assert client.get("/api/auth/verification").status_code == 200

    def test_verify_unknown_remote_error(self, client, auth_factory):
        _register(client)
        auth_factory.last.errors["verify_code"] = "upstream timeout"
        resp = client.post("/api/auth/verification/verify", json={"code": MOCK_CODE})
        assert resp.status_code == 502
        assert resp.json()["detail"]["message"] == "upstream timeout"

    def test_resend_then_cooldown(self, client, auth_factory):
        _register(client)
        resp = client.post("/api/auth/verification/resend")
        assert resp.status_code == 200
        assert resp.json()["wait_seconds"] == 30

        again = client.post("/api/auth/verification/resend")
        assert again.status_code == 429
        assert int(again.headers["Retry-After"]) > 0
        assert len(auth_factory.last.calls_to("resend_registration_code")) == 1

        pending = client.get("/api/auth/verification").json()
        assert pending["resend_available"] is False

    def test_resend_user_not_found(self, client, auth_factory):
        _register(client)
        auth_factory.last.errors["resend_registration_code"] = "User not found"
        resp = client.post("/api/auth/verification/resend")
        assert resp.status_code == 404
        assert resp.json()["detail"]["next_step"] == "register"

    def test_resend_remote_rate_limit(self, client, auth_factory):
        _register(client)
        auth_factory.last.errors["resend_registration_code"] = "Too many requests"
        resp = client.post("/api/auth/verification/resend")
        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "300"

    def test_abandon(self, client):
        _register(client)
        resp = client.delete("/api/auth/verification")
        assert resp.status_code == 200
        assert client.get("/api/auth/verification").status_code == 409


class TestRecovery:
    def test_forgot_verify_reset(self, client, auth_factory):
        resp = client.post("/api/auth/forgot-password", json={"email": MOCK_EMAIL})
        assert resp.status_code == 200
        assert resp.json()["flow_kind"] == "recovery"

        verified = client.post("/api/auth/verification/verify", json={"code": MOCK_CODE})
        assert verified.status_code == 200
        assert verified.json()["next_step"] == "reset_password"

        reset = client.post(
            "/api/auth/reset-password",
            json={"password": "newpass1", "confirm_password": "newpass1"},
        )
        assert reset.status_code == 200
        assert "successfully updated" in reset.json()["message"]

        auth = auth_factory.created[0]
        assert auth.calls_to("verify_code")[0][2].value == "recovery"
        assert auth.calls_to("update_password") == [("newpass1",)]

    def test_resend_reruns_recovery(self, client, auth_factory):
        client.post("/api/auth/forgot-password", json={"email": MOCK_EMAIL})
        resp = client.post("/api/auth/verification/resend")
        assert resp.status_code == 200
        assert len(auth_factory.last.calls_to("initiate_recovery")) == 2

    def test_reset_without_session(self, client):
        client.post("/api/auth/forgot-password", json={"email": MOCK_EMAIL})
        resp = client.post(
            "/api/auth/reset-password",
            json={"password": "newpass1", "confirm_password": "newpass1"},
        )
        assert resp.status_code == 401
        assert resp.json()["detail"]["redirect_to"] == "/login"

    def test_reset_password_mismatch(self, client):
        client.post("/api/auth/forgot-password", json={"email": MOCK_EMAIL})
        resp = client.post(
            "/api/auth/reset-password",
            json={"password": "newpass1", "confirm_password": "newpass2"},
        )
        assert resp.status_code == 400


class TestSession:
    def test_login_me_logout(self, client):
        resp = client.post("/api/auth/login", json={"email": MOCK_EMAIL, "password": "secret1"})
        assert resp.status_code == 200
        assert resp.json()["user"]["email"] == MOCK_EMAIL

        assert client.get("/api/auth/me").status_code == 200

        out = client.post("/api/auth/logout")
        assert out.status_code == 200
        client.cookies.clear()
        assert client.get("/api/auth/me").status_code == 401

    def test_login_rejected(self, client, auth_factory):
        auth_factory.errors["sign_in_with_password"] = "Invalid login credentials"
        resp = client.post("/api/auth/login", json={"email": MOCK_EMAIL, "password": "wrong"})
        assert resp.status_code == 400

    def test_me_requires_session(self, client):
        assert client.get("/api/auth/me").status_code == 401

    def test_me_rejects_garbage_cookie(self, client):
        client.cookies.set("session", "not-a-jwt")
        resp = client.get("/api/auth/me")
        assert resp.status_code == 401
        assert "Invalid session" in resp.json()["detail"]
