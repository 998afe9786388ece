from datetime import datetime, timezone

import pytest
import requests

from services import auth as auth_service
from services.auth import AuthError, IdentityClient, friendly_auth_error
from services.logs import log_action
from services.rate_limit import check_login_rate_limit

NOW = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)


class FakeResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body
        self.content = b"{}" if body is not None else b""

    def json(self):
        return self._body


class FakeHttp:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def post(self, url, params=None, json=None, timeout=None):
        self.calls.append((url, params, json))
        if self.error:
            raise self.error
        return self.response


def test_rate_limit_blocks_after_limit(db):
    results = [check_login_rate_limit(db, "10.0.0.1", limit_per_min=3, now=NOW) for _ in range(4)]

    assert [r["allowed"] for r in results] == [True, True, True, False]
    assert results[-1]["count"] == 4
    assert db.docs("rate_limits")["login:10.0.0.1:202405011230"]["count"] == 4


def test_rate_limit_is_per_minute_and_ip(db):
    for _ in range(3):
        check_login_rate_limit(db, "10.0.0.1", limit_per_min=3, now=NOW)

    assert check_login_rate_limit(db, "10.0.0.2", limit_per_min=3, now=NOW)["allowed"] is True
    later = NOW.replace(minute=31)
    assert check_login_rate_limit(db, "10.0.0.1", limit_per_min=3, now=later)["allowed"] is True


def test_log_action(db):
    log_action(db, None, "export", {"rows": 3})

    (entry,) = db.docs("action_logs").values()
    assert entry["session_id"] == "anonymous"
    assert entry["event_type"] == "export"
    assert entry["payload"] == {"rows": 3}
    assert entry["ts"].endswith("Z")


def test_log_action_never_raises():
    class Broken:
        def collection(self, name):
            raise RuntimeError("offline")

    log_action(Broken(), "uid", "login", {})


def test_sign_in_builds_session():
    http = FakeHttp(FakeResponse(200, {
        "localId": "uid-1",
        "email": "ops@example.com",
        "displayName": "",
        "idToken": "tok",
        "refreshToken": "ref",
        "expiresIn": "3600",
    }))
    client = IdentityClient("key", "project", http=http)

    signed_in = client.sign_in("ops@example.com", "secret123")

    assert signed_in["user"].id == "uid-1"
    assert signed_in["user"].display_name == "ops@example.com"
    assert signed_in["id_token"] == "tok"
    assert signed_in["expires_in"] == 3600
    url, params, payload = http.calls[0]
    assert url.endswith("accounts:signInWithPassword")
    assert params == {"key": "key"}
    assert payload["returnSecureToken"] is True


def test_provider_errors_become_friendly_messages():
    http = FakeHttp(FakeResponse(400, {"error": {"message": "WEAK_PASSWORD : Password should be at least 6 characters"}}))
    client = IdentityClient("key", "project", http=http)

    with pytest.raises(AuthError) as exc:
        client.sign_up("new@example.com", "123")
    assert exc.value.code == "WEAK_PASSWORD"
    assert exc.value.message == "Password should be at least 6 characters."


def test_unknown_provider_error_keeps_raw_message():
    http = FakeHttp(FakeResponse(400, {"error": {"message": "OPERATION_NOT_ALLOWED"}}))
    with pytest.raises(AuthError) as exc:
        IdentityClient("key", "project", http=http).sign_in("a@example.com", "pw")
    assert exc.value.message == "OPERATION_NOT_ALLOWED"


def test_network_failure():
    http = FakeHttp(error=requests.ConnectionError("down"))
    with pytest.raises(AuthError) as exc:
        IdentityClient("key", "project", http=http).sign_in("a@example.com", "pw")
    assert exc.value.code == "NETWORK_ERROR"


def test_missing_credentials_skip_the_provider():
    http = FakeHttp()
    with pytest.raises(AuthError) as exc:
        IdentityClient("key", "project", http=http).sign_in("a@example.com", "")
    assert exc.value.message == "Please provide both email and password"
    assert http.calls == []


def test_missing_api_key():
    with pytest.raises(RuntimeError):
        IdentityClient("", "project", http=FakeHttp()).sign_in("a@example.com", "pw")


def test_verify_id_token(monkeypatch):
    def fake_verify(token, request, audience=None):
        if token != "good":
            raise ValueError("bad signature")
        return {"sub": "uid-9", "email": "api@example.com", "name": "API"}

    monkeypatch.setattr(auth_service.google_id_token, "verify_firebase_token", fake_verify)
    client = IdentityClient("key", "project", http=FakeHttp())

    user = client.verify_id_token("good")
    assert user.id == "uid-9"
    assert user.display_name == "API"

    with pytest.raises(AuthError) as exc:
        client.verify_id_token("forged")
    assert exc.value.code == "INVALID_ID_TOKEN"


def test_friendly_auth_error_fallback():
    assert friendly_auth_error("EMAIL_EXISTS") == "Email is already in use by another account."
    assert friendly_auth_error("SOMETHING") == "An unknown error occurred."
