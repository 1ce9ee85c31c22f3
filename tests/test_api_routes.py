"""
tests/test_api_routes.py -- Integration tests for the AppGate HTTP API.

These tests exercise the full stack: FastAPI routing -> session middleware ->
principal resolution -> workflows -> UserStore -> response model
serialization. The notifier is the recording FakeNotifier, so approval and
reset emails can be inspected without SMTP.

Fixtures used (from conftest.py):
  - api_client: ApiHarness(client, services, notifier) with a seeded admin
    (ADMIN_EMAIL / ADMIN_PASSWORD); follow_redirects=False.
"""

from __future__ import annotations

import asyncio
import base64
import json
from unittest.mock import patch

import auth.approval
from api.limiter import limiter
from conftest import ADMIN_EMAIL, ADMIN_PASSWORD, ApiHarness, login, make_user


def _register_and_approve(api: ApiHarness, email: str, apps: list[str]) -> tuple[int, str]:
    """Register through the API, approve as admin, return (user_id, temporary_password)."""
    resp = api.client.post("/api/v1/auth/register", json={"email": email, "password": "initial-pw"})
    assert resp.status_code == 201, resp.text
    user_id = resp.json()["user"]["id"]

    admin = api.new_client()
    assert login(admin, ADMIN_EMAIL, ADMIN_PASSWORD).status_code == 200
    resp = admin.post(f"/api/v1/admin/users/{user_id}/approve", json={"allowed_apps": apps})
    assert resp.status_code == 200, resp.text
    return user_id, api.notifier.of_kind("approval")[-1][2]


def _decode_forwarded(header: str) -> dict:
    padded = header + "=" * (-len(header) % 4)
    return json.loads(base64.urlsafe_b64decode(padded))


def _thread_kind() -> str:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return "worker-thread"
    return "event-loop"


class TestHealth:
    def test_health(self, api_client: ApiHarness) -> None:
        resp = api_client.client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"


class TestApiAuthFailure:
    """Unauthenticated requests to protected API routes must return 401."""

    def test_protected_routes_require_session(self, api_client: ApiHarness) -> None:
        client = api_client.client
        for method, path in [
            ("GET", "/api/v1/profile"),
            ("GET", "/api/v1/apps"),
            ("GET", "/api/v1/apps/dart"),
            ("GET", "/api/v1/admin/users"),
        ]:
            resp = client.request(method, path)
            assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"
            assert resp.json()["error"]["code"] == "unauthorized"

    def test_session_when_signed_out(self, api_client: ApiHarness) -> None:
        resp = api_client.client.get("/api/v1/auth/session")
        assert resp.status_code == 401
        assert resp.json() == {"authenticated": False}

    def test_admin_routes_forbid_members(self, api_client: ApiHarness) -> None:
        make_user(api_client.services.store, "member@example.com", "MemberPass1!")
        assert login(api_client.client, "member@example.com", "MemberPass1!").status_code == 200
        resp = api_client.client.get("/api/v1/admin/users")
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"


class TestRegistrationAndLogin:
    def test_register_notifies_and_stays_signed_out(self, api_client: ApiHarness) -> None:
        resp = api_client.client.post(
            "/api/v1/auth/register",
            json={"email": "New@Example.com", "password": "pw1", "confirm_password": "pw1"},
        )
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["user"]["email"] == "new@example.com"
        assert body["user"]["approved"] is False
        assert "password_hash" not in body["user"]
        assert len(api_client.notifier.of_kind("pending")) == 1
        assert api_client.client.get("/api/v1/auth/session").status_code == 401

    def test_duplicate_registration(self, api_client: ApiHarness) -> None:
        client = api_client.client
        client.post("/api/v1/auth/register", json={"email": "dup@example.com", "password": "pw1"})
        resp = client.post("/api/v1/auth/register", json={"email": "DUP@example.com", "password": "pw2"})
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "account_exists"

    def test_register_validation(self, api_client: ApiHarness) -> None:
        client = api_client.client
        bad_email = client.post("/api/v1/auth/register", json={"email": "not-an-email", "password": "pw1"})
        mismatch = client.post(
            "/api/v1/auth/register",
            json={"email": "m@example.com", "password": "pw1", "confirm_password": "pw2"},
        )
        assert bad_email.status_code == 422
        assert mismatch.status_code == 422
        assert mismatch.json()["error"]["code"] == "validation_error"

    def test_pending_login_after_valid_password(self, api_client: ApiHarness) -> None:
        client = api_client.client
        client.post("/api/v1/auth/register", json={"email": "wait@example.com", "password": "pw1"})
        assert login(client, "wait@example.com", "pw1").json()["error"]["code"] == "pending_approval"
        assert login(client, "wait@example.com", "nope").json()["error"]["code"] == "invalid_credentials"

    def test_bad_credentials_are_generic(self, api_client: ApiHarness) -> None:
        unknown = login(api_client.client, "ghost@example.com", "whatever")
        wrong = login(api_client.client, ADMIN_EMAIL, "wrong-password")
        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json() == wrong.json()
        assert unknown.headers["Cache-Control"] == "no-store"

    def test_login_session_logout(self, api_client: ApiHarness) -> None:
        client = api_client.client
        resp = login(client, ADMIN_EMAIL.upper(), ADMIN_PASSWORD)
        assert resp.status_code == 200, resp.text
        assert resp.json()["authenticated"] is True
        assert resp.json()["user"]["is_admin"] is True

        session = client.get("/api/v1/auth/session")
        assert session.status_code == 200
        assert [a["slug"] for a in session.json()["apps"]] == ["dart", "skylens", "risk"]

        assert client.post("/api/v1/auth/logout").status_code == 200
        assert client.get("/api/v1/auth/session").status_code == 401


class TestApprovalFlow:
    def test_full_onboarding(self, api_client: ApiHarness) -> None:
        user_id, temporary_password = _register_and_approve(api_client, "u@x.com", ["dart"])
        assert len(temporary_password) >= 12

        client = api_client.client
        assert login(client, "u@x.com", "initial-pw").status_code == 401
        resp = login(client, "u@x.com", temporary_password)
        assert resp.status_code == 200, resp.text
        assert resp.json()["user"]["id"] == user_id
        assert resp.json()["user"]["allowed_apps"] == ["dart"]

    def test_approve_response_omits_temporary_password(self, api_client: ApiHarness) -> None:
        pending = api_client.services.auth.register("quiet@example.com", "pw")
        admin = api_client.client
        login(admin, ADMIN_EMAIL, ADMIN_PASSWORD)
        resp = admin.post(f"/api/v1/admin/users/{pending.id}/approve", json={"allowed_apps": ["risk"]})
        assert resp.status_code == 200
        assert resp.json()["notified"] is True
        assert set(resp.json()) == {"user", "notified"}
        assert resp.json()["user"]["approved"] is True

    def test_approve_reports_failed_notification(self, api_client: ApiHarness) -> None:
        pending = api_client.services.auth.register("nomail@example.com", "pw")
        api_client.notifier.result = False
        login(api_client.client, ADMIN_EMAIL, ADMIN_PASSWORD)
        resp = api_client.client.post(f"/api/v1/admin/users/{pending.id}/approve", json={"allowed_apps": []})
        assert resp.status_code == 200
        assert resp.json()["notified"] is False
        assert api_client.services.store.get_by_id(pending.id).approved is True

    def test_unknown_app_slug_rejected(self, api_client: ApiHarness) -> None:
        pending = api_client.services.auth.register("typo@example.com", "pw")
        login(api_client.client, ADMIN_EMAIL, ADMIN_PASSWORD)
        resp = api_client.client.post(
            f"/api/v1/admin/users/{pending.id}/approve",
            json={"allowed_apps": ["dart", "nonexistent"]},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "unknown_app"
        assert api_client.services.store.get_by_id(pending.id).approved is False

    def test_approve_missing_user(self, api_client: ApiHarness) -> None:
        login(api_client.client, ADMIN_EMAIL, ADMIN_PASSWORD)
        resp = api_client.client.post("/api/v1/admin/users/9999/approve", json={"allowed_apps": []})
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "user_not_found"


class TestAppsAndEntitlements:
    def test_member_sees_only_entitled_apps(self, api_client: ApiHarness) -> None:
        make_user(api_client.services.store, "member@example.com", "MemberPass1!", apps=("dart",))
        client = api_client.client
        login(client, "member@example.com", "MemberPass1!")

        assert [a["slug"] for a in client.get("/api/v1/apps").json()["apps"]] == ["dart"]

        launch = client.get("/api/v1/apps/dart")
        assert launch.status_code == 302
        assert launch.headers["location"] == "https://dart.example.com/"

        assert client.get("/api/v1/apps/skylens").status_code == 403
        assert client.get("/api/v1/apps/unknown").status_code == 404

    def test_session_forwarded_user_header(self, api_client: ApiHarness) -> None:
        make_user(api_client.services.store, "fwd@example.com", "MemberPass1!", apps=("dart",))
        client = api_client.client
        login(client, "fwd@example.com", "MemberPass1!")

        resp = client.get("/api/v1/auth/session")
        assert resp.status_code == 200
        assert resp.json()["user"]["allowed_apps"] == ["dart"]
        payload = _decode_forwarded(resp.headers["X-Forwarded-User"])
        assert payload["email"] == "fwd@example.com"
        assert payload["allowed_apps"] == ["dart"]
        assert [a["slug"] for a in payload["apps"]] == ["dart"]
        assert "password_hash" not in payload

    def test_entitlement_change_visible_on_next_request(self, api_client: ApiHarness) -> None:
        member = make_user(api_client.services.store, "live@example.com", "MemberPass1!", apps=("dart",))
        member_client = api_client.client
        login(member_client, "live@example.com", "MemberPass1!")

        admin = api_client.new_client()
        login(admin, ADMIN_EMAIL, ADMIN_PASSWORD)
        resp = admin.put(f"/api/v1/admin/users/{member.id}/apps", json={"allowed_apps": ["risk", "skylens", "risk"]})
        assert resp.status_code == 200
        assert resp.json()["allowed_apps"] == ["risk", "skylens"]

        assert [a["slug"] for a in member_client.get("/api/v1/apps").json()["apps"]] == ["skylens", "risk"]
        assert member_client.get("/api/v1/apps/dart").status_code == 403

    def test_admin_opens_any_app(self, api_client: ApiHarness) -> None:
        login(api_client.client, ADMIN_EMAIL, ADMIN_PASSWORD)
        resp = api_client.client.get("/api/v1/apps/risk")
        assert resp.status_code == 302
        assert resp.headers["location"] == "https://risk.example.com/"


class TestAdminConsole:
    def test_list_users_and_pending(self, api_client: ApiHarness) -> None:
        api_client.services.auth.register("queue@example.com", "pw")
        login(api_client.client, ADMIN_EMAIL, ADMIN_PASSWORD)

        users = api_client.client.get("/api/v1/admin/users").json()
        assert {u["email"] for u in users} == {ADMIN_EMAIL, "queue@example.com"}
        pending = api_client.client.get("/api/v1/admin/users/pending").json()
        assert [u["email"] for u in pending] == ["queue@example.com"]

    def test_reject_deletes_user_and_apps(self, api_client: ApiHarness) -> None:
        store = api_client.services.store
        doomed = make_user(store, "doomed@example.com", approved=False, apps=("dart",))
        login(api_client.client, ADMIN_EMAIL, ADMIN_PASSWORD)

        assert api_client.client.delete(f"/api/v1/admin/users/{doomed.id}").status_code == 204
        assert store.get_by_id(doomed.id) is None
        assert store.get_apps(doomed.id) == []
        assert api_client.client.delete(f"/api/v1/admin/users/{doomed.id}").status_code == 404

    def test_make_and_remove_admin(self, api_client: ApiHarness) -> None:
        member = make_user(api_client.services.store, "promo@example.com")
        login(api_client.client, ADMIN_EMAIL, ADMIN_PASSWORD)
        promoted = api_client.client.post(f"/api/v1/admin/users/{member.id}/make-admin")
        assert promoted.json()["is_admin"] is True
        demoted = api_client.client.post(f"/api/v1/admin/users/{member.id}/remove-admin")
        assert demoted.json()["is_admin"] is False

    def test_unapprove_ends_existing_session(self, api_client: ApiHarness) -> None:
        member = make_user(api_client.services.store, "revoked@example.com", "MemberPass1!")
        member_client = api_client.client
        login(member_client, "revoked@example.com", "MemberPass1!")
        assert member_client.get("/api/v1/profile").status_code == 200

        admin = api_client.new_client()
        login(admin, ADMIN_EMAIL, ADMIN_PASSWORD)
        assert admin.post(f"/api/v1/admin/users/{member.id}/unapprove").json()["approved"] is False

        assert member_client.get("/api/v1/profile").status_code == 401

    def test_deleted_user_session_is_unauthenticated(self, api_client: ApiHarness) -> None:
        member = make_user(api_client.services.store, "vanish@example.com", "MemberPass1!")
        member_client = api_client.client
        login(member_client, "vanish@example.com", "MemberPass1!")

        api_client.services.auth.reject(member.id)

        resp = member_client.get("/api/v1/auth/session")
        assert resp.status_code == 401
        assert resp.json() == {"authenticated": False}


class TestProfile:
    def test_update_profile(self, api_client: ApiHarness) -> None:
        make_user(api_client.services.store, "me@example.com", "MemberPass1!")
        client = api_client.client
        login(client, "me@example.com", "MemberPass1!")

        resp = client.put("/api/v1/profile", json={"full_name": "  Jo Park ", "job_title": "Planner", "phone": "+1 (555) 010-0200"})
        assert resp.status_code == 200, resp.text
        assert resp.json()["full_name"] == "Jo Park"
        assert client.get("/api/v1/auth/session").json()["user"]["job_title"] == "Planner"

    def test_profile_validation(self, api_client: ApiHarness) -> None:
        make_user(api_client.services.store, "val@example.com", "MemberPass1!")
        client = api_client.client
        login(client, "val@example.com", "MemberPass1!")
        assert client.put("/api/v1/profile", json={"full_name": "J"}).status_code == 422
        assert client.put("/api/v1/profile", json={"full_name": "Jo", "phone": "call me"}).status_code == 422
        assert client.put("/api/v1/profile", json={"full_name": "Jo", "job_title": "x" * 121}).status_code == 422

    def test_change_password(self, api_client: ApiHarness) -> None:
        make_user(api_client.services.store, "pw@example.com", "OldPassword1")
        client = api_client.client
        login(client, "pw@example.com", "OldPassword1")

        wrong = client.put(
            "/api/v1/profile/password",
            json={"current_password": "nope", "new_password": "NewPassword1", "confirm_password": "NewPassword1"},
        )
        assert wrong.status_code == 400
        assert wrong.json()["error"]["code"] == "invalid_password"

        short = client.put(
            "/api/v1/profile/password",
            json={"current_password": "OldPassword1", "new_password": "short", "confirm_password": "short"},
        )
        assert short.status_code == 422

        ok = client.put(
            "/api/v1/profile/password",
            json={"current_password": "OldPassword1", "new_password": "NewPassword1", "confirm_password": "NewPassword1"},
        )
        assert ok.status_code == 200
        assert login(api_client.new_client(), "pw@example.com", "NewPassword1").status_code == 200


class TestPasswordReset:
    def test_generic_response_and_full_reset(self, api_client: ApiHarness) -> None:
        make_user(api_client.services.store, "reset@example.com", "OldPassword1")
        client = api_client.client

        unknown = client.post("/api/v1/auth/password-reset", json={"email": "ghost@example.com"})
        known = client.post("/api/v1/auth/password-reset", json={"email": "reset@example.com"})
        assert unknown.status_code == known.status_code == 200
        assert unknown.json() == known.json()
        resets = api_client.notifier.of_kind("reset")
        assert len(resets) == 1
        token = resets[0][2]

        check = client.get("/api/v1/auth/password-reset/validate", params={"token": token})
        assert check.json() == {"valid": True, "reason": None, "message": None}

        done = client.post("/api/v1/auth/password-reset/confirm", json={"token": token, "password": "NewPassword1"})
        assert done.status_code == 200, done.text
        assert login(client, "reset@example.com", "NewPassword1").status_code == 200

        again = client.post("/api/v1/auth/password-reset/confirm", json={"token": token, "password": "Another1234"})
        assert again.status_code == 400
        assert again.json()["error"]["code"] == "token_invalid"
        assert again.json()["error"]["detail"] == "used"

    def test_pending_user_gets_generic_answer_without_mail(self, api_client: ApiHarness) -> None:
        api_client.services.auth.register("pending@example.com", "pw")
        resp = api_client.client.post("/api/v1/auth/password-reset", json={"email": "pending@example.com"})
        assert resp.status_code == 200
        assert api_client.notifier.of_kind("reset") == []

    def test_validate_reasons(self, api_client: ApiHarness) -> None:
        client = api_client.client
        missing = client.get("/api/v1/auth/password-reset/validate").json()
        unknown = client.get("/api/v1/auth/password-reset/validate", params={"token": "deadbeef"}).json()
        assert (missing["valid"], missing["reason"]) == (False, "missing")
        assert (unknown["valid"], unknown["reason"]) == (False, "unknown")

    def test_weak_password(self, api_client: ApiHarness) -> None:
        make_user(api_client.services.store, "weak@example.com")
        client = api_client.client
        client.post("/api/v1/auth/password-reset", json={"email": "weak@example.com"})
        token = api_client.notifier.of_kind("reset")[0][2]

        resp = client.post("/api/v1/auth/password-reset/confirm", json={"token": token, "password": "short"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "weak_password"


class TestPasswordByteLimit:
    """bcrypt takes at most 72 bytes; longer passwords must fail cleanly, never with a 500."""

    OVERLONG = ["x" * 73, "é" * 37]

    def test_register_rejects_overlong_password(self, api_client: ApiHarness) -> None:
        for i, password in enumerate(self.OVERLONG):
            resp = api_client.client.post(
                "/api/v1/auth/register", json={"email": f"long{i}@example.com", "password": password}
            )
            assert resp.status_code == 422, resp.text
            assert resp.json()["error"]["code"] == "validation_error"
        assert api_client.notifier.of_kind("pending") == []

    def test_register_accepts_72_bytes(self, api_client: ApiHarness) -> None:
        resp = api_client.client.post("/api/v1/auth/register", json={"email": "edge@example.com", "password": "x" * 72})
        assert resp.status_code == 201, resp.text

    def test_change_password_rejects_overlong(self, api_client: ApiHarness) -> None:
        make_user(api_client.services.store, "longpw@example.com", "OldPassword1")
        client = api_client.client
        login(client, "longpw@example.com", "OldPassword1")
        for password in self.OVERLONG:
            resp = client.put(
                "/api/v1/profile/password",
                json={"current_password": "OldPassword1", "new_password": password, "confirm_password": password},
            )
            assert resp.status_code == 422, resp.text
        assert login(api_client.new_client(), "longpw@example.com", "OldPassword1").status_code == 200

    def test_reset_rejects_overlong(self, api_client: ApiHarness) -> None:
        make_user(api_client.services.store, "longreset@example.com")
        client = api_client.client
        client.post("/api/v1/auth/password-reset", json={"email": "longreset@example.com"})
        token = api_client.notifier.of_kind("reset")[0][2]

        for password in self.OVERLONG:
            resp = client.post("/api/v1/auth/password-reset/confirm", json={"token": token, "password": password})
            assert resp.status_code == 400, resp.text
            assert resp.json()["error"]["code"] == "password_too_long"
        check = client.get("/api/v1/auth/password-reset/validate", params={"token": token})
        assert check.json()["valid"] is True

    def test_overlong_login_is_generic(self, api_client: ApiHarness) -> None:
        resp = login(api_client.client, ADMIN_EMAIL, "é" * 37)
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_credentials"


class TestBlockingWorkOffEventLoop:
    def test_approval_hashes_in_worker_thread(self, api_client: ApiHarness) -> None:
        user = api_client.services.auth.register("offloop@example.com", "pw")
        admin = api_client.new_client()
        login(admin, ADMIN_EMAIL, ADMIN_PASSWORD)

        seen: list[str] = []
        real_hash = auth.approval.hash_password

        def recording_hash(plain: str) -> str:
            seen.append(_thread_kind())
            return real_hash(plain)

        with patch.object(auth.approval, "hash_password", recording_hash):
            resp = admin.post(f"/api/v1/admin/users/{user.id}/approve", json={"allowed_apps": ["dart"]})
        assert resp.status_code == 200, resp.text
        assert seen == ["worker-thread"]
        assert len(api_client.notifier.of_kind("approval")) == 1

    def test_reset_request_writes_in_worker_thread(self, api_client: ApiHarness) -> None:
        store = api_client.services.store
        make_user(store, "offloop-reset@example.com")

        seen: list[str] = []
        real_create = store.create_reset_token

        def recording_create(*args, **kwargs):
            seen.append(_thread_kind())
            return real_create(*args, **kwargs)

        with patch.object(store, "create_reset_token", recording_create):
            resp = api_client.client.post("/api/v1/auth/password-reset", json={"email": "offloop-reset@example.com"})
        assert resp.status_code == 200
        assert seen == ["worker-thread"]
        assert len(api_client.notifier.of_kind("reset")) == 1


class TestRateLimit:
    def test_login_is_rate_limited(self, api_client: ApiHarness) -> None:
        limiter.enabled = True
        limiter.reset()
        statuses = [login(api_client.client, "ghost@example.com", "pw").status_code for _ in range(11)]
        assert statuses[:10] == [401] * 10
        assert statuses[10] == 429
        assert "Retry-After" in login(api_client.client, "ghost@example.com", "pw").headers
