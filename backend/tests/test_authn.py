"""
Tests for the single-admin session login.
"""
import json
import time
from io import StringIO
from unittest.mock import patch

import pytest
from django.contrib.auth.hashers import check_password
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import override_settings

from apps.authn.credentials import CredentialsError, load_stored_hash, save_password_hash, verify_credentials

from conftest import ADMIN_EMAIL, ADMIN_PASSWORD, FAST_HASHERS


def post_json(client, url, body):
    return client.post(url, data=json.dumps(body), content_type="application/json")


# ============================================================================
# Login / Logout Tests
# ============================================================================

class TestLogin:
    """Tests for POST /api/auth/login."""

    def test_success_sets_session(self, client, admin_settings):
        response = post_json(client, "/api/auth/login", {"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Login successful"}
        assert "session" in response.cookies

        status = client.get("/api/auth/status").json()
        assert status["isLoggedIn"] is True
        assert status["email"] == ADMIN_EMAIL
        assert status["expiresAt"] > time.time() * 1000

    def test_email_case_insensitive(self, client, admin_settings):
        response = post_json(client, "/api/auth/login", {"email": "Admin@Example.com", "password": ADMIN_PASSWORD})

        assert response.status_code == 200

    @pytest.mark.parametrize("email, password", [
        (ADMIN_EMAIL, "wrong-password"),
        ("someone@example.com", ADMIN_PASSWORD),
    ])
    def test_invalid_credentials(self, client, admin_settings, email, password):
        response = post_json(client, "/api/auth/login", {"email": email, "password": password})

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid credentials"}
        assert client.get("/api/auth/status").json()["isLoggedIn"] is False

    @pytest.mark.parametrize("body", [{}, {"email": ADMIN_EMAIL}, {"password": "x"}, {"email": "", "password": ""}])
    def test_missing_fields(self, client, admin_settings, body):
        response = post_json(client, "/api/auth/login", body)

        assert response.status_code == 400
        assert response.json() == {"error": "Email and password are required"}

    def test_invalid_json(self, client, admin_settings):
        response = client.post("/api/auth/login", data="nope", content_type="application/json")

        assert response.status_code == 400

    def test_unconfigured_account(self, client):
        """No admin hash configured is a server error, not a failed login."""
        with override_settings(ADMIN_EMAIL="admin@example.com", ADMIN_PASSWORD_HASH=""):
            with patch("apps.authn.credentials.load_stored_hash", return_value=None):
                response = post_json(client, "/api/auth/login", {"email": "admin@example.com", "password": "x"})

        assert response.status_code == 500
        assert response.json() == {"error": "Server configuration error"}

    def test_get_not_allowed(self, client):
        assert client.get("/api/auth/login").status_code == 405


class TestLogout:
    """Tests for POST /api/auth/logout."""

    def test_logout_clears_session(self, logged_in_client):
        response = logged_in_client.post("/api/auth/logout")

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Logged out successfully"}
        assert logged_in_client.get("/api/auth/status").json()["isLoggedIn"] is False

    def test_logout_without_session(self, client):
        """Logging out when not logged in still succeeds."""
        response = client.post("/api/auth/logout")

        assert response.status_code == 200


class TestStatus:
    """Tests for GET /api/auth/status."""

    def test_anonymous(self, client):
        assert client.get("/api/auth/status").json() == {
            "isLoggedIn": False,
            "email": "",
            "expiresAt": 0,
        }

    def test_expired_session_reads_as_logged_out(self, logged_in_client):
        with patch("apps.authn.middleware._now_ms", return_value=int(time.time() * 1000) + 8 * 24 * 3600 * 1000):
            response = logged_in_client.get("/api/auth/status")

        assert response.json()["isLoggedIn"] is False


# ============================================================================
# Password Change Tests
# ============================================================================

class TestChangePassword:
    """Tests for POST /api/auth/change-password."""

    def test_requires_session(self, client, admin_settings):
        response = post_json(
            client,
            "/api/auth/change-password",
            {"currentPassword": ADMIN_PASSWORD, "newPassword": "a-new-password"},
        )

        assert response.status_code == 401

    def test_success_persists_new_hash(self, logged_in_client, admin_settings):
        """The new hash is stored server-side and never returned."""
        response = post_json(
            logged_in_client,
            "/api/auth/change-password",
            {"currentPassword": ADMIN_PASSWORD, "newPassword": "a-new-password"},
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Password changed successfully"}

        stored = load_stored_hash()
        assert stored is not None
        assert stored not in response.content.decode()
        assert check_password("a-new-password", stored)

        assert verify_credentials(ADMIN_EMAIL, "a-new-password").success
        assert not verify_credentials(ADMIN_EMAIL, ADMIN_PASSWORD).success

    def test_new_password_works_for_login(self, logged_in_client, client):
        post_json(
            logged_in_client,
            "/api/auth/change-password",
            {"currentPassword": ADMIN_PASSWORD, "newPassword": "a-new-password"},
        )

        response = post_json(client, "/api/auth/login", {"email": ADMIN_EMAIL, "password": "a-new-password"})

        assert response.status_code == 200

    def test_wrong_current_password(self, logged_in_client):
        response = post_json(
            logged_in_client,
            "/api/auth/change-password",
            {"currentPassword": "not-it", "newPassword": "a-new-password"},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Current password is incorrect"}
        assert load_stored_hash() is None

    def test_new_password_too_short(self, logged_in_client):
        with override_settings(MIN_PASSWORD_LENGTH=8):
            response = post_json(
                logged_in_client,
                "/api/auth/change-password",
                {"currentPassword": ADMIN_PASSWORD, "newPassword": "short"},
            )

        assert response.status_code == 400
        assert response.json() == {"error": "New password must be at least 8 characters"}

    @pytest.mark.parametrize("body", [{}, {"currentPassword": ADMIN_PASSWORD}, {"newPassword": "a-new-password"}])
    def test_missing_fields(self, logged_in_client, body):
        response = post_json(logged_in_client, "/api/auth/change-password", body)

        assert response.status_code == 400

    def test_storage_failure(self, logged_in_client):
        with patch("apps.authn.credentials.save_password_hash", side_effect=CredentialsError("disk full")):
            response = post_json(
                logged_in_client,
                "/api/auth/change-password",
                {"currentPassword": ADMIN_PASSWORD, "newPassword": "a-new-password"},
            )

        assert response.status_code == 500


class TestSavePasswordHash:
    """Tests for save_password_hash."""

    @pytest.mark.parametrize("step", ["apps.authn.credentials.os.replace", "apps.authn.credentials.json.dump"])
    def test_failed_write_leaves_no_temp_file(self, admin_settings, step):
        """A failure after the temp file exists removes it and keeps the old hash."""
        with patch(step, side_effect=OSError("disk full")):
            with pytest.raises(CredentialsError):
                save_password_hash("pbkdf2_sha256$new")

        assert list(admin_settings.glob(".credentials-*")) == []
        assert load_stored_hash() is None

    def test_success_leaves_only_credentials_file(self, admin_settings):
        save_password_hash("pbkdf2_sha256$new")

        assert load_stored_hash() == "pbkdf2_sha256$new"
        assert list(admin_settings.glob(".credentials-*")) == []


# ============================================================================
# Management Command Tests
# ============================================================================

class TestHashPasswordCommand:
    """Tests for manage.py hash_password."""

    @override_settings(PASSWORD_HASHERS=FAST_HASHERS)
    def test_prints_verifiable_hash(self):
        out = StringIO()

        call_command("hash_password", "s3cret-pass", stdout=out)

        lines = out.getvalue().splitlines()
        assert lines[0].startswith("ADMIN_PASSWORD_HASH=")
        password_hash = lines[0].split("=", 1)[1]
        assert check_password("s3cret-pass", password_hash)
        assert "Verification: OK" in out.getvalue()

    def test_empty_password_rejected(self):
        with pytest.raises(CommandError):
            call_command("hash_password", "")
