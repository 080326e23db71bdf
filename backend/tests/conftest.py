"""
Shared pytest setup.

Configures Django once for the whole test session and provides helpers
for logged-in clients.
"""
import os

import django
import pytest

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')
django.setup()

from django.contrib.auth.hashers import make_password
from django.test import Client, override_settings
from django.test.utils import setup_test_environment

# Adds "testserver" to ALLOWED_HOSTS for the test client
setup_test_environment()

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "correct-horse"

# Fast hasher so tests don't spend seconds on PBKDF2
FAST_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']


@pytest.fixture
def admin_settings(tmp_path):
    """Single admin account with a throwaway credentials file and history file."""
    with override_settings(PASSWORD_HASHERS=FAST_HASHERS):
        password_hash = make_password(ADMIN_PASSWORD)
    with override_settings(
        PASSWORD_HASHERS=FAST_HASHERS,
        ADMIN_EMAIL=ADMIN_EMAIL,
        ADMIN_PASSWORD_HASH=password_hash,
        ADMIN_CREDENTIALS_FILE=tmp_path / "credentials.json",
        CHAT_HISTORY_PATH=tmp_path / "chat_history.json",
    ):
        yield tmp_path


@pytest.fixture
def client():
    return Client()


@pytest.fixture
def logged_in_client(admin_settings):
    """A test client holding a valid session cookie."""
    client = Client()
    response = client.post(
        "/api/auth/login",
        data={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD},
        content_type="application/json",
    )
    assert response.status_code == 200
    return client
