"""
Single admin account credentials.

The admin email and initial password hash come from the environment
(ADMIN_EMAIL, ADMIN_PASSWORD_HASH). A password change writes the new hash
to ADMIN_CREDENTIALS_FILE, which then takes precedence over the
environment value.
"""
import contextlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from django.conf import settings
from django.contrib.auth.hashers import check_password, make_password

logger = logging.getLogger(__name__)


class CredentialsError(Exception):
    """Raised when the admin account is not configured or cannot be updated."""
    pass


@dataclass
class VerifyResult:
    success: bool
    error: Optional[str] = None


def get_credentials_file() -> Path:
    return Path(getattr(settings, 'ADMIN_CREDENTIALS_FILE'))


def load_stored_hash() -> Optional[str]:
    """Read the password hash saved by a previous password change."""
    path = get_credentials_file()
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding='utf-8'))
    except (OSError, ValueError) as e:
        logger.error(f"Could not read credentials file {path}: {e}")
        return None
    password_hash = data.get('password_hash') if isinstance(data, dict) else None
    return password_hash or None


def get_password_hash() -> str:
    return load_stored_hash() or getattr(settings, 'ADMIN_PASSWORD_HASH', '')


def save_password_hash(password_hash: str) -> None:
    """
    Persist a new password hash.

    Written to a temp file and renamed into place so a crash never leaves
    a half-written credentials file.

    Raises:
        CredentialsError: If the file cannot be written
    """
    path = get_credentials_file()
    tmp_path = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix='.credentials-')
        with os.fdopen(fd, 'w', encoding='utf-8') as tmp:
            json.dump({'password_hash': password_hash}, tmp)
        os.replace(tmp_path, path)
    except OSError as e:
        logger.error(f"Failed to save credentials to {path}: {e}")
        raise CredentialsError(f"Failed to save credentials: {e}")
    finally:
        if tmp_path is not None:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_path)
    logger.info(f"Admin password hash updated in {path}")


def verify_credentials(email: str, password: str) -> VerifyResult:
    """
    Check an email/password pair against the admin account.

    Raises:
        CredentialsError: If the admin account is not configured
    """
    admin_email = getattr(settings, 'ADMIN_EMAIL', '')
    password_hash = get_password_hash()

    if not admin_email or not password_hash:
        raise CredentialsError("Server configuration error")

    if email.strip().lower() != admin_email.strip().lower():
        return VerifyResult(success=False, error="Invalid credentials")

    if not check_password(password, password_hash):
        return VerifyResult(success=False, error="Invalid credentials")

    return VerifyResult(success=True)


def change_password(current_password: str, new_password: str) -> VerifyResult:
    """
    Replace the admin password after checking the current one.

    Raises:
        CredentialsError: If the account is not configured or the new
            hash cannot be saved
    """
    admin_email = getattr(settings, 'ADMIN_EMAIL', '')
    if not verify_credentials(admin_email, current_password).success:
        return VerifyResult(success=False, error="Current password is incorrect")

    min_length = getattr(settings, 'MIN_PASSWORD_LENGTH', 8)
    if len(new_password) < min_length:
        return VerifyResult(success=False, error=f"New password must be at least {min_length} characters")

    save_password_hash(make_password(new_password))
    return VerifyResult(success=True)
