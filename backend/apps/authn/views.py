"""
Authentication views.

One admin account; login seals {isLoggedIn, email, expiresAt} into the
session cookie.
"""
import json
import logging

from django.http import JsonResponse, HttpRequest
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from .audit import AuditEvent, audit_login, log_audit_from_request
from .credentials import CredentialsError, change_password as update_password, verify_credentials
from .middleware import clear_session, get_session, session_required, set_session

logger = logging.getLogger(__name__)


def _load_json(request: HttpRequest):
    try:
        body = json.loads(request.body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return body if isinstance(body, dict) else None


@csrf_exempt
@require_http_methods(["POST"])
def login(request: HttpRequest) -> JsonResponse:
    """
    POST /api/auth/login

    Request body:
        {"email": "admin@example.com", "password": "..."}

    Response:
        {"success": true, "message": "Login successful"}
    """
    body = _load_json(request)
    if body is None:
        return JsonResponse({'error': 'Invalid JSON'}, status=400)

    email = body.get('email')
    password = body.get('password')

    if not email or not password or not isinstance(email, str) or not isinstance(password, str):
        return JsonResponse({'error': 'Email and password are required'}, status=400)

    try:
        result = verify_credentials(email, password)
    except CredentialsError as e:
        logger.error(f"Login unavailable: {e}")
        return JsonResponse({'error': 'Server configuration error'}, status=500)

    if not result.success:
        logger.warning("Login failed: invalid credentials")
        audit_login(request, email, success=False, reason=result.error)
        return JsonResponse({'error': result.error or 'Invalid credentials'}, status=401)

    set_session(request, email)
    audit_login(request, email, success=True)
    logger.info("Login successful")

    return JsonResponse({'success': True, 'message': 'Login successful'})


@csrf_exempt
@require_http_methods(["POST"])
def logout(request: HttpRequest) -> JsonResponse:
    """
    POST /api/auth/logout

    Always succeeds, logged in or not.
    """
    session = get_session(request)
    clear_session(request)
    if session.is_logged_in:
        log_audit_from_request(request, AuditEvent.AUTH_LOGOUT, user=session.email)

    return JsonResponse({'success': True, 'message': 'Logged out successfully'})


@require_http_methods(["GET"])
def status(request: HttpRequest) -> JsonResponse:
    """
    GET /api/auth/status

    Response:
        {"isLoggedIn": true, "email": "...", "expiresAt": 1700000000000}
    """
    return JsonResponse(get_session(request).to_dict())


@csrf_exempt
@require_http_methods(["POST"])
@session_required
def change_password(request: HttpRequest) -> JsonResponse:
    """
    POST /api/auth/change-password

    Request body:
        {"currentPassword": "...", "newPassword": "..."}

    The new hash is stored server-side; it is never sent back.
    """
    body = _load_json(request)
    if body is None:
        return JsonResponse({'error': 'Invalid JSON'}, status=400)

    current_password = body.get('currentPassword')
    new_password = body.get('newPassword')

    if not isinstance(current_password, str) or not isinstance(new_password, str) \
            or not current_password or not new_password:
        return JsonResponse(
            {'error': 'Current password and new password are required'},
            status=400
        )

    try:
        result = update_password(current_password, new_password)
    except CredentialsError as e:
        logger.error(f"Password change failed: {e}")
        return JsonResponse({'error': 'Failed to change password'}, status=500)

    if not result.success:
        log_audit_from_request(
            request,
            AuditEvent.AUTH_PASSWORD_CHANGED,
            outcome='failure',
            metadata={'reason': result.error},
        )
        return JsonResponse({'error': result.error or 'Failed to change password'}, status=400)

    log_audit_from_request(request, AuditEvent.AUTH_PASSWORD_CHANGED)

    return JsonResponse({'success': True, 'message': 'Password changed successfully'})
