"""
Audit logging for security and compliance.

Provides structured JSON logging for key events without exposing sensitive
content: no message text, document content, passwords or API keys.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Dedicated audit logger
audit_logger = logging.getLogger('audit')


class AuditEvent:
    """Standard audit event types."""
    # Auth events
    AUTH_LOGIN = 'auth.login'
    AUTH_LOGOUT = 'auth.logout'
    AUTH_PASSWORD_CHANGED = 'auth.password_changed'

    # Chat events
    CHAT_REQUEST = 'chat.request'
    CHAT_BACKEND_ERROR = 'chat.backend_error'


def get_client_ip(request) -> str:
    """Extract client IP from request, handling proxies."""
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        # First IP in the chain is the client
        return x_forwarded_for.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR', 'unknown')


def get_request_id(request) -> str:
    """Get or generate a request ID for correlation."""
    request_id = getattr(request, 'request_id', None)
    if not request_id:
        request_id = request.META.get('HTTP_X_REQUEST_ID')
    if not request_id:
        request_id = str(uuid.uuid4())[:8]
        request.request_id = request_id
    return request_id


def log_audit(
    event_type: str,
    user: Optional[str] = None,
    request_id: Optional[str] = None,
    client_ip: Optional[str] = None,
    outcome: str = 'success',
    metadata: Optional[Dict[str, Any]] = None
):
    """
    Log a structured audit event.

    Args:
        event_type: One of AuditEvent constants
        user: Session email, if logged in
        request_id: Correlation ID for request tracing
        client_ip: Client IP address
        outcome: 'success' or 'failure'
        metadata: Event-specific data (no PII/secrets)
    """
    event = {
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'event_type': event_type,
        'user': user,
        'request_id': request_id,
        'client_ip': client_ip,
        'outcome': outcome,
        'metadata': metadata or {}
    }

    # Log as structured JSON
    audit_logger.info(json.dumps(event))


def log_audit_from_request(
    request,
    event_type: str,
    outcome: str = 'success',
    metadata: Optional[Dict[str, Any]] = None,
    user: Optional[str] = None,
):
    """
    Log an audit event with request context auto-populated.

    Args:
        request: Django HttpRequest
        event_type: One of AuditEvent constants
        outcome: 'success' or 'failure'
        metadata: Event-specific data
        user: Overrides the session email (e.g. on login)
    """
    if user is None:
        session = getattr(request, 'auth_session', None)
        if session is not None and session.is_logged_in:
            user = session.email

    log_audit(
        event_type=event_type,
        user=user,
        request_id=get_request_id(request),
        client_ip=get_client_ip(request),
        outcome=outcome,
        metadata=metadata
    )


def audit_login(request, email: str, success: bool, reason: Optional[str] = None):
    """Log a login attempt."""
    log_audit_from_request(
        request,
        AuditEvent.AUTH_LOGIN,
        outcome='success' if success else 'failure',
        metadata={'reason': reason} if reason else None,
        user=email,
    )


def audit_chat_request(request, turns: int, file_count: int, mode: str, backend: str):
    """Log a chat request (without the message text)."""
    log_audit_from_request(
        request,
        AuditEvent.CHAT_REQUEST,
        metadata={
            'turns': turns,
            'file_count': file_count,
            'mode': mode,
            'backend': backend,
        }
    )


def audit_backend_error(request, backend: str, status: Optional[int], error: str):
    """Log a failed backend call."""
    log_audit_from_request(
        request,
        AuditEvent.CHAT_BACKEND_ERROR,
        outcome='failure',
        metadata={
            'backend': backend,
            'status': status,
            'error': error[:200],  # Truncate error message
        }
    )
