"""
Admin authentication app.

Provides:
- Single-account login backed by a signed session cookie
- Password changes persisted to a credentials file
- Structured audit logging
"""
