"""
Errors raised while relaying a chat request.
"""
from typing import Optional


class RelayError(Exception):
    """Base class for chat relay failures."""
    pass


class ConfigurationError(RelayError):
    """Raised when a required credential is missing or still a placeholder."""

    def __init__(self, credential: str):
        self.credential = credential
        super().__init__(
            f"API key is required. Please set {credential} in your environment "
            f"or provide it in settings."
        )


class BackendError(RelayError):
    """Raised when the inference backend fails or returns a non-2xx status."""

    def __init__(self, message: str, status: Optional[int] = None, backend: Optional[str] = None):
        self.message = message
        self.status = status
        self.backend = backend
        super().__init__(message)


class StreamReadError(IOError):
    """Raised when the backend stream breaks mid-transfer."""
    pass
