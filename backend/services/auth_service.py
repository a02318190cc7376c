"""Admin token authentication that resolves the acting operator."""

from __future__ import annotations

import secrets
from threading import Lock
from typing import Optional

from backend.utils.config import Settings, get_settings


class AuthenticationError(Exception):
    """Base authentication failure."""


class AdminTokenNotConfiguredError(AuthenticationError):
    """Raised when ADMIN_TOKEN is missing."""


class InvalidAdminTokenError(AuthenticationError):
    """Raised when provided token is invalid."""


class AuthService:
    """Exchanges the admin token for per-operator session tokens."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._sessions: dict[str, str] = {}
        self._lock = Lock()

    @property
    def auth_enabled(self) -> bool:
        return bool(self._settings.admin_token)

    def _expected_token(self) -> str:
        if not self._settings.admin_token:
            raise AdminTokenNotConfiguredError(
                "ADMIN_TOKEN is not configured. Set ADMIN_TOKEN in environment variables."
            )
        return self._settings.admin_token

    def login(self, provided_admin_token: str, operator: Optional[str] = None) -> str:
        expected = self._expected_token()
        if not secrets.compare_digest(provided_admin_token, expected):
            raise InvalidAdminTokenError("Invalid admin token")
        session_token = secrets.token_urlsafe(32)
        with self._lock:
            self._sessions[session_token] = operator or self._settings.default_operator
        return session_token

    def resolve_operator(self, bearer_token: Optional[str]) -> str:
        """Return the operator bound to ``bearer_token``.

        With auth disabled every caller acts as ``default_operator``.
        """
        if not self.auth_enabled:
            return self._settings.default_operator
        if not bearer_token:
            raise InvalidAdminTokenError("Authorization header with Bearer token is required")
        with self._lock:
            for session_token, operator in self._sessions.items():
                if secrets.compare_digest(bearer_token, session_token):
                    return operator
        raise InvalidAdminTokenError("Invalid bearer token")
