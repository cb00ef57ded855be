"""Session access for the federation handlers."""

from __future__ import annotations

from typing import Any

from flask import session

# Session keys
FEDERATION_CALLBACK_PARAMS_KEY = "federation_callback_params"
USER_KEY = "user"
AUTH_TIME_KEY = "auth_time"


class FlaskSessionStore:
    """Key/value view over Flask's signed-cookie session."""

    def get(self, key: str) -> Any:
        """Return the value stored under ``key``, or None."""
        return session.get(key)

    def set(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``."""
        session[key] = value

    def set_batch(self, values: dict[str, Any]) -> None:
        """Store several values at once."""
        session.update(values)

    def pop(self, key: str) -> Any:
        """Remove ``key`` and return its value, or None if absent."""
        return session.pop(key, None)
