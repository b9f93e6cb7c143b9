"""
Flow settings.

Environment-specific constants of a flow run (CSRF token, wait timeout,
challenge credentials) collected in one place so tests and the CLI can
override them.
"""

import os
from dataclasses import dataclass

DEFAULT_CSRF_HEADER = "X-CSRF-Token"
DEFAULT_CSRF_TOKEN = "1"
DEFAULT_CODE_TIMEOUT = 5.0
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_CHALLENGE_USER = "harold"
DEFAULT_CHALLENGE_PASSWORD = "any-pass"

_TRUTHY = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in _TRUTHY


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


@dataclass(frozen=True)
class FlowSettings:
    """Settings for one OAuth flow run."""

    csrf_header: str = DEFAULT_CSRF_HEADER
    csrf_token: str = DEFAULT_CSRF_TOKEN
    code_timeout: float = DEFAULT_CODE_TIMEOUT
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    challenge_username: str = DEFAULT_CHALLENGE_USER
    challenge_password: str = DEFAULT_CHALLENGE_PASSWORD
    verify_tls: bool = False

    @classmethod
    def from_env(cls) -> "FlowSettings":
        """Build settings from OAUTH_* environment variables."""
        return cls(
            csrf_token=os.environ.get("OAUTH_CSRF_TOKEN", DEFAULT_CSRF_TOKEN),
            code_timeout=_env_float("OAUTH_CODE_TIMEOUT", DEFAULT_CODE_TIMEOUT),
            request_timeout=_env_float("OAUTH_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT),
            challenge_username=os.environ.get("OAUTH_CHALLENGE_USER", DEFAULT_CHALLENGE_USER),
            challenge_password=os.environ.get(
                "OAUTH_CHALLENGE_PASSWORD", DEFAULT_CHALLENGE_PASSWORD
            ),
            verify_tls=_env_bool("OAUTH_VERIFY_TLS", False),
        )
