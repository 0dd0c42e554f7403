"""Error types raised by admission control.

Each family maps to one HTTP outcome in ``app.core.exception_handlers``:
- RateLimitExceededError: the caller spent its budget or is blocked (429)
- ConfigurationAppError: a route names an unknown policy or its key
  function is broken (500, logged as a defect)
- StoreUnavailableError: the shared counter store failed and the
  deployment runs fail-closed (500)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Optional context attached to an error; keys vary per error family."""

    hint: str
    retry_after: int
    limit: int
    remaining: int
    reset_at: int
    policy: str
    backend: str
    operation: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base of every error the service raises on purpose.

    ``code`` is stable and machine readable; ``message`` is shown to clients.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Bad policy definition or bad operator input."""


class AuthenticationAppError(AppError):
    """Missing or wrong operator key."""


@dataclass
class RateLimitExceededError(AppError):
    headers: dict[str, str] = field(default_factory=dict)


class ConfigurationAppError(AppError):
    pass


class UnknownPolicyError(ConfigurationAppError):
    def __init__(self, name: str) -> None:
        super().__init__(
            code="unknown_rate_limit_policy",
            message=f"Rate limit policy '{name}' is not registered",
            details={"policy": name},
        )


class InvalidKeyDerivationError(ConfigurationAppError):
    """A custom key function raised or returned something other than a non-empty str."""


class StoreUnavailableError(AppError):
    """The counter store failed or timed out."""
