"""Error taxonomy for PixelPrompt.

Every failure the application raises on purpose is an :class:`AppError`.
Instead of a class hierarchy, each error carries an :class:`ErrorKind` tag
plus the HTTP status code that goes with it, and callers branch on the tag
with ``match`` statements.

Kinds and status codes
----------------------
====================  ======  =============================================
Kind                  Status  Meaning
====================  ======  =============================================
``VALIDATION``        400     Malformed client input.  Never retried.
``NOT_FOUND``         404     No record matches the identifier.
``CONFLICT``          409     Duplicate resource (an existing image URL).
``RATE_LIMITED``      429     Per-address request quota exhausted.
``INTERNAL``          500     Unclassified failure.
``DATABASE``          500     Storage failure.
``EXTERNAL_SERVICE``  502     Upstream provider misbehaved (named provider).
``NETWORK``           503     Connection could not be established.
``TIMEOUT``           504     Outbound call exceeded its wall-clock budget.
====================  ======  =============================================
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Tag identifying which branch of the taxonomy an error belongs to."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    RATE_LIMITED = "rate_limited"
    INTERNAL = "internal"
    DATABASE = "database"
    EXTERNAL_SERVICE = "external_service"
    NETWORK = "network"
    TIMEOUT = "timeout"


STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.INTERNAL: 500,
    ErrorKind.DATABASE: 500,
    ErrorKind.EXTERNAL_SERVICE: 502,
    ErrorKind.NETWORK: 503,
    ErrorKind.TIMEOUT: 504,
}


class AppError(Exception):
    """Tagged application error.

    Attributes:
        kind: Which taxonomy branch this error belongs to.
        message: Human-readable message, safe to show to API clients.
        status_code: HTTP status code.  Derived from ``kind`` unless given.
        provider: Name of the upstream provider for ``EXTERNAL_SERVICE``
            errors (``"OpenAI"``, ``"Cloudinary"``, ...).
        details: Optional structured context for logs and non-production
            error payloads.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        status_code: int | None = None,
        provider: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.kind = kind
        self.message = message
        self.status_code = status_code if status_code is not None else STATUS_CODES[kind]
        self.provider = provider
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"AppError(kind={self.kind.value!r}, status_code={self.status_code}, message={self.message!r})"

    @property
    def is_retryable(self) -> bool:
        """Whether a retry wrapper may attempt the failed call again."""
        return self.kind is not ErrorKind.VALIDATION

    def to_dict(self) -> dict[str, Any]:
        """Structured description used in logs and debug payloads."""
        payload: dict[str, Any] = {"kind": self.kind.value, "status_code": self.status_code}
        if self.provider:
            payload["provider"] = self.provider
        if self.details:
            payload.update(self.details)
        return payload


# ---------------------------------------------------------------------------
# Constructors.
# ---------------------------------------------------------------------------


def validation_error(message: str, **details: Any) -> AppError:
    return AppError(ErrorKind.VALIDATION, message, details=details)


def not_found_error(message: str = "Resource not found", **details: Any) -> AppError:
    return AppError(ErrorKind.NOT_FOUND, message, details=details)


def conflict_error(message: str, **details: Any) -> AppError:
    return AppError(ErrorKind.CONFLICT, message, details=details)


def database_error(message: str, **details: Any) -> AppError:
    return AppError(ErrorKind.DATABASE, message, details=details)


def network_error(message: str = "Network error occurred") -> AppError:
    return AppError(ErrorKind.NETWORK, message)


def timeout_error(message: str = "Request timeout") -> AppError:
    return AppError(ErrorKind.TIMEOUT, message)


def external_service_error(provider: str, message: str) -> AppError:
    """Build an upstream-provider error whose message names the provider."""
    return AppError(
        ErrorKind.EXTERNAL_SERVICE,
        f"{provider} service error: {message}",
        provider=provider,
    )


# ---------------------------------------------------------------------------
# Classification.
# ---------------------------------------------------------------------------


def as_app_error(exc: BaseException) -> AppError:
    """Coerce any exception into the taxonomy.

    ``AppError`` instances pass through untouched.  Built-in timeout and
    connection errors keep their transient meaning; everything else becomes
    a generic ``INTERNAL`` error so internals never leak into responses.
    """
    match exc:
        case AppError():
            return exc
        case TimeoutError():
            return timeout_error()
        case ConnectionError():
            return network_error()
        case _:
            return AppError(ErrorKind.INTERNAL, "Internal Server Error")


def error_for_status(status_code: int, message: str) -> AppError:
    """Map an HTTP error status received from the API back to an AppError."""
    match status_code:
        case 400 | 422:
            kind = ErrorKind.VALIDATION
        case 404:
            kind = ErrorKind.NOT_FOUND
        case 409:
            kind = ErrorKind.CONFLICT
        case 429:
            kind = ErrorKind.RATE_LIMITED
        case 502:
            kind = ErrorKind.EXTERNAL_SERVICE
        case 503:
            kind = ErrorKind.NETWORK
        case 504 | 408:
            kind = ErrorKind.TIMEOUT
        case _:
            kind = ErrorKind.INTERNAL
    return AppError(kind, message, status_code=status_code)
