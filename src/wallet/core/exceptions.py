"""Custom exception classes for authorization and YNAB sync.

Each exception maps to an error code defined in errors.py and carries the
HTTP status the API boundary should answer with.
"""

from typing import Any


class WalletError(Exception):
    """Base exception for all application errors.

    Attributes:
        error_code: Code from the error catalog (e.g., "AUTH_001")
        details: Additional context about the error (for logging)
        http_status: HTTP status code to return (default: 500)
    """

    default_code = "UNKNOWN"
    default_status = 500

    def __init__(
        self,
        message: str = "",
        *,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
        http_status: int | None = None,
    ):
        self.error_code = error_code or self.default_code
        self.details = details or {}
        self.http_status = http_status or self.default_status
        super().__init__(message or self.error_code)


class ForbiddenError(WalletError):
    """Raised when the permission engine denies an operation."""

    default_code = "AUTH_001"
    default_status = 403


class AuthenticationError(WalletError):
    """Raised when the caller identity cannot be established."""

    default_code = "AUTH_002"
    default_status = 401


class YnabUnauthorizedError(WalletError):
    """Raised when YNAB answers 401 for the stored token."""

    default_code = "YNAB_001"
    default_status = 401


class UpstreamError(WalletError):
    """Raised for non-auth, non-2xx YNAB responses and transport failures.

    ``transient`` marks failures worth retrying (5xx and IO errors).
    """

    default_code = "YNAB_002"

    def __init__(
        self,
        message: str = "",
        *,
        status_code: int | None = None,
        body: str = "",
        transient: bool = False,
    ):
        super().__init__(
            message or f"YNAB returned status {status_code}",
            details={"status_code": status_code, "body": body},
        )
        self.status_code = status_code
        self.body = body
        self.transient = transient


class ProtocolError(WalletError):
    """Raised when a YNAB response body is malformed."""

    default_code = "YNAB_003"


class ConfigError(WalletError):
    """Raised when YNAB credentials are missing or unparseable."""

    default_code = "CFG_001"


class StoreError(WalletError):
    """Raised when the local store fails."""

    default_code = "DB_001"

    @property
    def is_lock_error(self) -> bool:
        return "locked" in str(self).lower()


class NotFoundError(WalletError):
    """Raised when a record (or a secret) does not exist."""

    default_code = "NF_001"
    default_status = 404


class ValidationError(WalletError):
    """Raised when input fails business validation."""

    default_code = "VAL_001"
    default_status = 400
