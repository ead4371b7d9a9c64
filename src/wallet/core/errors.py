"""Error codes and user-friendly messages.

This module defines the error catalog for the authorization and YNAB sync
layers. Each error has:
- code: Unique identifier
- message: Technical description (for logs)
- user_message: User-friendly explanation
- retry_allowed: Whether the caller may retry the operation
"""

ERROR_CATALOG: dict[str, dict] = {
    "AUTH_001": {
        "code": "AUTH_001",
        "message": "Caller is not permitted to perform this operation",
        "user_message": "You don't have permission to do that.",
        "retry_allowed": False,
    },
    "AUTH_002": {
        "code": "AUTH_002",
        "message": "Missing or invalid identity token",
        "user_message": "Please sign in again.",
        "retry_allowed": False,
    },
    "YNAB_001": {
        "code": "YNAB_001",
        "message": "YNAB rejected the stored API token",
        "user_message": "YNAB did not accept your access token.",
        "retry_allowed": False,
    },
    "YNAB_002": {
        "code": "YNAB_002",
        "message": "YNAB returned an unexpected status",
        "user_message": "YNAB is not responding right now.",
        "retry_allowed": True,
    },
    "YNAB_003": {
        "code": "YNAB_003",
        "message": "YNAB response could not be decoded",
        "user_message": "YNAB sent data we couldn't read.",
        "retry_allowed": True,
    },
    "CFG_001": {
        "code": "CFG_001",
        "message": "YNAB credentials are missing or unreadable",
        "user_message": "YNAB is not configured for this account.",
        "retry_allowed": False,
    },
    "DB_001": {
        "code": "DB_001",
        "message": "Database operation failed",
        "user_message": "We couldn't save your changes due to a database error.",
        "retry_allowed": True,
    },
    "NF_001": {
        "code": "NF_001",
        "message": "Requested record does not exist",
        "user_message": "We couldn't find what you were looking for.",
        "retry_allowed": False,
    },
    "VAL_001": {
        "code": "VAL_001",
        "message": "Request data failed validation",
        "user_message": "Invalid input data.",
        "retry_allowed": True,
    },
}


def get_error(error_code: str) -> dict:
    """Get error definition by code.

    Unknown codes resolve to a generic entry rather than raising.
    """
    if error_code not in ERROR_CATALOG:
        return {
            "code": "UNKNOWN",
            "message": f"Unknown error code: {error_code}",
            "user_message": "An unexpected error occurred.",
            "retry_allowed": True,
        }
    return ERROR_CATALOG[error_code]


def is_retryable(error_code: str) -> bool:
    return get_error(error_code)["retry_allowed"]
