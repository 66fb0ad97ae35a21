"""
Domain exceptions and user-facing error messages for the optical portal.

Services raise these; the API layer turns them into JSON responses.
`format_error` maps technical failures (SQLite, filesystem) to messages that
can be shown at the counter without leaking paths or SQL.
"""
from __future__ import annotations

import re


class PortalError(Exception):
    """Base exception for portal service errors."""
    status_code = 500


class OrderValidationError(PortalError):
    """Raised when order input fails validation. Carries every field error."""
    status_code = 400

    def __init__(self, errors: list[dict]):
        self.errors = errors
        fields = ", ".join(e["field"] for e in errors)
        super().__init__(f"Validation failed: {fields}")


class NotFoundError(PortalError):
    """Requested record does not exist."""
    status_code = 404


class ProtectedRecordError(PortalError):
    """Record cannot be changed or removed (system category, referenced employee)."""
    status_code = 409


class BackupError(PortalError):
    """Backup or restore could not be completed."""
    status_code = 400


SEVERITY_INFO = "info"
SEVERITY_WARNING = "warning"
SEVERITY_ERROR = "error"
SEVERITY_CRITICAL = "critical"

# Checked in order; first pattern found in the message wins.
ERROR_MAPPINGS = [
    ("UNIQUE constraint failed", "A record with this information already exists.", SEVERITY_ERROR),
    ("FOREIGN KEY constraint failed", "Referenced record does not exist. Please refresh and try again.", SEVERITY_ERROR),
    ("NOT NULL constraint failed", "A required field is missing.", SEVERITY_ERROR),
    ("database is locked", "Database is busy. Please try again in a moment.", SEVERITY_WARNING),
    ("database disk image is malformed", "Database error occurred. Please contact support.", SEVERITY_CRITICAL),
    ("file is not a database", "Database file is corrupted. Please contact support.", SEVERITY_CRITICAL),
    ("No such file or directory", "The requested file or folder was not found.", SEVERITY_ERROR),
    ("Permission denied", "Permission denied. Please check file permissions.", SEVERITY_ERROR),
    ("No space left on device", "Not enough disk space available.", SEVERITY_ERROR),
]

_WIN_PATH = re.compile(r"[A-Za-z]:\\\S+")
_POSIX_PATH = re.compile(r"/\S+")
_SQL = [
    re.compile(r"SELECT\s+.+?FROM", re.IGNORECASE),
    re.compile(r"INSERT\s+INTO", re.IGNORECASE),
    re.compile(r"UPDATE\s+.+?SET", re.IGNORECASE),
    re.compile(r"DELETE\s+FROM", re.IGNORECASE),
]

GENERIC_MESSAGE = "An error occurred while processing your request. Please try again."


def sanitize_error_message(message: str) -> str:
    cleaned = _WIN_PATH.sub("[path]", message)
    cleaned = _POSIX_PATH.sub("[path]", cleaned)
    for pattern in _SQL:
        cleaned = pattern.sub("[query]", cleaned)

    if "[query]" in cleaned or "[path]" in cleaned:
        return GENERIC_MESSAGE

    if len(cleaned) > 200:
        return cleaned[:197] + "..."
    return cleaned


def format_error(exc) -> dict:
    """
    Returns {message, severity, technical, code} for an exception or string.
    """
    technical = str(exc)

    if isinstance(exc, OrderValidationError):
        details = "; ".join(f"{e['field']}: {e['message']}" for e in exc.errors)
        return {
            "message": f"Please fix the following: {details}",
            "severity": SEVERITY_WARNING,
            "technical": technical,
            "code": "VALIDATION_ERROR",
        }

    for pattern, friendly, severity in ERROR_MAPPINGS:
        if pattern.lower() in technical.lower():
            return {
                "message": friendly,
                "severity": severity,
                "technical": technical,
                "code": type(exc).__name__ if isinstance(exc, BaseException) else "ERROR",
            }

    if isinstance(exc, PortalError):
        return {
            "message": sanitize_error_message(technical),
            "severity": SEVERITY_WARNING if exc.status_code < 500 else SEVERITY_ERROR,
            "technical": technical,
            "code": type(exc).__name__,
        }

    return {
        "message": sanitize_error_message(technical),
        "severity": SEVERITY_ERROR,
        "technical": technical,
        "code": "UNKNOWN_ERROR",
    }
