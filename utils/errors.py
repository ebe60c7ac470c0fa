"""
Error taxonomy

Every failure surfaced to a tool caller carries a stable code, a readable
message and structured details. Database driver errors are translated at
the transaction boundary by translate_db_error(); SQL text is never echoed.
"""

import asyncio
from enum import Enum
from typing import Any, Optional

import asyncpg

from .error_messages import enhance_error_message, parse_key_detail


class ErrorCode(str, Enum):
    NOT_WHITELISTED = "NOT_WHITELISTED"
    ACCESS_DENIED = "ACCESS_DENIED"
    UNKNOWN_OPERATION = "UNKNOWN_OPERATION"
    INVALID_COLUMN = "INVALID_COLUMN"
    INVALID_OPERATOR = "INVALID_OPERATOR"
    EMPTY_WHERE_CLAUSE = "EMPTY_WHERE_CLAUSE"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    FOREIGN_KEY_VIOLATION = "FOREIGN_KEY_VIOLATION"
    UNIQUE_VIOLATION = "UNIQUE_VIOLATION"
    NOT_NULL_VIOLATION = "NOT_NULL_VIOLATION"
    CHECK_VIOLATION = "CHECK_VIOLATION"
    NOT_FOUND = "NOT_FOUND"
    TRANSACTION_TIMEOUT = "TRANSACTION_TIMEOUT"
    SERIALIZATION_FAILURE = "SERIALIZATION_FAILURE"
    DEADLOCK = "DEADLOCK"
    CONNECTION_FAILURE = "CONNECTION_FAILURE"
    POOL_EXHAUSTED = "POOL_EXHAUSTED"
    DATABASE_ERROR = "DATABASE_ERROR"
    BACKUP_INTEGRITY_FAILURE = "BACKUP_INTEGRITY_FAILURE"
    BACKUP_FAILED = "BACKUP_FAILED"


class DatabaseAdminError(Exception):
    """Error with a stable taxonomy code, safe to return to tool callers."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[dict[str, Any]] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.code = ErrorCode(code)
        self.message = message
        self.details = details or {}
        self.retryable = retryable

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": True,
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable,
        }

    def __repr__(self) -> str:
        return f"DatabaseAdminError({self.code.value}, {self.message!r})"


# SQLSTATE -> (code, retryable)
SQLSTATE_MAP: dict[str, tuple[ErrorCode, bool]] = {
    "23505": (ErrorCode.UNIQUE_VIOLATION, False),
    "23503": (ErrorCode.FOREIGN_KEY_VIOLATION, False),
    "23502": (ErrorCode.NOT_NULL_VIOLATION, False),
    "23514": (ErrorCode.CHECK_VIOLATION, False),
    "40001": (ErrorCode.SERIALIZATION_FAILURE, True),
    "40P01": (ErrorCode.DEADLOCK, True),
    "57014": (ErrorCode.TRANSACTION_TIMEOUT, False),
    "08000": (ErrorCode.CONNECTION_FAILURE, False),
    "08003": (ErrorCode.CONNECTION_FAILURE, True),
    "08006": (ErrorCode.CONNECTION_FAILURE, True),
    "53300": (ErrorCode.POOL_EXHAUSTED, True),
}

RETRYABLE_SQLSTATES = frozenset(state for state, (_, retry) in SQLSTATE_MAP.items() if retry)

_GENERIC_MESSAGES = {
    ErrorCode.SERIALIZATION_FAILURE: "Transaction could not be serialized; retry the operation.",
    ErrorCode.DEADLOCK: "Deadlock detected; the transaction was rolled back and may be retried.",
    ErrorCode.TRANSACTION_TIMEOUT: "Statement timeout exceeded; the transaction was rolled back.",
    ErrorCode.CONNECTION_FAILURE: "Lost connection to the database.",
    ErrorCode.POOL_EXHAUSTED: "Too many connections; retry shortly.",
}


def is_retryable(error: BaseException) -> bool:
    """True when the error class is worth retrying with backoff."""
    if isinstance(error, DatabaseAdminError):
        return error.retryable
    return getattr(error, "sqlstate", None) in RETRYABLE_SQLSTATES


def translate_db_error(error: BaseException, table: Optional[str] = None) -> DatabaseAdminError:
    """
    Map a driver exception to the error taxonomy.

    Already-translated errors pass through unchanged.
    """
    if isinstance(error, DatabaseAdminError):
        return error

    if isinstance(error, asyncio.TimeoutError):
        return DatabaseAdminError(
            ErrorCode.TRANSACTION_TIMEOUT,
            _GENERIC_MESSAGES[ErrorCode.TRANSACTION_TIMEOUT],
            {"table": table} if table else {},
        )

    if isinstance(error, (asyncpg.exceptions.ConnectionDoesNotExistError,
                          asyncpg.exceptions.InterfaceError,
                          ConnectionError)):
        return DatabaseAdminError(
            ErrorCode.CONNECTION_FAILURE,
            _GENERIC_MESSAGES[ErrorCode.CONNECTION_FAILURE],
            {"table": table} if table else {},
            retryable=True,
        )

    sqlstate = getattr(error, "sqlstate", None)
    code, retryable = SQLSTATE_MAP.get(sqlstate, (ErrorCode.DATABASE_ERROR, False))

    details: dict[str, Any] = {}
    if sqlstate:
        details["sqlstate"] = sqlstate
    details["table"] = getattr(error, "table_name", None) or table
    for attr, key in (("column_name", "column"), ("constraint_name", "constraint")):
        value = getattr(error, attr, None)
        if value:
            details[key] = value
    details.update({k: v for k, v in parse_key_detail(getattr(error, "detail", None)).items()
                    if k not in details})
    details = {k: v for k, v in details.items() if v is not None}

    message = _GENERIC_MESSAGES.get(code) or enhance_error_message(error)
    return DatabaseAdminError(code, message, details, retryable=retryable)
