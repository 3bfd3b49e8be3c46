"""
Error Taxonomy Module

Typed errors raised by the ledger. Each carries an HTTP status classification and
a human-readable message. Storage failures are translated into this taxonomy at
the boundary so raw storage text never reaches a production client.
"""

from typing import Any, Dict, Optional

from .storage import StorageError, StorageConflictError, StorageUnavailableError


class LedgerError(Exception):
    """Base class for all ledger errors"""

    status_code: int = 500

    def __init__(
        self,
        message: str = "Something went wrong",
        status_code: Optional[int] = None,
        is_operational: bool = True,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.is_operational = is_operational
        self.details = details or {}
        self.field = field

    def to_dict(self, include_details: bool = False) -> Dict[str, Any]:
        """Client-facing payload; details only when include_details is set"""
        response: Dict[str, Any] = {"success": False, "message": self.message}
        if self.field:
            response["field"] = self.field
        if include_details:
            if self.details:
                response["details"] = self.details
            response["name"] = type(self).__name__
            response["is_operational"] = self.is_operational
        return response


class BadRequestError(LedgerError):
    """Business-rule precondition failed"""
    status_code = 400


class UnauthorizedError(LedgerError):
    """Caller identity missing or invalid"""
    status_code = 401


class ForbiddenError(LedgerError):
    """Ownership or status precondition failed"""
    status_code = 403


class NotFoundError(LedgerError):
    """Entity absent, or hidden from the caller"""
    status_code = 404


class ConflictError(LedgerError):
    """Uniqueness violation"""
    status_code = 409


class TooManyRequestsError(LedgerError):
    """Rate limit exceeded"""
    status_code = 429


class InternalError(LedgerError):
    """Unexpected storage or infrastructure failure"""
    status_code = 500

    def __init__(self, message: str = "Something went wrong", **kwargs):
        kwargs.setdefault("is_operational", False)
        super().__init__(message, **kwargs)


def translate_storage_error(error: StorageError, production: bool) -> LedgerError:
    """
    Map a storage exception onto the ledger taxonomy

    Args:
        error: The storage failure
        production: Hide storage text when True

    Returns:
        LedgerError suitable for a client response
    """
    if isinstance(error, StorageConflictError):
        field = error.field or "field"
        return ConflictError(
            f"A record with this {field} already exists.",
            field=field
        )

    if isinstance(error, StorageUnavailableError):
        message = ("Connection was lost. Please try again later."
                   if production else str(error))
        return InternalError(
            message,
            details=None if production else {"original_error": str(error)}
        )

    message = ("A database error occurred. Please try again later."
               if production else f"Database error: {error}")
    return InternalError(
        message,
        details=None if production else {"original_error": str(error)}
    )


def wrap_unexpected(error: Exception, production: bool) -> LedgerError:
    """Wrap any other exception as an InternalError"""
    message = ("Something went wrong. Please try again later."
               if production else (str(error) or "Internal server error"))
    return InternalError(
        message,
        details=None if production else {"original_error": repr(error)}
    )
