"""
errors.py — AppError base class, domain error types and the error code registry.

Every error returned by the SplitPlus API must use a code defined here.
Do not raise strings or generic exceptions from service or route code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - Validation errors from the split calculator carry the numbers the client
    needs to render an actionable message (computed vs expected).
  - Never conflate 401 (unauthenticated) with 403 (unauthorized).
"""

from __future__ import annotations

from decimal import Decimal


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def details(self) -> dict | None:
        """Extra structured context for the client. None for most errors."""
        return None

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        details = self.details()
        if details is not None:
            payload["details"] = details
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
# IMPORTANT: these are the string values sent in the API response.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_SPLIT_TYPE         = "INVALID_SPLIT_TYPE"
    INVALID_STORAGE_TYPE       = "INVALID_STORAGE_TYPE"
    BAD_REQUEST                = "BAD_REQUEST"
    METHOD_NOT_ALLOWED         = "METHOD_NOT_ALLOWED"         # 405

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    DUPLICATE_USERNAME         = "DUPLICATE_USERNAME"
    ALREADY_MEMBER             = "ALREADY_MEMBER"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"
    GROUP_NOT_FOUND            = "GROUP_NOT_FOUND"
    EXPENSE_NOT_FOUND          = "EXPENSE_NOT_FOUND"
    NOT_FOUND                  = "NOT_FOUND"
    INVITE_NOT_FOUND           = "INVITE_NOT_FOUND"
    JOIN_REQUEST_NOT_FOUND     = "JOIN_REQUEST_NOT_FOUND"

    # ── Split / Business Rule Violations (422) ────────────────────────────
    INVALID_AMOUNT             = "INVALID_AMOUNT"
    SPLIT_SUM_MISMATCH         = "SPLIT_SUM_MISMATCH"
    EMPTY_MEMBER_SET           = "EMPTY_MEMBER_SET"
    PAYER_NOT_MEMBER           = "PAYER_NOT_MEMBER"
    SPLIT_USER_NOT_MEMBER      = "SPLIT_USER_NOT_MEMBER"
    SYNC_NOT_CONFIGURED        = "SYNC_NOT_CONFIGURED"

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed (unauthorized)
    INVALID_CREDENTIALS        = "INVALID_CREDENTIALS"    # 401
    TOKEN_MISSING              = "TOKEN_MISSING"          # 401
    TOKEN_INVALID              = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"          # 401
    FORBIDDEN                  = "FORBIDDEN"              # 403

    # ── System Errors ──────────────────────────────────────────────────────
    PERSISTENCE_ERROR          = "PERSISTENCE_ERROR"      # 500
    SYNC_FAILED                = "SYNC_FAILED"            # 502
    INTERNAL_ERROR             = "INTERNAL_ERROR"         # 500


# ── Domain errors ──────────────────────────────────────────────────────────
#
# Raised by the split calculator, the repository and the lifecycle. They are
# AppErrors so the global handler renders them without special cases.
# ──────────────────────────────────────────────────────────────────────────

class InvalidAmountError(AppError):
    """The expense total is not a positive finite number."""

    def __init__(self, amount: object) -> None:
        super().__init__(
            ErrorCode.INVALID_AMOUNT,
            f"Amount must be a positive number (got {amount!r}).",
            422,
            field="amount",
        )
        self.amount = amount


class SplitMismatchError(AppError):
    """
    The split inputs do not add up.

    `unit` is "amount" for EXACT splits (computed/expected are money) and
    "percent" for PERCENTAGE splits (computed/expected are percentage points).
    """

    def __init__(
            self,
            computed: Decimal,
            expected: Decimal,
            unit: str = "amount",
    ) -> None:
        if unit == "percent":
            message = f"Percentages ({computed}%) do not sum to {expected}%."
        else:
            message = f"Split amounts ({computed}) do not match total ({expected})."
        super().__init__(ErrorCode.SPLIT_SUM_MISMATCH, message, 422, field="splits")
        self.computed = computed
        self.expected = expected
        self.unit     = unit

    def details(self) -> dict:
        return {
            "computed": str(self.computed),
            "expected": str(self.expected),
            "unit":     self.unit,
        }


class EmptyMemberSetError(AppError):
    """An EQUAL split was requested against zero members."""

    def __init__(self) -> None:
        super().__init__(
            ErrorCode.EMPTY_MEMBER_SET,
            "Cannot split an expense equally between zero members.",
            422,
            field="members",
        )


class NotFoundError(AppError):

    def __init__(
            self,
            collection: str,
            record_id: str,
            code: str = ErrorCode.NOT_FOUND,
    ) -> None:
        super().__init__(code, f"No {collection} record with id {record_id!r}.", 404)
        self.collection = collection
        self.record_id  = record_id


class PersistenceError(AppError):
    """The record store failed to read or write. Nothing was committed."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.PERSISTENCE_ERROR, message, 500)


class SyncError(AppError):
    """
    The remote mirror was unreachable or answered with an error.

    Post-commit pushes only log this; an explicit pull surfaces it as 502.
    """

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.SYNC_FAILED, message, 502)
