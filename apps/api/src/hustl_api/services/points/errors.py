"""Error taxonomy for points ledger operations.

Every error carries a machine-readable ``code`` and a ``context`` dict that is
safe to return to clients; the HTTP layer maps the four families onto
400/404/409/500 responses.
"""

from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base class for ledger failures."""

    code = "ledger_error"
    status_code = 500

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def as_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code, "context": self.context}


class LedgerValidationError(LedgerError):
    code = "validation_error"
    status_code = 400


class InvalidAmountError(LedgerValidationError):
    code = "invalid_amount"

    def __init__(self, amount: Any) -> None:
        super().__init__("Amount must be a positive whole number of points", amount=amount)


class InvalidActivityCodeError(LedgerValidationError):
    code = "invalid_activity_code"

    def __init__(self, activity_code: Any) -> None:
        super().__init__(
            "Activity codes are 2-50 characters of letters, digits and underscores",
            activityCode=activity_code,
        )


class InvalidActivityError(LedgerValidationError):
    code = "invalid_activity"


class InvalidRedemptionTypeError(LedgerValidationError):
    code = "invalid_redemption_type"


class LedgerNotFoundError(LedgerError):
    code = "not_found"
    status_code = 404


class AccountNotFoundError(LedgerNotFoundError):
    code = "account_not_found"

    def __init__(self, user_id: Any) -> None:
        super().__init__("No points account exists for this user", userId=str(user_id))


class ActivityNotFoundError(LedgerNotFoundError):
    code = "activity_not_found"

    def __init__(self, activity_code: str) -> None:
        super().__init__("Activity not found", activityCode=activity_code)


class RedemptionNotFoundError(LedgerNotFoundError):
    code = "redemption_not_found"

    def __init__(self, redemption_id: Any) -> None:
        super().__init__("Redemption not found", redemptionId=str(redemption_id))


class TransactionNotFoundError(LedgerNotFoundError):
    code = "transaction_not_found"

    def __init__(self, transaction_id: Any) -> None:
        super().__init__("Reservation transaction not found", transactionId=str(transaction_id))


class LedgerConflictError(LedgerError):
    code = "conflict"
    status_code = 409


class InsufficientBalanceError(LedgerConflictError):
    code = "insufficient_balance"

    def __init__(self, *, current_balance: int, available_balance: int, requested_amount: int) -> None:
        super().__init__(
            "Insufficient points balance",
            currentBalance=current_balance,
            availableBalance=available_balance,
            requestedAmount=requested_amount,
        )
        self.current_balance = current_balance
        self.available_balance = available_balance
        self.requested_amount = requested_amount


class AlreadyProcessedError(LedgerConflictError):
    code = "already_processed"

    def __init__(self, redemption_id: Any, status: str) -> None:
        super().__init__("Redemption has already been processed", redemptionId=str(redemption_id), status=status)


class AlreadyFinalizedError(LedgerConflictError):
    code = "already_finalized"

    def __init__(self, transaction_id: Any, status: str) -> None:
        super().__init__("Reservation has already been finalized", transactionId=str(transaction_id), status=status)


class ActivityInactiveError(LedgerConflictError):
    code = "activity_inactive"

    def __init__(self, activity_code: str, *, reason: str) -> None:
        super().__init__("Activity is not currently available", activityCode=activity_code, reason=reason)


class DailyLimitExceededError(LedgerConflictError):
    code = "daily_limit_exceeded"

    def __init__(self, activity_code: str, *, limit: int, earned_count: int) -> None:
        super().__init__(
            "Daily limit reached for this activity",
            activityCode=activity_code,
            limit=limit,
            earnedCount=earned_count,
        )
        self.limit = limit


class TotalLimitExceededError(LedgerConflictError):
    code = "total_limit_exceeded"

    def __init__(self, activity_code: str, *, limit: int, earned_count: int) -> None:
        super().__init__(
            "Lifetime limit reached for this activity",
            activityCode=activity_code,
            limit=limit,
            earnedCount=earned_count,
        )
        self.limit = limit


class ActivityExistsError(LedgerConflictError):
    code = "activity_exists"

    def __init__(self, activity_code: str) -> None:
        super().__init__("An activity with this code already exists", activityCode=activity_code)


class LedgerInternalError(LedgerError):
    code = "internal_error"
    status_code = 500


class LedgerContentionError(LedgerInternalError):
    code = "ledger_contention"


class LedgerStorageError(LedgerInternalError):
    code = "storage_failure"


__all__ = [
    "AccountNotFoundError",
    "ActivityExistsError",
    "ActivityInactiveError",
    "ActivityNotFoundError",
    "AlreadyFinalizedError",
    "AlreadyProcessedError",
    "DailyLimitExceededError",
    "InsufficientBalanceError",
    "InvalidActivityCodeError",
    "InvalidActivityError",
    "InvalidAmountError",
    "InvalidRedemptionTypeError",
    "LedgerConflictError",
    "LedgerContentionError",
    "LedgerError",
    "LedgerInternalError",
    "LedgerNotFoundError",
    "LedgerStorageError",
    "LedgerValidationError",
    "RedemptionNotFoundError",
    "TotalLimitExceededError",
    "TransactionNotFoundError",
]
