"""Points ledger services."""

from .activities import (
    DEFAULT_ACTIVITIES,
    ActivityCatalog,
    ActivityEligibility,
    normalize_activity_code,
)
from .auditor import (
    BalanceCorrection,
    BalanceDrift,
    ConsistencyAuditor,
    ConsistencyReport,
    ReconciliationReport,
)
from .awards import AwardEngine
from .errors import (
    AccountNotFoundError,
    ActivityExistsError,
    ActivityInactiveError,
    ActivityNotFoundError,
    AlreadyFinalizedError,
    AlreadyProcessedError,
    DailyLimitExceededError,
    InsufficientBalanceError,
    InvalidActivityCodeError,
    InvalidActivityError,
    InvalidAmountError,
    InvalidRedemptionTypeError,
    LedgerConflictError,
    LedgerContentionError,
    LedgerError,
    LedgerInternalError,
    LedgerNotFoundError,
    LedgerStorageError,
    LedgerValidationError,
    RedemptionNotFoundError,
    TotalLimitExceededError,
    TransactionNotFoundError,
)
from .leaderboard import Leaderboard, LeaderboardEntry, LeaderboardPeriod, LeaderboardReader
from .ledger import (
    BalanceSnapshot,
    PointsLedger,
    ReservationOutcome,
    TransactionFilters,
    TransactionPage,
    decode_time_uuid_cursor,
    encode_time_uuid_cursor,
)
from .locks import UserLockRegistry, get_user_lock_registry
from .redemptions import ExpirySweepResult, RedemptionAction, RedemptionPage, RedemptionWorkflow
from .statistics import PointsStatisticsService, SystemStatistics, UserBalanceDetail

__all__ = [
    "AccountNotFoundError",
    "ActivityCatalog",
    "ActivityEligibility",
    "ActivityExistsError",
    "ActivityInactiveError",
    "ActivityNotFoundError",
    "AlreadyFinalizedError",
    "AlreadyProcessedError",
    "AwardEngine",
    "BalanceCorrection",
    "BalanceDrift",
    "BalanceSnapshot",
    "ConsistencyAuditor",
    "ConsistencyReport",
    "DEFAULT_ACTIVITIES",
    "DailyLimitExceededError",
    "ExpirySweepResult",
    "InsufficientBalanceError",
    "InvalidActivityCodeError",
    "InvalidActivityError",
    "InvalidAmountError",
    "InvalidRedemptionTypeError",
    "Leaderboard",
    "LeaderboardEntry",
    "LeaderboardPeriod",
    "LeaderboardReader",
    "LedgerConflictError",
    "LedgerContentionError",
    "LedgerError",
    "LedgerInternalError",
    "LedgerNotFoundError",
    "LedgerStorageError",
    "LedgerValidationError",
    "PointsLedger",
    "PointsStatisticsService",
    "RedemptionAction",
    "RedemptionNotFoundError",
    "RedemptionPage",
    "RedemptionWorkflow",
    "ReconciliationReport",
    "ReservationOutcome",
    "SystemStatistics",
    "TotalLimitExceededError",
    "TransactionFilters",
    "TransactionNotFoundError",
    "TransactionPage",
    "UserBalanceDetail",
    "UserLockRegistry",
    "decode_time_uuid_cursor",
    "encode_time_uuid_cursor",
    "get_user_lock_registry",
    "normalize_activity_code",
]
