"""API endpoints for point balances, activities, redemptions and admin tooling."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from hustl_api.api.dependencies.identity import require_admin_id, require_user_id
from hustl_api.api.dependencies.security import require_admin_api_key
from hustl_api.db.session import get_session
from hustl_api.models.points import (
    PointActivity,
    PointRedemption,
    PointRedemptionStatus,
    PointTransaction,
    PointTransactionStatus,
    PointTransactionType,
)
from hustl_api.observability.points import get_points_store
from hustl_api.observability.scheduler import get_job_scheduler_store
from hustl_api.services.points import (
    ActivityCatalog,
    ActivityEligibility,
    AwardEngine,
    BalanceSnapshot,
    ConsistencyAuditor,
    PointsLedger,
    PointsStatisticsService,
    RedemptionWorkflow,
    TransactionFilters,
    decode_time_uuid_cursor,
    encode_time_uuid_cursor,
)
from hustl_api.services.points.activities import normalize_activity_code


router = APIRouter(prefix="/points", tags=["points"])


class BalanceResponse(BaseModel):
    userId: UUID
    currentPoints: int
    pendingPoints: int
    availablePoints: int
    totalEarned: int
    totalSpent: int
    creditCount: int
    debitCount: int
    pendingCount: int


class TransactionResponse(BaseModel):
    id: UUID
    userId: UUID
    transactionType: str
    amount: int
    balanceBefore: int
    balanceAfter: int
    activityType: str
    description: Optional[str]
    referenceId: Optional[str]
    referenceType: Optional[str]
    status: str
    processedBy: Optional[UUID]
    processedAt: Optional[datetime]
    occurredAt: datetime
    expiresAt: Optional[datetime]
    metadata: dict[str, Any]
    createdAt: datetime


class TransactionWindowResponse(BaseModel):
    transactions: List[TransactionResponse]
    total: int
    nextCursor: Optional[str]


class RedemptionResponse(BaseModel):
    id: UUID
    userId: UUID
    pointsRedeemed: int
    redemptionType: str
    redemptionValue: float
    redemptionDetails: dict[str, Any]
    status: str
    requestedAt: datetime
    processedAt: Optional[datetime]
    processedBy: Optional[UUID]
    adminNotes: Optional[str]
    transactionId: Optional[UUID]


class RedemptionWindowResponse(BaseModel):
    redemptions: List[RedemptionResponse]
    total: int
    nextCursor: Optional[str]


class RedemptionCreateRequest(BaseModel):
    pointsToRedeem: int = Field(..., description="Whole points to reserve")
    redemptionType: str = Field(..., description="Payout channel, e.g. cash or voucher")
    redemptionValue: Optional[float] = Field(None, description="Defaults to points divided by the configured rate")
    redemptionDetails: Optional[dict[str, Any]] = Field(None, description="Opaque payout instructions")


class RedemptionProcessRequest(BaseModel):
    action: Literal["approve", "reject"]
    notes: Optional[str] = Field(None, max_length=2000)


class ActivityResponse(BaseModel):
    code: str
    name: str
    description: Optional[str]
    pointsReward: int
    dailyLimit: Optional[int]
    totalLimit: Optional[int]
    isActive: bool
    validFrom: Optional[datetime]
    validUntil: Optional[datetime]


class ActivityAvailabilityResponse(ActivityResponse):
    canEarn: bool
    reason: Optional[str]
    earnedToday: int
    earnedTotal: int
    remainingToday: Optional[int]
    remainingTotal: Optional[int]


class ActivityCreateRequest(BaseModel):
    code: str
    name: str
    pointsReward: int
    description: Optional[str] = None
    dailyLimit: Optional[int] = None
    totalLimit: Optional[int] = None
    isActive: bool = True
    validFrom: Optional[datetime] = None
    validUntil: Optional[datetime] = None


class ActivityUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    pointsReward: Optional[int] = None
    dailyLimit: Optional[int] = None
    totalLimit: Optional[int] = None
    isActive: Optional[bool] = None
    validFrom: Optional[datetime] = None
    validUntil: Optional[datetime] = None


class ActivityCompletionRequest(BaseModel):
    userId: UUID
    occurredAt: Optional[datetime] = None
    referenceId: Optional[str] = Field(None, max_length=64)
    referenceType: Optional[str] = Field(None, max_length=50)
    metadata: Optional[dict[str, Any]] = None


class ManualAwardRequest(BaseModel):
    userId: UUID
    amount: int
    description: str = Field(..., min_length=1, max_length=500)
    referenceId: Optional[str] = Field(None, max_length=64)


class DriftResponse(BaseModel):
    userId: UUID
    cachedBalance: int
    computedBalance: int
    delta: int


class ConsistencyResponse(BaseModel):
    isConsistent: bool
    checkedUsers: int
    totalDiscrepancy: int
    passes: int
    checkedAt: datetime
    mismatches: List[DriftResponse]


class CorrectionResponse(BaseModel):
    userId: UUID
    oldBalance: int
    newBalance: int
    delta: int
    transactionId: UUID


class ReconciliationResponse(BaseModel):
    checkedUsers: int
    corrected: List[CorrectionResponse]
    skipped: List[UUID]
    errors: List[dict[str, Any]]
    completedAt: datetime


class ActivityBreakdownResponse(BaseModel):
    activityType: str
    transactionCount: int
    totalPoints: int


class TopBalanceResponse(BaseModel):
    userId: UUID
    currentPoints: int


class StatisticsResponse(BaseModel):
    start: Optional[datetime]
    end: Optional[datetime]
    totalTransactions: int
    totalPointsAwarded: int
    totalPointsRedeemed: int
    activeUsers: int
    netPointsInCirculation: int
    accounts: int
    totalCachedPoints: int
    pendingRedemptions: int
    pendingRedemptionPoints: int
    isConsistent: bool
    driftingAccounts: int
    byActivity: List[ActivityBreakdownResponse]
    topBalances: List[TopBalanceResponse]


class UserBalanceDetailResponse(BaseModel):
    balance: BalanceResponse
    computedBalance: int
    isConsistent: bool
    recentTransactions: List[TransactionResponse]
    activities: List[ActivityAvailabilityResponse]


def _serialize_snapshot(snapshot: BalanceSnapshot) -> BalanceResponse:
    return BalanceResponse(
        userId=snapshot.user_id,
        currentPoints=snapshot.current_points,
        pendingPoints=snapshot.pending_points,
        availablePoints=snapshot.available_points,
        totalEarned=snapshot.total_earned,
        totalSpent=snapshot.total_spent,
        creditCount=snapshot.credit_count,
        debitCount=snapshot.debit_count,
        pendingCount=snapshot.pending_count,
    )


def _serialize_transaction(transaction: PointTransaction) -> TransactionResponse:
    return TransactionResponse(
        id=transaction.id,
        userId=transaction.user_id,
        transactionType=transaction.transaction_type.value,
        amount=transaction.amount,
        balanceBefore=transaction.balance_before,
        balanceAfter=transaction.balance_after,
        activityType=transaction.activity_type,
        description=transaction.description,
        referenceId=transaction.reference_id,
        referenceType=transaction.reference_type,
        status=transaction.status.value,
        processedBy=transaction.processed_by,
        processedAt=transaction.processed_at,
        occurredAt=transaction.occurred_at,
        expiresAt=transaction.expires_at,
        metadata=dict(transaction.metadata_json or {}),
        createdAt=transaction.created_at,
    )


def _serialize_redemption(redemption: PointRedemption) -> RedemptionResponse:
    return RedemptionResponse(
        id=redemption.id,
        userId=redemption.user_id,
        pointsRedeemed=redemption.points_redeemed,
        redemptionType=redemption.redemption_type,
        redemptionValue=float(redemption.redemption_value),
        redemptionDetails=dict(redemption.redemption_details or {}),
        status=redemption.status.value,
        requestedAt=redemption.requested_at,
        processedAt=redemption.processed_at,
        processedBy=redemption.processed_by,
        adminNotes=redemption.admin_notes,
        transactionId=redemption.transaction_id,
    )


def _activity_fields(activity: PointActivity) -> dict[str, Any]:
    return {
        "code": activity.code,
        "name": activity.name,
        "description": activity.description,
        "pointsReward": activity.points_reward,
        "dailyLimit": activity.daily_limit,
        "totalLimit": activity.total_limit,
        "isActive": activity.is_active,
        "validFrom": activity.valid_from,
        "validUntil": activity.valid_until,
    }


def _serialize_eligibility(item: ActivityEligibility) -> ActivityAvailabilityResponse:
    return ActivityAvailabilityResponse(
        **_activity_fields(item.activity),
        canEarn=item.can_earn,
        reason=item.reason,
        earnedToday=item.earned_today,
        earnedTotal=item.earned_total,
        remainingToday=item.remaining_today,
        remainingTotal=item.remaining_total,
    )


def _decode_cursor(cursor: str | None, *, label: str):
    if not cursor:
        return None
    try:
        return decode_time_uuid_cursor(cursor)
    except Exception as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {label} cursor") from exc


def _parse_enum(enum_cls, value: str | None, *, label: str):
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Unsupported {label}: {value}") from exc


async def _transaction_window(
    db: AsyncSession,
    user_id: UUID | None,
    *,
    activity_type: str | None,
    transaction_type: str | None,
    status_filter: str | None,
    start: datetime | None,
    end: datetime | None,
    limit: int,
    cursor: str | None,
) -> TransactionWindowResponse:
    filters = TransactionFilters(
        activity_type=activity_type,
        transaction_type=_parse_enum(PointTransactionType, transaction_type, label="transaction type"),
        status=_parse_enum(PointTransactionStatus, status_filter, label="transaction status"),
        start=start,
        end=end,
    )
    page = await PointsLedger(db).get_transaction_history(
        user_id,
        filters=filters,
        limit=limit,
        cursor=_decode_cursor(cursor, label="transaction"),
    )
    return TransactionWindowResponse(
        transactions=[_serialize_transaction(item) for item in page.items],
        total=page.total,
        nextCursor=encode_time_uuid_cursor(*page.next_cursor) if page.next_cursor else None,
    )


async def _redemption_window(
    db: AsyncSession,
    user_id: UUID | None,
    *,
    status_filter: str | None,
    redemption_type: str | None,
    limit: int,
    cursor: str | None,
) -> RedemptionWindowResponse:
    page = await RedemptionWorkflow(db).list_redemptions(
        user_id=user_id,
        status=_parse_enum(PointRedemptionStatus, status_filter, label="redemption status"),
        redemption_type=redemption_type,
        limit=limit,
        cursor=_decode_cursor(cursor, label="redemption"),
    )
    return RedemptionWindowResponse(
        redemptions=[_serialize_redemption(item) for item in page.items],
        total=page.total,
        nextCursor=encode_time_uuid_cursor(*page.next_cursor) if page.next_cursor else None,
    )


# Member routes


@router.get("/me", response_model=BalanceResponse)
async def get_my_balance(
    user_id: UUID = Depends(require_user_id),
    db: AsyncSession = Depends(get_session),
) -> BalanceResponse:
    return _serialize_snapshot(await PointsLedger(db).snapshot(user_id))


@router.get("/me/transactions", response_model=TransactionWindowResponse)
async def list_my_transactions(
    limit: int = Query(25, ge=1, le=100),
    cursor: str | None = Query(None, description="Opaque cursor for pagination"),
    activityType: str | None = Query(None),
    transactionType: str | None = Query(None),
    status_filter: str | None = Query(None, alias="status"),
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    user_id: UUID = Depends(require_user_id),
    db: AsyncSession = Depends(get_session),
) -> TransactionWindowResponse:
    """Return the caller's ledger entries, newest first."""

    return await _transaction_window(
        db,
        user_id,
        activity_type=activityType,
        transaction_type=transactionType,
        status_filter=status_filter,
        start=start,
        end=end,
        limit=limit,
        cursor=cursor,
    )


@router.get("/me/redemptions", response_model=RedemptionWindowResponse)
async def list_my_redemptions(
    limit: int = Query(25, ge=1, le=100),
    cursor: str | None = Query(None, description="Opaque cursor for pagination"),
    status_filter: str | None = Query(None, alias="status"),
    redemptionType: str | None = Query(None),
    user_id: UUID = Depends(require_user_id),
    db: AsyncSession = Depends(get_session),
) -> RedemptionWindowResponse:
    return await _redemption_window(
        db,
        user_id,
        status_filter=status_filter,
        redemption_type=redemptionType,
        limit=limit,
        cursor=cursor,
    )


@router.post("/me/redemptions", response_model=RedemptionResponse, status_code=status.HTTP_201_CREATED)
async def create_my_redemption(
    request: RedemptionCreateRequest,
    user_id: UUID = Depends(require_user_id),
    db: AsyncSession = Depends(get_session),
) -> RedemptionResponse:
    redemption = await RedemptionWorkflow(db).request_redemption(
        user_id,
        request.pointsToRedeem,
        request.redemptionType,
        redemption_value=request.redemptionValue,
        details=request.redemptionDetails,
    )
    return _serialize_redemption(redemption)


@router.post("/me/redemptions/{redemption_id}/cancel", response_model=RedemptionResponse)
async def cancel_my_redemption(
    redemption_id: UUID,
    user_id: UUID = Depends(require_user_id),
    db: AsyncSession = Depends(get_session),
) -> RedemptionResponse:
    redemption = await RedemptionWorkflow(db).cancel_redemption(redemption_id, user_id)
    return _serialize_redemption(redemption)


@router.get("/activities", response_model=List[ActivityAvailabilityResponse])
async def list_available_activities(
    user_id: UUID = Depends(require_user_id),
    db: AsyncSession = Depends(get_session),
) -> List[ActivityAvailabilityResponse]:
    """Active activities with the caller's remaining headroom."""

    items = await ActivityCatalog(db).available_for_user(user_id)
    return [_serialize_eligibility(item) for item in items]


# Internal routes


@router.post(
    "/activities/{code}/completions",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin_api_key)],
)
async def record_activity_completion(
    code: str,
    request: ActivityCompletionRequest,
    db: AsyncSession = Depends(get_session),
) -> TransactionResponse:
    """Award points for an activity completion reported by another service."""

    transaction = await AwardEngine(db).award_for_activity(
        request.userId,
        code,
        occurred_at=request.occurredAt,
        reference_id=request.referenceId,
        reference_type=request.referenceType,
        metadata=request.metadata,
    )
    return _serialize_transaction(transaction)


# Admin routes


@router.get("/admin/transactions", response_model=TransactionWindowResponse)
async def list_all_transactions(
    limit: int = Query(50, ge=1, le=100),
    cursor: str | None = Query(None, description="Opaque cursor for pagination"),
    userId: UUID | None = Query(None),
    activityType: str | None = Query(None),
    transactionType: str | None = Query(None),
    status_filter: str | None = Query(None, alias="status"),
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    _: UUID = Depends(require_admin_id),
    db: AsyncSession = Depends(get_session),
) -> TransactionWindowResponse:
    return await _transaction_window(
        db,
        userId,
        activity_type=activityType,
        transaction_type=transactionType,
        status_filter=status_filter,
        start=start,
        end=end,
        limit=limit,
        cursor=cursor,
    )


@router.get("/admin/redemptions", response_model=RedemptionWindowResponse)
async def list_all_redemptions(
    limit: int = Query(50, ge=1, le=100),
    cursor: str | None = Query(None, description="Opaque cursor for pagination"),
    userId: UUID | None = Query(None),
    status_filter: str | None = Query(None, alias="status"),
    redemptionType: str | None = Query(None),
    _: UUID = Depends(require_admin_id),
    db: AsyncSession = Depends(get_session),
) -> RedemptionWindowResponse:
    return await _redemption_window(
        db,
        userId,
        status_filter=status_filter,
        redemption_type=redemptionType,
        limit=limit,
        cursor=cursor,
    )


@router.post("/admin/redemptions/{redemption_id}/process", response_model=RedemptionResponse)
async def process_redemption(
    redemption_id: UUID,
    request: RedemptionProcessRequest,
    admin_id: UUID = Depends(require_admin_id),
    db: AsyncSession = Depends(get_session),
) -> RedemptionResponse:
    redemption = await RedemptionWorkflow(db).process_redemption(
        redemption_id,
        admin_id,
        request.action,
        request.notes,
    )
    return _serialize_redemption(redemption)


@router.post("/admin/award", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def award_points_manually(
    request: ManualAwardRequest,
    admin_id: UUID = Depends(require_admin_id),
    db: AsyncSession = Depends(get_session),
) -> TransactionResponse:
    transaction = await AwardEngine(db).award_manual(
        request.userId,
        request.amount,
        admin_id,
        request.description,
        reference_id=request.referenceId,
    )
    return _serialize_transaction(transaction)


@router.get("/admin/statistics", response_model=StatisticsResponse)
async def get_points_statistics(
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    top: int = Query(10, ge=1, le=100),
    _: UUID = Depends(require_admin_id),
    db: AsyncSession = Depends(get_session),
) -> StatisticsResponse:
    stats = await PointsStatisticsService(db).system_statistics(start=start, end=end, top=top)
    return StatisticsResponse(
        start=stats.start,
        end=stats.end,
        totalTransactions=stats.total_transactions,
        totalPointsAwarded=stats.total_points_awarded,
        totalPointsRedeemed=stats.total_points_redeemed,
        activeUsers=stats.active_users,
        netPointsInCirculation=stats.net_points_in_circulation,
        accounts=stats.accounts,
        totalCachedPoints=stats.total_cached_points,
        pendingRedemptions=stats.pending_redemptions,
        pendingRedemptionPoints=stats.pending_redemption_points,
        isConsistent=stats.is_consistent,
        driftingAccounts=stats.drifting_accounts,
        byActivity=[
            ActivityBreakdownResponse(
                activityType=item.activity_type,
                transactionCount=item.transaction_count,
                totalPoints=item.total_points,
            )
            for item in stats.by_activity
        ],
        topBalances=[TopBalanceResponse(userId=user_id, currentPoints=points) for user_id, points in stats.top_balances],
    )


@router.get("/admin/users/{user_id}/balance", response_model=UserBalanceDetailResponse)
async def get_user_balance_detail(
    user_id: UUID,
    _: UUID = Depends(require_admin_id),
    db: AsyncSession = Depends(get_session),
) -> UserBalanceDetailResponse:
    detail = await PointsStatisticsService(db).user_balance_detail(user_id)
    return UserBalanceDetailResponse(
        balance=_serialize_snapshot(detail.snapshot),
        computedBalance=detail.computed_balance,
        isConsistent=detail.is_consistent,
        recentTransactions=[_serialize_transaction(item) for item in detail.recent_transactions],
        activities=[_serialize_eligibility(item) for item in detail.activities],
    )


@router.get("/admin/consistency", response_model=ConsistencyResponse)
async def check_points_consistency(
    userId: List[UUID] | None = Query(None),
    _: UUID = Depends(require_admin_id),
    db: AsyncSession = Depends(get_session),
) -> ConsistencyResponse:
    report = await ConsistencyAuditor(db).check_consistency(userId or None)
    return ConsistencyResponse(
        isConsistent=report.is_consistent,
        checkedUsers=report.checked_users,
        totalDiscrepancy=report.total_discrepancy,
        passes=report.passes,
        checkedAt=report.checked_at,
        mismatches=[DriftResponse(**drift.as_dict()) for drift in report.mismatches],
    )


@router.post("/admin/consistency/fix", response_model=ReconciliationResponse)
async def fix_points_consistency(
    userId: List[UUID] | None = Query(None),
    admin_id: UUID = Depends(require_admin_id),
    db: AsyncSession = Depends(get_session),
) -> ReconciliationResponse:
    result = await ConsistencyAuditor(db).fix_inconsistent_balances(userId or None, admin_id=admin_id)
    return ReconciliationResponse(
        checkedUsers=result.checked_users,
        corrected=[
            CorrectionResponse(
                userId=item.user_id,
                oldBalance=item.old_balance,
                newBalance=item.new_balance,
                delta=item.delta,
                transactionId=item.transaction_id,
            )
            for item in result.corrections
        ],
        skipped=result.skipped,
        errors=result.errors,
        completedAt=result.completed_at,
    )


@router.get("/admin/activities", response_model=List[ActivityResponse])
async def list_point_activities(
    includeInactive: bool = Query(True),
    _: UUID = Depends(require_admin_id),
    db: AsyncSession = Depends(get_session),
) -> List[ActivityResponse]:
    activities = await ActivityCatalog(db).list_activities(include_inactive=includeInactive)
    return [ActivityResponse(**_activity_fields(activity)) for activity in activities]


@router.post("/admin/activities", response_model=ActivityResponse, status_code=status.HTTP_201_CREATED)
async def create_point_activity(
    request: ActivityCreateRequest,
    admin_id: UUID = Depends(require_admin_id),
    db: AsyncSession = Depends(get_session),
) -> ActivityResponse:
    activity = await ActivityCatalog(db).create_activity(
        code=request.code,
        name=request.name,
        points_reward=request.pointsReward,
        description=request.description,
        daily_limit=request.dailyLimit,
        total_limit=request.totalLimit,
        is_active=request.isActive,
        valid_from=request.validFrom,
        valid_until=request.validUntil,
        created_by=admin_id,
    )
    return ActivityResponse(**_activity_fields(activity))


_ACTIVITY_FIELD_NAMES = {
    "name": "name",
    "description": "description",
    "pointsReward": "points_reward",
    "dailyLimit": "daily_limit",
    "totalLimit": "total_limit",
    "isActive": "is_active",
    "validFrom": "valid_from",
    "validUntil": "valid_until",
}


@router.patch("/admin/activities/{code}", response_model=ActivityResponse)
async def update_point_activity(
    code: str,
    request: ActivityUpdateRequest,
    _: UUID = Depends(require_admin_id),
    db: AsyncSession = Depends(get_session),
) -> ActivityResponse:
    changes = {
        _ACTIVITY_FIELD_NAMES[name]: value
        for name, value in request.model_dump(exclude_unset=True).items()
    }
    activity = await ActivityCatalog(db).update_activity(normalize_activity_code(code), **changes)
    return ActivityResponse(**_activity_fields(activity))


@router.get("/admin/observability")
async def get_points_observability(_: UUID = Depends(require_admin_id)) -> dict[str, Any]:
    return {
        "ledger": get_points_store().snapshot().as_dict(),
        "scheduler": get_job_scheduler_store().snapshot().as_dict(),
    }
