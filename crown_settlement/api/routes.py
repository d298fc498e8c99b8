"""
API routes for crown settlement.
"""
from decimal import Decimal
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from crown_settlement.core.domain import Candidate, CrownStatus, SettlementStatus
from crown_settlement.core.engine import SettlementEngine
from crown_settlement.core.override import AssignmentError, ManualOverride
from crown_settlement.core.profiles import PaymentProfileError, PaymentProfileService
from crown_settlement.core.resolution import payment_method_ref
from crown_settlement.database.store import CandidateStore
from crown_settlement.integrations.stripe_client import StripeError
from crown_settlement.monitoring.health import HealthCheck

from .auth import Principal, require_cron_secret, require_operator, require_user
from .dependencies import (
    get_health_check,
    get_manual_override,
    get_profile_service,
    get_settlement_engine,
    get_store,
)
from .schemas import (
    AssignCrownRequest,
    AssignCrownResponse,
    AttachMethodRequest,
    AttachMethodResponse,
    ChampionView,
    CrownSnapshotResponse,
    CrownStatusResponse,
    DeleteMethodRequest,
    DeleteMethodResponse,
    EventResponse,
    EventsResponse,
    HealthCheckResponse,
    OkResponse,
    QueueEntryView,
    QueuePositionResponse,
    QueueTierResponse,
    SetDefaultMethodRequest,
    SetDefaultMethodResponse,
    SettlementResponse,
    SetupIntentRequest,
    SetupIntentResponse,
    UserSummary,
    UsersResponse,
)

logger = structlog.get_logger(__name__)

# Create routers
cron_router = APIRouter(prefix="/cron", tags=["cron"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])
public_router = APIRouter(tags=["crown"])
payment_router = APIRouter(prefix="/payment", tags=["payment"])
queue_router = APIRouter(prefix="/queue", tags=["queue"])
monitoring_router = APIRouter(tags=["monitoring"])

SETTLEMENT_STATUS_CODES = {
    SettlementStatus.WON: status.HTTP_200_OK,
    SettlementStatus.ALREADY_SETTLED: status.HTTP_200_OK,
    SettlementStatus.ALREADY_SETTLING: status.HTTP_200_OK,
    SettlementStatus.NO_CANDIDATES: status.HTTP_404_NOT_FOUND,
    SettlementStatus.NO_ACTIVE_CANDIDATES: status.HTTP_404_NOT_FOUND,
    SettlementStatus.ALL_FAILED: status.HTTP_402_PAYMENT_REQUIRED,
}

NO_WINNER_MESSAGES = {
    SettlementStatus.NO_CANDIDATES: "No offers found",
    SettlementStatus.NO_ACTIVE_CANDIDATES: "No active offers found",
    SettlementStatus.ALL_FAILED: "All top offers failed",
}


def _champion_from_status(crown: CrownStatus) -> ChampionView:
    return ChampionView(
        name=crown.champion_name or "",
        bio=crown.champion_bio or "",
        photo_url=crown.champion_photo_url or "",
    )


def _champion_from_candidate(candidate: Optional[Candidate]) -> ChampionView:
    if candidate is None:
        return ChampionView()
    return ChampionView(
        name=candidate.full_name or candidate.display_name or "",
        bio=candidate.bio or "",
        photo_url=candidate.photo_url or "",
    )


@cron_router.post(
    "/settle-crown",
    response_model=SettlementResponse,
    summary="Run nightly settlement",
    description="Settle today's crown; ?force=1 clears a stuck lock instead",
    dependencies=[Depends(require_cron_secret)],
)
async def settle_crown(
    force: Optional[str] = Query(default=None),
    engine: SettlementEngine = Depends(get_settlement_engine),
) -> JSONResponse:
    """Scheduler entry point. Safe to call repeatedly on the same day."""
    if force == "1":
        await engine.force_unlock()
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"ok": True, "forced_unlock": True, "date_key": engine.today()},
        )

    try:
        outcome = await engine.run()
    except Exception as e:
        logger.error("api_settle_crown_error", error=str(e))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"ok": False, "error": "Settlement failed", "details": str(e)},
        )

    payload = outcome.to_dict()
    if outcome.status in NO_WINNER_MESSAGES:
        payload["error"] = NO_WINNER_MESSAGES[outcome.status]
    return JSONResponse(
        status_code=SETTLEMENT_STATUS_CODES[outcome.status],
        content=SettlementResponse(**payload).model_dump(exclude_none=True),
    )


@admin_router.post(
    "/assign-crown-now",
    response_model=AssignCrownResponse,
    summary="Crown a candidate now",
    description="Charge one candidate immediately and crown them on success",
)
async def assign_crown_now(
    request: AssignCrownRequest,
    operator: Principal = Depends(require_operator),
    override: ManualOverride = Depends(get_manual_override),
) -> Any:
    """Manual crown assignment."""
    logger.info(
        "api_assign_crown_request",
        operator=operator.uid,
        target_uid=request.target_uid,
        amount_cents=request.amount_cents,
    )
    try:
        result = await override.assign_now(
            request.target_uid,
            amount_override=request.amount_cents,
            operator=operator.uid,
        )
    except AssignmentError as e:
        logger.warning(
            "api_assign_crown_rejected",
            target_uid=request.target_uid,
            reason=e.reason,
            status_code=e.status_code,
        )
        return JSONResponse(
            status_code=e.status_code,
            content={"error": e.reason, **e.details},
        )

    return result.model_dump()


@admin_router.post(
    "/force-unlock",
    response_model=OkResponse,
    summary="Clear the settlement lock",
)
async def force_unlock(
    operator: Principal = Depends(require_operator),
    engine: SettlementEngine = Depends(get_settlement_engine),
) -> Dict[str, Any]:
    """Operator recovery for a lock left behind by a crashed run."""
    logger.warning("api_force_unlock", operator=operator.uid)
    await engine.force_unlock()
    return {"ok": True, "message": "Settlement lock cleared"}


@admin_router.get(
    "/crown-status",
    response_model=CrownStatusResponse,
    summary="Inspect crown status",
    dependencies=[Depends(require_operator)],
)
async def crown_status(store: CandidateStore = Depends(get_store)) -> Dict[str, Any]:
    """Raw crown status plus the snapshot, live and resolved champion views."""
    crown = await store.get_crown_status()

    winner: Optional[Candidate] = None
    user: Optional[Dict[str, Any]] = None
    if crown.active_winner_key:
        winner = await store.get_candidate(crown.active_winner_key)
        user = {"uid": crown.active_winner_key}
        if winner is not None:
            user.update(
                full_name=winner.full_name or winner.display_name or "",
                email=winner.email or "",
                photo_url=winner.photo_url or "",
                bio=winner.bio or "",
            )

    snapshot = _champion_from_status(crown)
    live = _champion_from_candidate(winner)
    # What the public sees first, falling back to the live profile
    resolved = ChampionView(
        name=snapshot.name or live.name,
        bio=snapshot.bio or live.bio,
        photo_url=snapshot.photo_url or live.photo_url,
    )

    return {
        "crown": crown.model_dump(mode="json"),
        "user": user,
        "snapshot_champion": snapshot,
        "user_champion": live,
        "resolved_champion": resolved,
    }


@admin_router.get(
    "/users",
    response_model=UsersResponse,
    summary="List candidates",
    dependencies=[Depends(require_operator)],
)
async def list_users(store: CandidateStore = Depends(get_store)) -> Dict[str, Any]:
    candidates = await store.list_candidates()
    return {
        "users": [
            UserSummary(
                uid=c.key,
                full_name=c.full_name or c.display_name or "",
                email=c.email or "",
                bio=c.bio or "",
                photo_url=c.photo_url or "",
                crown_price=float(c.bid_amount or 0),
                is_active=c.is_active,
                has_payment_method=bool(c.stripe_customer_id and payment_method_ref(c)),
                updated_at=c.updated_at,
            )
            for c in candidates
        ]
    }


@admin_router.get(
    "/events",
    response_model=EventsResponse,
    summary="Settlement event log",
    dependencies=[Depends(require_operator)],
)
async def list_events(
    limit: int = Query(default=100, ge=1, le=1000),
    date_key: Optional[str] = Query(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$"),
    store: CandidateStore = Depends(get_store),
) -> Dict[str, Any]:
    events = await store.list_events(limit=limit, date_key=date_key)
    return {
        "events": [EventResponse(**event.model_dump(mode="json")) for event in events]
    }


@public_router.get(
    "/crown",
    response_model=CrownSnapshotResponse,
    summary="Current champion",
    description="Public snapshot written at win time",
)
async def current_crown(store: CandidateStore = Depends(get_store)) -> Dict[str, Any]:
    crown = await store.get_crown_status()
    return {
        "winner_uid": crown.active_winner_key,
        "champion": _champion_from_status(crown),
        "crowned_since": crown.crowned_since,
        "settlement_date_key": crown.settlement_date_key,
    }


def _profile_error(e: PaymentProfileError) -> JSONResponse:
    content: Dict[str, Any] = {"error": e.message}
    if e.details:
        content["details"] = e.details
    return JSONResponse(status_code=e.status_code, content=content)


def _gateway_error(action: str, e: StripeError) -> HTTPException:
    logger.error("api_payment_gateway_error", action=action, error=str(e))
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail={"error": f"Failed to {action}", "details": str(e)},
    )


@payment_router.post(
    "/create-setup-intent",
    response_model=SetupIntentResponse,
    summary="Start card vaulting",
)
async def create_setup_intent(
    request: SetupIntentRequest,
    user: Principal = Depends(require_user),
    service: PaymentProfileService = Depends(get_profile_service),
) -> Any:
    try:
        return await service.create_setup_intent(user.uid, request.email)
    except StripeError as e:
        raise _gateway_error("create SetupIntent", e)


@payment_router.post(
    "/attach-method",
    response_model=AttachMethodResponse,
    summary="Attach a payment method",
)
async def attach_method(
    request: AttachMethodRequest,
    user: Principal = Depends(require_user),
    service: PaymentProfileService = Depends(get_profile_service),
) -> Any:
    try:
        result = await service.attach_payment_method(
            request.customer_id, request.payment_method_id, candidate_key=user.uid
        )
    except PaymentProfileError as e:
        return _profile_error(e)
    except StripeError as e:
        raise _gateway_error("set default payment method", e)
    return {"success": True, **result}


@payment_router.post(
    "/set-default-payment-method",
    response_model=SetDefaultMethodResponse,
    summary="Save the default payment method",
)
async def set_default_payment_method(
    request: SetDefaultMethodRequest,
    user: Principal = Depends(require_user),
    service: PaymentProfileService = Depends(get_profile_service),
) -> Any:
    try:
        return await service.set_default_payment_method(user.uid, request.payment_method_id)
    except PaymentProfileError as e:
        return _profile_error(e)
    except StripeError as e:
        raise _gateway_error("save payment method", e)


@payment_router.post(
    "/delete-method",
    response_model=DeleteMethodResponse,
    summary="Remove a stored card",
)
async def delete_method(
    request: DeleteMethodRequest,
    user: Principal = Depends(require_user),
    service: PaymentProfileService = Depends(get_profile_service),
) -> Any:
    try:
        await service.delete_payment_method(user.uid, request.payment_method_id)
    except PaymentProfileError as e:
        return _profile_error(e)
    except StripeError as e:
        raise _gateway_error("detach payment method", e)
    return {"success": True}


@payment_router.post(
    "/deactivate",
    response_model=OkResponse,
    summary="Deactivate account",
)
async def deactivate(
    user: Principal = Depends(require_user),
    service: PaymentProfileService = Depends(get_profile_service),
) -> Any:
    try:
        await service.deactivate(user.uid)
    except PaymentProfileError as e:
        return _profile_error(e)
    return {"ok": True}


@queue_router.post(
    "/sync",
    response_model=QueueEntryView,
    summary="Refresh the caller's public queue entry",
)
async def sync_queue_entry(
    user: Principal = Depends(require_user),
    service: PaymentProfileService = Depends(get_profile_service),
) -> Any:
    try:
        entry = await service.sync_queue_entry(user.uid)
    except PaymentProfileError as e:
        return _profile_error(e)
    return QueueEntryView(
        uid=entry.key,
        crown_price=float(entry.crown_price),
        is_active=entry.is_active,
        price_joined_at=entry.price_joined_at,
    )


@queue_router.get(
    "/position",
    response_model=QueuePositionResponse,
    summary="Caller's place in their price tier",
)
async def queue_position(
    user: Principal = Depends(require_user),
    service: PaymentProfileService = Depends(get_profile_service),
) -> Any:
    try:
        result = await service.queue_position(user.uid)
    except PaymentProfileError as e:
        return _profile_error(e)
    return {**result, "crown_price": float(result["crown_price"])}


@queue_router.get(
    "/tier",
    response_model=QueueTierResponse,
    summary="Public queue for one price",
    description="Active candidates at crown_price, earliest joiner first",
)
async def queue_tier(
    crown_price: Decimal = Query(..., gt=0),
    service: PaymentProfileService = Depends(get_profile_service),
) -> Dict[str, Any]:
    tier = await service.queue_tier(crown_price)
    return {
        "crown_price": float(crown_price),
        "entries": [
            QueueEntryView(
                uid=entry.key,
                crown_price=float(entry.crown_price),
                is_active=entry.is_active,
                price_joined_at=entry.price_joined_at,
            )
            for entry in tier
        ],
    }


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    try:
        return await health_check.check_all()
    except Exception as e:
        logger.error("health_check_error", error=str(e))
        return {
            "status": "unhealthy",
            "checks": {"error": str(e)},
        }


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness check",
)
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Liveness check endpoint."""
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness check",
)
async def readiness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Readiness check endpoint."""
    try:
        result = await health_check.readiness()
        if result["status"] != "healthy":
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
        return result
    except HTTPException:
        raise
    except Exception as e:
        logger.error("readiness_check_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "unhealthy", "error": str(e)},
        )


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
