"""
Pydantic schemas for API request/response models.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SettlementResponse(BaseModel):
    """Response schema for a settlement run."""

    ok: bool = Field(..., description="True when a winner was crowned or the day was skipped")
    status: str = Field(..., description="won, already_settled, already_settling, no_candidates, no_active_candidates or all_failed")
    date_key: str = Field(..., description="Settlement day in the settlement timezone")
    winner_uid: Optional[str] = Field(default=None, description="Crowned candidate")
    amount_cents: Optional[int] = Field(default=None, description="Charged amount in cents")
    payment_intent_id: Optional[str] = Field(default=None, description="Stripe PaymentIntent ID")
    error: Optional[str] = Field(default=None, description="Why nobody was crowned")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "ok": True,
                    "status": "won",
                    "date_key": "2025-01-06",
                    "winner_uid": "uid_123",
                    "amount_cents": 2500,
                    "payment_intent_id": "pi_1234567890",
                }
            ]
        }
    }


class AssignCrownRequest(BaseModel):
    """Request schema for a manual crown assignment."""

    target_uid: str = Field(..., min_length=1, description="Candidate to crown")
    amount_cents: Optional[int] = Field(
        default=None, gt=0, description="Charge amount in cents (defaults to the stored bid)"
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"target_uid": "uid_123"},
                {"target_uid": "uid_123", "amount_cents": 5000},
            ]
        }
    }


class AssignCrownResponse(BaseModel):
    """Response schema for a manual crown assignment."""

    ok: bool = Field(default=True)
    uid: str = Field(..., description="Crowned candidate")
    amount_cents: int = Field(..., description="Charged amount in cents")
    payment_intent_id: str = Field(..., description="Stripe PaymentIntent ID")
    date_key: str = Field(..., description="Settlement day")


class ChampionView(BaseModel):
    """Display fields of a champion."""

    name: str = ""
    bio: str = ""
    photo_url: str = ""


class CrownSnapshotResponse(BaseModel):
    """Public crown snapshot; never joins against candidates."""

    winner_uid: Optional[str] = None
    champion: ChampionView
    crowned_since: Optional[datetime] = None
    settlement_date_key: Optional[str] = None


class UserSummary(BaseModel):
    """Operator view of one candidate."""

    uid: str
    full_name: str = ""
    email: str = ""
    bio: str = ""
    photo_url: str = ""
    crown_price: float = 0
    is_active: bool = False
    has_payment_method: bool = False
    updated_at: Optional[Any] = None


class UsersResponse(BaseModel):
    users: List[UserSummary]


class CrownStatusResponse(BaseModel):
    """Operator view of crown status with live and snapshot champion data."""

    crown: Dict[str, Any] = Field(..., description="Raw crown status record")
    user: Optional[Dict[str, Any]] = Field(default=None, description="Live profile of the winner")
    snapshot_champion: ChampionView
    user_champion: ChampionView
    resolved_champion: ChampionView


class EventResponse(BaseModel):
    event_type: str
    candidate_key: str
    charge_cents: int
    date_key: str
    provenance: str
    charge_ref: Optional[str] = None
    gateway_status: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None


class EventsResponse(BaseModel):
    events: List[EventResponse]


class SetupIntentRequest(BaseModel):
    email: Optional[str] = Field(default=None, description="Email for a new Stripe customer")


class SetupIntentResponse(BaseModel):
    client_secret: str = Field(..., description="SetupIntent client secret")
    customer_id: str = Field(..., description="Stripe customer ID")


class AttachMethodRequest(BaseModel):
    customer_id: str = Field(..., min_length=1, description="Stripe customer ID")
    payment_method_id: str = Field(..., min_length=1, description="Stripe PaymentMethod ID")


class AttachMethodResponse(BaseModel):
    success: bool = True
    customer_id: str
    payment_method_id: str


class SetDefaultMethodRequest(BaseModel):
    payment_method_id: str = Field(..., min_length=1, description="Stripe PaymentMethod ID")


class SetDefaultMethodResponse(BaseModel):
    ok: bool = True
    card_brand: Optional[str] = None
    card_last4: Optional[str] = None


class DeleteMethodRequest(BaseModel):
    payment_method_id: str = Field(..., min_length=1, description="Stripe PaymentMethod ID")


class DeleteMethodResponse(BaseModel):
    success: bool = True


class QueueEntryView(BaseModel):
    """Public queue entry; no profile or payment data."""

    uid: str
    crown_price: float
    is_active: bool
    price_joined_at: Optional[datetime] = None


class QueuePositionResponse(BaseModel):
    crown_price: float = Field(..., description="Caller's current crown price")
    position: Optional[int] = Field(default=None, description="1-based place in the price tier")
    tier_size: Optional[int] = Field(default=None, description="Active candidates at this price")


class QueueTierResponse(BaseModel):
    crown_price: float
    entries: List[QueueEntryView]


class OkResponse(BaseModel):
    ok: bool = True
    message: Optional[str] = None


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
