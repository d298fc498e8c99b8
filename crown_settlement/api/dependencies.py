"""FastAPI dependency providers for the store, gateway and services."""
from functools import lru_cache

from fastapi import Depends

from crown_settlement.config import Settings, get_settings
from crown_settlement.core.engine import SettlementEngine
from crown_settlement.core.override import ManualOverride
from crown_settlement.core.profiles import PaymentProfileService
from crown_settlement.database.connection import get_session_factory
from crown_settlement.database.store import CandidateStore, SqlCandidateStore
from crown_settlement.integrations.gateway import PaymentGateway
from crown_settlement.integrations.stripe_client import StripeClient
from crown_settlement.monitoring.health import HealthCheck


def get_store() -> CandidateStore:
    return SqlCandidateStore(get_session_factory())


@lru_cache()
def get_gateway() -> PaymentGateway:
    # One client per process so the circuit breaker state is shared
    return StripeClient()


@lru_cache()
def get_health_check() -> HealthCheck:
    return HealthCheck()


def get_settlement_engine(
    store: CandidateStore = Depends(get_store),
    gateway: PaymentGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
) -> SettlementEngine:
    return SettlementEngine(store, gateway, settings)


def get_manual_override(
    store: CandidateStore = Depends(get_store),
    gateway: PaymentGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
) -> ManualOverride:
    return ManualOverride(store, gateway, settings)


def get_profile_service(
    store: CandidateStore = Depends(get_store),
    gateway: PaymentGateway = Depends(get_gateway),
) -> PaymentProfileService:
    return PaymentProfileService(store, gateway)
