"""
Pytest configuration and fixtures.
"""
import os

# Settings are read at import time by the API module
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_fake_key_for_testing")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("AUTH_JWT_SECRET", "test-jwt-secret-with-enough-length-for-hs256")

from datetime import datetime, timedelta, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional  # noqa: E402

import jwt  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from crown_settlement.config import Settings, get_settings  # noqa: E402
from crown_settlement.core.domain import Candidate, ChargeResult  # noqa: E402
from crown_settlement.database.memory import InMemoryCandidateStore  # noqa: E402
from crown_settlement.integrations.gateway import PaymentMethodInfo  # noqa: E402

JWT_SECRET = os.environ["AUTH_JWT_SECRET"]
CRON_SECRET = "test-cron-secret"
OPERATOR_UID = "operator_1"


def pytest_configure(config: Any) -> None:
    config.addinivalue_line("markers", "unit: fast tests with no external services")
    config.addinivalue_line("markers", "integration: tests that exercise a real database or the HTTP stack")


class FixedClock:
    """Settable clock returning aware UTC datetimes."""

    def __init__(self, current: datetime):
        self.current = current

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: Any) -> None:
        self.current += timedelta(**kwargs)


class FakeGateway:
    """
    Scripted payment gateway.

    ``outcomes`` maps a candidate key to a PaymentIntent status string or an
    exception to raise; unscripted candidates succeed.
    """

    def __init__(self) -> None:
        self.outcomes: Dict[str, Any] = {}
        self.charges: List[Dict[str, Any]] = []
        self.payment_methods: Dict[str, PaymentMethodInfo] = {}
        self.attached: List[tuple] = []
        self.detached: List[str] = []
        self.defaults: Dict[str, Optional[str]] = {}
        self.customers: List[Dict[str, Any]] = []
        self.setup_intents: List[str] = []

    @property
    def charged_keys(self) -> List[str]:
        return [c["metadata"]["uid"] for c in self.charges]

    async def create_and_confirm_charge(
        self,
        amount_cents: int,
        currency: str,
        customer_id: str,
        payment_method_id: str,
        idempotency_key: str,
        metadata: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
    ) -> ChargeResult:
        self.charges.append(
            {
                "amount_cents": amount_cents,
                "currency": currency,
                "customer_id": customer_id,
                "payment_method_id": payment_method_id,
                "idempotency_key": idempotency_key,
                "metadata": metadata or {},
            }
        )
        outcome = self.outcomes.get((metadata or {}).get("uid"), "succeeded")
        if isinstance(outcome, Exception):
            raise outcome
        return ChargeResult(status=outcome, charge_ref=f"pi_test_{len(self.charges)}")

    async def retrieve_payment_method(self, payment_method_id: str) -> PaymentMethodInfo:
        return self.payment_methods.get(
            payment_method_id,
            PaymentMethodInfo(id=payment_method_id, brand="visa", last4="4242", customer_id=None),
        )

    async def attach_payment_method(self, payment_method_id: str, customer_id: str) -> None:
        self.attached.append((payment_method_id, customer_id))

    async def detach_payment_method(self, payment_method_id: str) -> None:
        self.detached.append(payment_method_id)

    async def set_default_payment_method(self, customer_id: str, payment_method_id: str) -> None:
        self.defaults[customer_id] = payment_method_id

    async def clear_default_payment_method(self, customer_id: str) -> None:
        self.defaults[customer_id] = None

    async def create_customer(
        self, email: Optional[str], metadata: Optional[Dict[str, Any]] = None
    ) -> str:
        self.customers.append({"email": email, "metadata": metadata or {}})
        return f"cus_new_{len(self.customers)}"

    async def create_setup_intent(self, customer_id: str) -> str:
        self.setup_intents.append(customer_id)
        return f"seti_secret_{customer_id}"


@pytest.fixture
def settings() -> Settings:
    """Test settings."""
    return Settings(
        stripe_secret_key="sk_test_fake_key_for_testing",
        database_url="sqlite+aiosqlite:///:memory:",
        cron_secret=CRON_SECRET,
        operator_uids=f"{OPERATOR_UID}, operator_2",
        auth_jwt_secret=JWT_SECRET,
        app_name="crown-settlement-test",
        app_env="test",
        log_level="DEBUG",
        debug=True,
    )


@pytest.fixture
def clock() -> FixedClock:
    # 00:10 in Chicago (CST, UTC-6) on 2025-01-06
    return FixedClock(datetime(2025, 1, 6, 6, 10, tzinfo=timezone.utc))


@pytest.fixture
def date_key() -> str:
    return "2025-01-06"


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def memory_store() -> InMemoryCandidateStore:
    return InMemoryCandidateStore()


@pytest.fixture
def make_candidate() -> Callable[..., Candidate]:
    """Factory for fully chargeable candidates."""

    def factory(key: str, bid: Optional[str] = "100.00", **fields: Any) -> Candidate:
        defaults: Dict[str, Any] = {
            "bid_amount": Decimal(bid) if bid is not None else None,
            "is_active": True,
            "stripe_customer_id": f"cus_{key}",
            "stripe_default_payment_method_id": f"pm_{key}",
            "full_name": f"User {key}",
        }
        defaults.update(fields)
        return Candidate(key=key, **defaults)

    return factory


def make_token(sub: str, secret: str = JWT_SECRET, **claims: Any) -> str:
    return jwt.encode({"sub": sub, **claims}, secret, algorithm="HS256")


@pytest.fixture
def operator_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {make_token(OPERATOR_UID)}"}


@pytest.fixture
def user_headers() -> Callable[[str], Dict[str, str]]:
    def headers(uid: str, **claims: Any) -> Dict[str, str]:
        return {"Authorization": f"Bearer {make_token(uid, **claims)}"}

    return headers


@pytest.fixture
def cron_headers() -> Dict[str, str]:
    return {"X-Cron-Secret": CRON_SECRET}


@pytest_asyncio.fixture
async def client(
    settings: Settings,
    memory_store: InMemoryCandidateStore,
    gateway: FakeGateway,
) -> AsyncGenerator[AsyncClient, Any]:
    """HTTP client against the app with the in-memory store and fake gateway."""
    from crown_settlement.api.dependencies import get_gateway, get_store
    from crown_settlement.api.main import app

    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_store] = lambda: memory_store
    app.dependency_overrides[get_gateway] = lambda: gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
