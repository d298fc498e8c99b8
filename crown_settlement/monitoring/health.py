"""
Health checks for liveness and readiness checks.

Checks:
- Database connectivity
- Stripe API reachability
- Settlement lock age (reported on /health only, never fails readiness)
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, Tuple

import stripe
import structlog
from sqlalchemy import text

from crown_settlement.config import get_settings
from crown_settlement.database.connection import get_session_factory
from crown_settlement.database.models import CROWN_STATUS_ID, CrownStatusRecord

logger = structlog.get_logger(__name__)

Check = Tuple[str, Callable[[], Awaitable[Dict[str, Any]]]]


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """
    Health check service for monitoring system dependencies.

    Readiness only depends on the database and Stripe. A stuck settlement
    lock shows up in the full report so an operator can force-unlock it.
    """

    def __init__(self) -> None:
        self.settings = get_settings()

    async def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Raises:
            HealthCheckError: If database check fails
        """
        try:
            async with get_session_factory()() as db:
                result = await db.execute(text("SELECT 1"))
                result.scalar()
        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {str(e)}")

        return {"status": "healthy", "service": "database"}

    async def check_stripe(self) -> Dict[str, Any]:
        """
        Check Stripe API reachability.

        Raises:
            HealthCheckError: If Stripe check fails
        """
        try:
            stripe.api_key = self.settings.stripe_secret_key
            # Balance is the cheapest authenticated read
            await asyncio.to_thread(stripe.Balance.retrieve)
        except Exception as e:
            logger.error("stripe_health_check_failed", error=str(e))
            raise HealthCheckError(f"Stripe health check failed: {str(e)}")

        return {
            "status": "healthy",
            "service": "stripe",
            "test_mode": self.settings.is_test_mode,
        }

    async def check_settlement(self) -> Dict[str, Any]:
        """
        Report the last settled day and whether the settlement lock is stale.

        Raises:
            HealthCheckError: If the lock is older than the stale threshold
        """
        try:
            async with get_session_factory()() as db:
                record = await db.get(CrownStatusRecord, CROWN_STATUS_ID)
        except Exception as e:
            raise HealthCheckError(f"Settlement status unavailable: {str(e)}")

        settled_for = record.settlement_date_key if record else None
        locked_since = record.lock_holder_since if record else None
        if locked_since is not None:
            if locked_since.tzinfo is None:
                locked_since = locked_since.replace(tzinfo=timezone.utc)
            age = datetime.now(timezone.utc) - locked_since
            stale_after = timedelta(seconds=self.settings.settlement_lock_stale_seconds)
            if age >= stale_after:
                logger.warning("settlement_lock_stale", lock_age_seconds=age.total_seconds())
                raise HealthCheckError(
                    f"Settlement lock held for {int(age.total_seconds())}s; force-unlock required"
                )

        return {
            "status": "healthy",
            "service": "settlement",
            "settlement_date_key": settled_for,
            "locked": locked_since is not None,
        }

    async def _run(self, checks: Iterable[Check]) -> Dict[str, Any]:
        results: Dict[str, Any] = {}
        all_healthy = True

        for name, check in checks:
            try:
                results[name] = await check()
            except HealthCheckError as e:
                results[name] = {"status": "unhealthy", "service": name, "error": str(e)}
                all_healthy = False

        return {
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": results,
        }

    async def check_all(self) -> Dict[str, Any]:
        """Run every check, settlement lock included."""
        return await self._run(
            (
                ("database", self.check_database),
                ("stripe", self.check_stripe),
                ("settlement", self.check_settlement),
            )
        )

    async def liveness(self) -> Dict[str, Any]:
        """Liveness check: the process is up. No dependency checks."""
        return {"status": "alive", "message": "Application is running"}

    async def readiness(self) -> Dict[str, Any]:
        """Readiness check: the database and Stripe are reachable."""
        return await self._run(
            (
                ("database", self.check_database),
                ("stripe", self.check_stripe),
            )
        )
