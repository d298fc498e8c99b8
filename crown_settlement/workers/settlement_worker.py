"""
Nightly settlement background worker.

Runs the crown settlement once a day at a fixed wall-clock time in the
settlement timezone (00:05 America/Chicago by default). ``--once`` runs a
single settlement and exits, for use under an external cron.
"""
import asyncio
import signal
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo

import structlog

from crown_settlement.config import Settings, get_settings
from crown_settlement.core.domain import SettlementOutcome, SettlementStatus
from crown_settlement.core.engine import SettlementEngine
from crown_settlement.database.connection import close_db, get_session_factory, init_db
from crown_settlement.database.store import SqlCandidateStore
from crown_settlement.integrations.stripe_client import StripeClient
from crown_settlement.monitoring.logging import setup_logging

logger = structlog.get_logger(__name__)

NO_WINNER_STATUSES = frozenset(
    {
        SettlementStatus.NO_CANDIDATES,
        SettlementStatus.NO_ACTIVE_CANDIDATES,
        SettlementStatus.ALL_FAILED,
    }
)


def next_run_after(now: datetime, tz_name: str, hour: int, minute: int) -> datetime:
    """
    Next occurrence of hour:minute local time strictly after now.

    Returns:
        datetime: Aware datetime in the settlement timezone
    """
    tz = ZoneInfo(tz_name)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local_now = now.astimezone(tz)

    next_run = local_now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if next_run <= local_now:
        next_run = (local_now + timedelta(days=1)).replace(
            hour=hour, minute=minute, second=0, microsecond=0
        )
    return next_run


def calculate_next_run_time(settings: Settings, now: Optional[datetime] = None) -> float:
    """
    Calculate seconds until next scheduled run.

    Returns:
        float: Seconds until next run
    """
    now = now or datetime.now(timezone.utc)
    next_run = next_run_after(
        now,
        settings.settlement_timezone,
        settings.settlement_hour,
        settings.settlement_minute,
    )
    seconds_until = (next_run - now).total_seconds()

    logger.info(
        "settlement_next_run_scheduled",
        next_run=next_run.isoformat(),
        seconds_until=seconds_until,
    )
    return seconds_until


def build_engine(settings: Settings) -> SettlementEngine:
    return SettlementEngine(
        SqlCandidateStore(get_session_factory()),
        StripeClient(settings),
        settings,
    )


async def run_nightly_settlement(engine: SettlementEngine) -> SettlementOutcome:
    """Run one settlement and log the result."""
    logger.info("nightly_settlement_started")

    outcome = await engine.run()

    if outcome.status in NO_WINNER_STATUSES:
        logger.warning("nightly_settlement_no_winner", **outcome.to_dict())
    else:
        logger.info("nightly_settlement_completed", **outcome.to_dict())
    return outcome


async def start_settlement_worker(settings: Optional[Settings] = None) -> None:
    """
    Start the settlement worker.

    Runs daily at the configured local time until SIGINT/SIGTERM.
    """
    settings = settings or get_settings()

    logger.info(
        "settlement_worker_starting",
        timezone=settings.settlement_timezone,
        hour=settings.settlement_hour,
        minute=settings.settlement_minute,
    )

    running = True

    def signal_handler(sig: int, frame: Any) -> None:
        nonlocal running
        logger.info("settlement_worker_shutdown_signal_received", signal=sig)
        running = False

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    await init_db()
    engine = build_engine(settings)

    try:
        while running:
            seconds_until = calculate_next_run_time(settings)

            # Wake periodically to notice shutdown signals
            while seconds_until > 0 and running:
                sleep_time = min(seconds_until, 60)
                await asyncio.sleep(sleep_time)
                seconds_until -= sleep_time

            if not running:
                break

            try:
                await run_nightly_settlement(engine)
            except Exception as e:
                # Keep the schedule; the next day gets a fresh attempt
                logger.error("settlement_execution_error", error=str(e))

    finally:
        await close_db()
        logger.info("settlement_worker_stopped")


async def run_once(settings: Optional[Settings] = None) -> SettlementOutcome:
    settings = settings or get_settings()
    await init_db()
    try:
        return await run_nightly_settlement(build_engine(settings))
    finally:
        await close_db()


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(description="Crown settlement worker")
    parser.add_argument(
        "--once", action="store_true", help="Run one settlement now and exit"
    )
    args = parser.parse_args()

    setup_logging()
    if args.once:
        asyncio.run(run_once())
    else:
        asyncio.run(start_settlement_worker())


if __name__ == "__main__":
    main()
