"""
Reconciliation poller.

Drives the status sync on two paths:

* Timer: every `interval` seconds a tick drains the priority set, then syncs a
  bounded page of the oldest pending payments. Ticks are skipped while the
  circuit breaker is open and dropped while a previous sweep is still running.
  In half-open state the page shrinks to a single trial payment.
* Notification: `notify()` promotes an order code in the priority set and
  schedules a one-off check after a short delay, regardless of the breaker,
  at most once per order code per cooldown window.

Orphan recovery piggybacks on every `recovery_every`-th sweep that actually
ran; ticks skipped by the breaker or dropped by the overlap guard do not count.

All timers, counters and the breaker belong to the instance. `stop()` cancels
the timer and every scheduled one-off check.
"""
import asyncio
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Set

from sqlalchemy.orm import Session

from app.config import (
    GATEWAY_TIMEOUT_SECONDS,
    PRIORITY_CHECK_COOLDOWN_SECONDS,
    PRIORITY_CHECK_DELAY_SECONDS,
    RECOVERY_EVERY_N_TICKS,
    SWEEP_CONCURRENCY,
    SWEEP_PAGE_SIZE,
    SYNC_INTERVAL_SECONDS,
)
from app.exceptions import GatewayError, NetworkError, ReconciliationError
from app.gateways.base import BaseGateway
from app.schemas.events import PaymentCheckFailed
from app.services.breaker import BreakerState, CircuitBreaker
from app.services.events import EventBus
from app.services.priority import PrioritySet
from app.services.recovery import count_orphans, recover_orphans
from app.services.store import PaymentStore
from app.services.sync import SyncResult, sync_payment

logger = logging.getLogger(__name__)

PAYMENT_INITIATED = "payment_initiated"
PAYMENT_STATUS_HINT = "payment_status_hint"
NOTIFICATION_EVENTS = (PAYMENT_INITIATED, PAYMENT_STATUS_HINT)


class PollerState(str, Enum):
    IDLE = "idle"
    SWEEPING = "sweeping"


class SweepSummary:
    def __init__(self):
        self.priority_checked = 0
        self.checked = 0
        self.updated = 0
        self.failed = 0
        self.recovery = None
        self.results: List[SyncResult] = []


class ReconciliationPoller:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        gateway: BaseGateway,
        bus: EventBus,
        interval: float = SYNC_INTERVAL_SECONDS,
        page_size: int = SWEEP_PAGE_SIZE,
        concurrency: int = SWEEP_CONCURRENCY,
        priority_delay: float = PRIORITY_CHECK_DELAY_SECONDS,
        priority_cooldown: float = PRIORITY_CHECK_COOLDOWN_SECONDS,
        recovery_every: int = RECOVERY_EVERY_N_TICKS,
        gateway_timeout: float = GATEWAY_TIMEOUT_SECONDS,
        breaker: Optional[CircuitBreaker] = None,
        priority: Optional[PrioritySet] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.bus = bus
        self.interval = interval
        self.page_size = page_size
        self.concurrency = max(1, concurrency)
        self.priority_delay = priority_delay
        self.priority_cooldown = priority_cooldown
        self.recovery_every = recovery_every
        self.gateway_timeout = gateway_timeout
        self.breaker = breaker or CircuitBreaker(clock=clock)
        self.priority = priority or PrioritySet()
        self.state = PollerState.IDLE
        self.ticks = 0
        self._clock = clock
        self._sleep = sleep
        self._timer_task: Optional[asyncio.Task] = None
        self._checks: Set[asyncio.Task] = set()
        self._last_check: Dict[str, float] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    @property
    def pending_checks(self) -> List[asyncio.Task]:
        return list(self._checks)

    def start(self) -> None:
        if self.running:
            return
        self._timer_task = asyncio.create_task(self._run())
        logger.info(f"Reconciliation poller started (interval={self.interval}s)")

    async def stop(self) -> None:
        tasks = list(self._checks)
        if self._timer_task is not None:
            tasks.append(self._timer_task)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._checks.clear()
        self._timer_task = None
        logger.info("Reconciliation poller stopped")

    async def _run(self) -> None:
        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Sweep aborted by unexpected error")
            await self._sleep(self.interval)

    # ------------------------------------------------------------------
    # Timer path
    # ------------------------------------------------------------------
    async def tick(self) -> Optional[SweepSummary]:
        """Run one sweep. Returns None when the tick was dropped or skipped."""
        if self.state is PollerState.SWEEPING:
            logger.debug("Previous sweep still running, dropping tick")
            return None

        breaker_state = self.breaker.state
        if breaker_state is BreakerState.OPEN:
            logger.debug(
                f"Breaker open, skipping sweep ({self.breaker.seconds_until_trial():.1f}s to trial)"
            )
            return None

        self.ticks += 1
        self.state = PollerState.SWEEPING
        db = self.session_factory()
        try:
            summary = await self._sweep(db, trial=breaker_state is BreakerState.HALF_OPEN)
            if self.recovery_every and self.ticks % self.recovery_every == 0:
                summary.recovery = self._run_recovery(db)
            return summary
        finally:
            db.close()
            self.state = PollerState.IDLE

    async def _sweep(self, db: Session, trial: bool = False) -> SweepSummary:
        summary = SweepSummary()

        priority_codes = self.priority.drain()
        for order_code in priority_codes:
            summary.priority_checked += 1
            try:
                result = await sync_payment(
                    order_code, db, self.gateway, self.bus,
                    source="priority", timeout=self.gateway_timeout,
                )
            except ReconciliationError as e:
                self._report_check_failure(order_code, e)
                continue
            except Exception as e:
                logger.exception(f"Unexpected error checking {order_code}")
                self._report_check_failure(order_code, e)
                continue
            summary.results.append(result)
            if result.changed:
                summary.updated += 1

        limit = 1 if trial else self.page_size
        page = PaymentStore(db).list_pending(limit, exclude=priority_codes)
        order_codes = [p.order_code for p in page]
        outcomes = await self._sync_many(db, order_codes)

        for order_code, outcome in zip(order_codes, outcomes):
            summary.checked += 1
            if isinstance(outcome, SyncResult):
                self.breaker.record_success()
                summary.results.append(outcome)
                if outcome.changed:
                    summary.updated += 1
            elif isinstance(outcome, GatewayError):
                logger.warning(f"Gateway refused {order_code}: {outcome}")
            else:
                if not isinstance(outcome, NetworkError):
                    logger.error(f"Unexpected error syncing {order_code}", exc_info=outcome)
                else:
                    logger.warning(f"Network failure syncing {order_code}: {outcome}")
                summary.failed += 1
                self.breaker.record_failure()

        if order_codes or priority_codes:
            logger.info(
                f"Sweep done: {summary.priority_checked} priority, {summary.checked} checked, "
                f"{summary.updated} updated, {summary.failed} failed, breaker {self.breaker.state.value}"
            )
        return summary

    async def _sync_many(self, db: Session, order_codes: List[str]) -> list:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def sync_one(order_code: str):
            async with semaphore:
                return await sync_payment(
                    order_code, db, self.gateway, self.bus,
                    source="poller", timeout=self.gateway_timeout,
                )

        return await asyncio.gather(*(sync_one(c) for c in order_codes), return_exceptions=True)

    def _run_recovery(self, db: Session):
        missing = count_orphans(db)
        if missing == 0:
            logger.debug("No payments need recovery at this time")
            return None
        logger.info(f"Found {missing} payments needing recovery")
        return recover_orphans(db, self.bus)

    # ------------------------------------------------------------------
    # Notification path
    # ------------------------------------------------------------------
    def notify(self, order_code: str, event: str = PAYMENT_STATUS_HINT) -> bool:
        """
        Handle payment_initiated / payment_status_hint for order_code.

        Always promotes the code in the priority set. Returns True when a one-off
        check was scheduled, False when it was rate-limited.
        """
        if event not in NOTIFICATION_EVENTS:
            raise ValueError(f"Unsupported notification event: {event}")

        self.priority.touch(order_code)

        now = self._clock()
        last = self._last_check.get(order_code)
        if last is not None and now - last < self.priority_cooldown:
            logger.debug(f"One-off check for {order_code} rate-limited")
            return False
        self._last_check[order_code] = now
        self._forget_stale_checks(now)

        task = asyncio.create_task(self._priority_check(order_code))
        self._checks.add(task)
        task.add_done_callback(self._on_check_done)
        logger.info(f"{event} for {order_code}, one-off check in {self.priority_delay}s")
        return True

    async def _priority_check(self, order_code: str) -> Optional[SyncResult]:
        await self._sleep(self.priority_delay)
        db = self.session_factory()
        try:
            return await sync_payment(
                order_code, db, self.gateway, self.bus,
                source="priority", timeout=self.gateway_timeout,
            )
        except ReconciliationError as e:
            self._report_check_failure(order_code, e)
            return None
        except Exception as e:
            logger.exception(f"Unexpected error checking {order_code}")
            self._report_check_failure(order_code, e)
            return None
        finally:
            db.close()

    def _on_check_done(self, task: asyncio.Task) -> None:
        self._checks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("One-off payment check crashed", exc_info=task.exception())

    def _report_check_failure(self, order_code: str, error: Exception) -> None:
        logger.warning(f"Check for {order_code} failed: {error}")
        self.bus.publish(PaymentCheckFailed(order_code=order_code, error=str(error)))

    def _forget_stale_checks(self, now: float) -> None:
        stale = [c for c, t in self._last_check.items() if now - t >= self.priority_cooldown]
        for order_code in stale:
            del self._last_check[order_code]

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    def status(self) -> dict:
        return {
            "state": self.state.value,
            "running": self.running,
            "breaker_state": self.breaker.state.value,
            "consecutive_failures": self.breaker.consecutive_failures,
            "priority_order_codes": self.priority.snapshot(),
            "pending_checks": len(self._checks),
            "ticks": self.ticks,
        }
