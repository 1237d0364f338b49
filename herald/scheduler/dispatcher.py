"""Periodic dispatch of due notifications.

A dispatch tick selects pending items whose scheduled_for has passed, orders
them by priority then time, claims each one atomically and hands it to the
delivery gateway. Failures go through the retry policy.

Ticks never overlap: a tick that starts while another is still running is
dropped and reported as skipped.

If recording an outcome fails, the claimed item is released back to pending
so a later tick delivers it again. Claims older than the claim timeout (left
behind when even the release failed, or by a crashed worker) are released at
the start of each tick. Delivery is therefore at-least-once.

Usage:
    loop = DispatchLoop(store, gateway, RetryPolicy(), SystemClock())
    loop.start()
    ...
    loop.stop()
"""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from herald.errors import HeraldError, StoreError
from herald.scheduler.clock import Clock, SystemClock
from herald.scheduler.interfaces import DeliveryGateway, QueueStore, TrackingSink
from herald.scheduler.models import (
    DeliveryResult,
    QueueItem,
    QueueStatus,
    TrackingEvent,
)
from herald.scheduler.retry import RetryPolicy

logger = logging.getLogger(__name__)

# Dispatch interval (seconds)
DEFAULT_INTERVAL_SECONDS = 30.0
DEFAULT_BATCH_SIZE = 50
DEFAULT_CLAIM_TIMEOUT_SECONDS = 900.0


@dataclass
class TickReport:
    """Summary of one dispatch tick.

    Attributes:
        selected: Due items considered after the batch cap.
        sent: Items delivered.
        retried: Items returned to pending with a backoff.
        failed: Items that exhausted their retries.
        skipped_items: Items another worker (or a cancel) claimed first.
        errors: Store errors hit during the tick.
        released: Stale processing claims returned to pending.
        skipped: True when the tick did not run because one was already active.
        failures: Ids of items that failed permanently or were abandoned on a
            store error, in dispatch order.
    """

    selected: int = 0
    sent: int = 0
    retried: int = 0
    failed: int = 0
    skipped_items: int = 0
    errors: int = 0
    released: int = 0
    skipped: bool = False
    failures: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "selected": self.selected,
            "sent": self.sent,
            "retried": self.retried,
            "failed": self.failed,
            "skipped_items": self.skipped_items,
            "errors": self.errors,
            "released": self.released,
            "skipped": self.skipped,
            "failures": list(self.failures),
        }


class DispatchLoop:
    """Background dispatcher for the notification queue."""

    def __init__(
        self,
        store: QueueStore,
        gateway: DeliveryGateway,
        retry_policy: RetryPolicy | None = None,
        clock: Clock | None = None,
        tracking_sink: TrackingSink | None = None,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        claim_timeout_seconds: float = DEFAULT_CLAIM_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the dispatch loop.

        Args:
            store: Queue store to dispatch from.
            gateway: Delivery transport.
            retry_policy: Failure handling (default 5-minute base backoff).
            clock: Time source (system clock if None).
            tracking_sink: Receives delivery outcomes, if set.
            interval_seconds: Seconds between ticks.
            batch_size: Maximum items dispatched per tick.
            claim_timeout_seconds: Age after which a processing claim is released.
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if claim_timeout_seconds <= 0:
            raise ValueError("claim_timeout_seconds must be positive")

        self._store = store
        self._gateway = gateway
        self._retry_policy = retry_policy or RetryPolicy()
        self._clock = clock or SystemClock()
        self._tracking_sink = tracking_sink
        self._interval_seconds = interval_seconds
        self._batch_size = batch_size
        self._claim_timeout = timedelta(seconds=claim_timeout_seconds)

        self._running = False
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._lock = threading.RLock()
        self._tick_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        """Check if the background thread is running."""
        return self._running

    @property
    def interval_seconds(self) -> float:
        return self._interval_seconds

    def start(self) -> None:
        """Start the background dispatch thread."""
        with self._lock:
            if self._running:
                logger.warning("Dispatch loop already running")
                return

            self._running = True
            self._stop_event.clear()

            self._thread = threading.Thread(
                target=self._run_loop,
                name="HeraldDispatch",
                daemon=True,
            )
            self._thread.start()
            logger.info(f"Dispatch loop started (every {self._interval_seconds:g}s)")

    def stop(self, timeout: float = 10.0) -> None:
        """Stop the background dispatch thread.

        An in-flight tick finishes its current item set before the thread exits.

        Args:
            timeout: Seconds to wait for the thread to stop.
        """
        with self._lock:
            if not self._running:
                return

            self._running = False
            self._stop_event.set()

            if self._thread and self._thread.is_alive():
                self._thread.join(timeout=timeout)
                if self._thread.is_alive():
                    logger.warning("Dispatch thread did not stop cleanly")

            self._thread = None
            logger.info("Dispatch loop stopped")

    def _run_loop(self) -> None:
        """Main dispatch loop."""
        logger.debug("Dispatch loop thread started")

        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception as e:
                logger.exception(f"Error in dispatch loop: {e}")

            # Wait for next tick or stop signal
            self._stop_event.wait(timeout=self._interval_seconds)

        logger.debug("Dispatch loop thread exited")

    def tick(self) -> TickReport:
        """Run one dispatch cycle.

        Returns:
            What happened during the tick.
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.debug("Dispatch tick already in progress, skipping")
            return TickReport(skipped=True)

        try:
            return self._tick()
        finally:
            self._tick_lock.release()

    def _tick(self) -> TickReport:
        report = TickReport()
        now = self._clock.now()

        try:
            report.released = self._store.release_stale(now - self._claim_timeout)
        except StoreError as e:
            report.errors += 1
            logger.error(f"Could not release stale claims: {e}")
        if report.released:
            logger.warning(f"Released {report.released} stale claims back to pending")

        try:
            due = self._store.list_due(now)
        except StoreError as e:
            logger.error(f"Could not list due notifications: {e}")
            report.errors += 1
            return report

        due.sort(key=lambda i: i.sort_key())
        batch = due[: self._batch_size]
        report.selected = len(batch)

        if len(due) > len(batch):
            logger.info(
                f"{len(due)} notifications due, dispatching {len(batch)} this tick"
            )

        for candidate in batch:
            try:
                self._dispatch(candidate.id, report)
            except StoreError as e:
                report.errors += 1
                report.failures.append(candidate.id)
                logger.error(f"Store error while dispatching {candidate.id}: {e}")

        if report.selected:
            logger.info(
                f"Dispatch tick: {report.sent} sent, {report.retried} retrying, "
                f"{report.failed} failed, {report.skipped_items} skipped, "
                f"{report.errors} errors"
            )
        return report

    def _dispatch(self, item_id: str, report: TickReport) -> None:
        """Claim, deliver and record the outcome of one item."""
        item = self._store.claim(item_id, self._clock.now())
        if item is None:
            report.skipped_items += 1
            logger.debug(f"Notification {item_id} no longer pending, skipping")
            return

        claimed = copy.deepcopy(item)
        try:
            self._deliver(item, report)
        except StoreError:
            self._release(claimed)
            raise

    def _deliver(self, item: QueueItem, report: TickReport) -> None:
        """Send a claimed item and write back the outcome."""
        item_id = item.id
        result = self._send(item)
        now = self._clock.now()

        if result.success:
            item.mark_sent(result.message_id)
            outcome = "sent"
        else:
            error = result.error or "Unknown error"
            self._retry_policy.on_failure(item, now, error)
            outcome = "failed" if item.status == QueueStatus.FAILED else "retry"

        if not self._store.update_if_status(item, QueueStatus.PROCESSING):
            current = self._store.get(item_id)
            current_status = current.status.value if current else "deleted"
            logger.warning(
                f"Notification {item_id} changed to {current_status} during delivery; "
                f"keeping it (delivery outcome was {outcome})"
            )

        if outcome == "sent":
            report.sent += 1
            logger.info(f"Notification {item_id} sent to {item.user_id}")
            self._track(
                TrackingEvent(
                    item_id=item_id,
                    outcome="sent",
                    timestamp=now,
                    message_id=item.message_id,
                )
            )
        elif outcome == "failed":
            report.failed += 1
            report.failures.append(item_id)
            self._track(
                TrackingEvent(
                    item_id=item_id,
                    outcome="failed",
                    timestamp=now,
                    error=item.last_error,
                )
            )
        else:
            report.retried += 1

    def _release(self, claimed: QueueItem) -> None:
        """Put a claimed item back to pending after its outcome could not be recorded.

        Best effort: if this write fails too, stale-claim recovery picks the
        item up once the claim timeout has passed.
        """
        claimed.transition(QueueStatus.PENDING)
        try:
            released = self._store.update_if_status(claimed, QueueStatus.PROCESSING)
        except StoreError as e:
            logger.warning(
                f"Could not release {claimed.id}; it stays processing until the claim "
                f"times out: {e}"
            )
            return

        if released:
            logger.info(f"Notification {claimed.id} released back to pending")

    def _send(self, item: QueueItem) -> DeliveryResult:
        """Invoke the gateway, turning exceptions into failed results."""
        try:
            result = self._gateway.send(item.user_id, item.payload)
        except HeraldError as e:
            logger.warning(f"Delivery of {item.id} failed: {e}")
            return DeliveryResult(success=False, error=e.message)
        except Exception as e:
            logger.exception(f"Gateway raised while delivering {item.id}: {e}")
            return DeliveryResult(success=False, error=str(e) or type(e).__name__)

        if result is None:
            return DeliveryResult(success=False, error="Gateway returned no result")
        return result

    def _track(self, event: TrackingEvent) -> None:
        """Emit a tracking event; failures never affect dispatch."""
        if self._tracking_sink is None:
            return
        try:
            self._tracking_sink.track(event)
        except Exception as e:
            logger.exception(f"Tracking error for {event.item_id}: {e}")


__all__ = [
    "DispatchLoop",
    "TickReport",
    "DEFAULT_INTERVAL_SECONDS",
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_CLAIM_TIMEOUT_SECONDS",
]
