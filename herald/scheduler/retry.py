"""Retry and backoff policy for failed deliveries.

A failed attempt increments the item's retry count. Once the count reaches
max_retries the item is terminally failed; otherwise it goes back to pending
with an exponential delay of base * 2^retry_count minutes.

The default base is 5 minutes regardless of any per-notification
retry_delay_minutes. Set ``honor_retry_delay`` to use the requested value.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from herald.errors import InvalidTransitionError
from herald.scheduler.clock import to_utc
from herald.scheduler.models import QueueItem, QueueStatus

logger = logging.getLogger(__name__)

DEFAULT_BASE_DELAY_MINUTES = 5.0


class RetryPolicy:
    """Maps a failed attempt to the item's next state."""

    def __init__(
        self,
        base_delay_minutes: float = DEFAULT_BASE_DELAY_MINUTES,
        honor_retry_delay: bool = False,
    ) -> None:
        """Initialize the policy.

        Args:
            base_delay_minutes: Backoff base for every notification.
            honor_retry_delay: Prefer a notification's own retry_delay_minutes
                (stored in its options metadata) over the base.
        """
        if base_delay_minutes <= 0:
            raise ValueError("base_delay_minutes must be positive")
        self._base_delay_minutes = base_delay_minutes
        self._honor_retry_delay = honor_retry_delay

    @property
    def base_delay_minutes(self) -> float:
        return self._base_delay_minutes

    def backoff_minutes(self, retry_count: int, base: float | None = None) -> float:
        """Delay before the next attempt: base * 2^retry_count (5, 10, 20, ...)."""
        return (base if base is not None else self._base_delay_minutes) * (2**retry_count)

    def _base_for(self, item: QueueItem) -> float:
        requested = (item.metadata.get("options") or {}).get("retry_delay_minutes")
        if requested is None:
            return self._base_delay_minutes
        if self._honor_retry_delay:
            return float(requested)
        logger.debug(
            f"Ignoring retry_delay_minutes={requested} for {item.id}; "
            f"using fixed base of {self._base_delay_minutes} minutes"
        )
        return self._base_delay_minutes

    def on_failure(self, item: QueueItem, now: datetime, error: str | None = None) -> QueueItem:
        """Apply a failed attempt to a processing item.

        Args:
            item: The item whose delivery failed (status PROCESSING).
            now: Time of the failure.
            error: Failure description.

        Returns:
            The same item, now PENDING with a later scheduled_for, or FAILED.
        """
        if item.status != QueueStatus.PROCESSING:
            raise InvalidTransitionError(
                f"Cannot record a failed attempt for {item.id} in {item.status.value}",
                item_id=item.id,
                current_status=item.status.value,
            )

        item.retry_count = min(item.retry_count + 1, item.max_retries)
        item.last_error = error

        if item.retry_count >= item.max_retries:
            item.transition(QueueStatus.FAILED)
            logger.warning(
                f"Notification {item.id} failed permanently after "
                f"{item.retry_count} attempts: {error}"
            )
            return item

        delay = self.backoff_minutes(item.retry_count, self._base_for(item))
        item.transition(QueueStatus.PENDING)
        item.scheduled_for = to_utc(now) + timedelta(minutes=delay)
        logger.info(
            f"Notification {item.id} will retry in {delay:g} minutes "
            f"(attempt {item.retry_count}/{item.max_retries}): {error}"
        )
        return item


__all__ = ["RetryPolicy", "DEFAULT_BASE_DELAY_MINUTES"]
