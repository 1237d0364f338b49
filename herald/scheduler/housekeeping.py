"""Queue statistics and purge of finished notifications."""

from __future__ import annotations

import logging

from herald.scheduler.interfaces import QueueStore
from herald.scheduler.models import TERMINAL_STATUSES, QueueStatus

logger = logging.getLogger(__name__)


class QueueHousekeeper:
    """Reports queue counts and removes terminal items."""

    def __init__(self, store: QueueStore) -> None:
        self._store = store

    def get_queue_stats(self) -> dict[str, int]:
        """Get queue statistics.

        Returns:
            Dictionary with ``total`` and one count per status, zeros included.
        """
        counts = self._store.count_by_status()
        stats = {"total": sum(counts.values())}
        for status in QueueStatus:
            stats[status.value] = counts.get(status, 0)
        return stats

    def clear_completed(self) -> int:
        """Delete all sent, failed and cancelled items.

        Returns:
            Number of items removed.
        """
        removed = 0
        for status in sorted(TERMINAL_STATUSES, key=lambda s: s.value):
            for item in self._store.list_items(status=status):
                if self._store.delete(item.id):
                    removed += 1

        if removed:
            logger.info(f"Cleared {removed} completed notifications")
        return removed


__all__ = ["QueueHousekeeper"]
