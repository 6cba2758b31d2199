"""
Sweeps the actions table in fixed id windows, deleting stale rows.

An action is stale once it has not been updated for STALE_AFTER_DAYS and
either finished in a terminal/error status or was caused externally (those
carry no information worth keeping). Each window is one bounded DELETE so
no single statement scans or locks an unbounded id range.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Iterator, Optional, Tuple

from models import ActionCause, ActionStatus
from observability import structured_logger, metrics
from store import ActionStore

WINDOW_SIZE = 10000
STALE_AFTER_DAYS = 10
STALE_STATUSES = ActionStatus.TERMINAL
EXTERNAL_CAUSE = ActionCause.EXTERNAL
PAUSE_SECONDS = 1.0


def window_ranges(max_id: Optional[int], size: int = WINDOW_SIZE) -> Iterator[Tuple[int, int]]:
    """Half-open [start, end) windows covering ids 0..max_id inclusive."""
    if max_id is None:
        return
    offset = 0
    while offset <= max_id:
        yield offset, offset + size
        offset += size


class StaleActionPurger:
    name = "stale_action_purger"

    def __init__(
        self,
        store: ActionStore,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self._sleep = sleep
        self._now = now

    async def purge_window(self, start_id: int, end_id: int) -> int:
        deleted = await asyncio.to_thread(
            self.store.delete_stale_actions,
            start_id,
            end_id,
            self._now() - timedelta(days=STALE_AFTER_DAYS),
            STALE_STATUSES,
            EXTERNAL_CAUSE,
        )
        metrics.inc_counter("rows_deleted_total", {"table": "actions"}, deleted)
        return deleted

    async def sweep(self) -> int:
        """
        One full pass over ids up to the max captured at the start.

        Actions inserted during the pass are left for the next one.
        """
        max_id = await asyncio.to_thread(self.store.max_action_id)
        total = 0
        for start_id, end_id in window_ranges(max_id):
            structured_logger.log_event(
                "stale_action_purger.window",
                offset=start_id,
                max_id=max_id
            )
            total += await self.purge_window(start_id, end_id)
            await self._sleep(PAUSE_SECONDS)
        metrics.inc_counter("stale_action_sweeps_total")
        return total

    async def run_forever(self):
        while True:
            deleted = await self.sweep()
            structured_logger.log_event(
                "stale_action_purger.restart",
                deleted=deleted
            )
            await self._sleep(PAUSE_SECONDS)
