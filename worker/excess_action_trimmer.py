"""
Trims old block actions for accounts with very large block counts.

Each trim deletes at most TRIM_LIMIT rows, so a huge account shrinks
gradually over many passes instead of in one long statement.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from observability import structured_logger, metrics
from store import ActionStore

BLOCK_COUNT_THRESHOLD = 50000
TRIM_LIMIT = 10000
TRIM_AFTER_DAYS = 30
PAUSE_SECONDS = 0.5


class ExcessActionTrimmer:
    name = "excess_action_trimmer"

    def __init__(
        self,
        store: ActionStore,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self._sleep = sleep
        self._now = now
        self.last_pass_accounts = 0

    async def trim_account(self, uid: str) -> int:
        deleted = await asyncio.to_thread(
            self.store.trim_block_actions,
            uid,
            self._now() - timedelta(days=TRIM_AFTER_DAYS),
            TRIM_LIMIT,
        )
        metrics.inc_counter("rows_deleted_total", {"table": "actions"}, deleted)
        return deleted

    async def trim_pass(self) -> int:
        """Visit every account once, trimming those over the threshold."""
        accounts = await asyncio.to_thread(self.store.list_accounts)
        self.last_pass_accounts = len(accounts)
        total = 0
        for uid, block_count in accounts:
            if block_count >= BLOCK_COUNT_THRESHOLD:
                structured_logger.log_event(
                    "excess_action_trimmer.trimming",
                    uid=uid,
                    block_count=block_count
                )
                total += await self.trim_account(uid)
            await self._sleep(PAUSE_SECONDS)
        metrics.inc_counter("excess_action_passes_total")
        return total

    async def run_forever(self):
        # No pause between passes; the per-account pause already paces it
        while True:
            await self.trim_pass()
            if self.last_pass_accounts == 0:
                # Nothing to visit, so nothing paced the pass
                await self._sleep(PAUSE_SECONDS)
