"""
Deletes accounts that have been deactivated for longer than the retention window.

Dependent rows are removed before the account itself. Deleting the account
alone would let foreign keys cascade, but for accounts with very large
numbers of actions or blocks that holds locks on the accounts table for a
long time. Actions carry no foreign key at all, so they have to go first
regardless. Blocks are still left to the block_batches cascade.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from observability import structured_logger, metrics
from store import ActionStore

RETENTION_DAYS = 30
PAUSE_SECONDS = 1.0


class AccountReaper:
    name = "account_reaper"

    def __init__(
        self,
        store: ActionStore,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self._sleep = sleep
        self._now = now

    def cutoff(self) -> datetime:
        return self._now() - timedelta(days=RETENTION_DAYS)

    async def run_once(self) -> Optional[str]:
        """
        Find and delete the longest-deactivated overdue account.

        Returns the deleted uid, or None when nothing was eligible or the
        delete failed. Failures are logged and never raised; the account is
        still overdue, so the next cycle selects it again.
        """
        try:
            account = await asyncio.to_thread(self.store.find_oldest_deactivated, self.cutoff())
        except Exception as e:
            structured_logger.log_event(
                "account_reaper.select_failed",
                level="ERROR",
                error=str(e),
                error_type=type(e).__name__
            )
            metrics.inc_counter("account_reaper_errors_total", {"phase": "select"})
            return None

        if account is None:
            return None

        return await self._delete_account(account)

    async def _delete_account(self, account) -> Optional[str]:
        uid = account.uid
        structured_logger.log_event(
            "account_reaper.deleting",
            uid=uid,
            deactivated_at=account.deactivated_at
        )
        phase = "actions"
        try:
            actions = await asyncio.to_thread(self.store.delete_actions_for, uid)
            phase = "block_batches"
            batches = await asyncio.to_thread(self.store.delete_block_batches_for, uid)
            phase = "account"
            accounts = await asyncio.to_thread(self.store.delete_account, account)
        except Exception as e:
            structured_logger.log_event(
                "account_reaper.delete_failed",
                level="ERROR",
                uid=uid,
                phase=phase,
                error=str(e),
                error_type=type(e).__name__
            )
            metrics.inc_counter("account_reaper_errors_total", {"phase": phase})
            return None

        structured_logger.log_event(
            "account_reaper.deleted",
            uid=uid,
            actions_deleted=actions,
            block_batches_deleted=batches,
            account_deleted=bool(accounts)
        )
        metrics.inc_counter("accounts_deleted_total", value=accounts)
        metrics.inc_counter("rows_deleted_total", {"table": "actions"}, actions)
        metrics.inc_counter("rows_deleted_total", {"table": "block_batches"}, batches)
        metrics.inc_counter("rows_deleted_total", {"table": "accounts"}, accounts)
        return uid

    async def run_forever(self):
        while True:
            await self.run_once()
            await self._sleep(PAUSE_SECONDS)
