"""
Storage surface used by the retention loops.

Every method opens its own session and commits before returning, so a
caller that awaits one call knows that statement is durable before it
issues the next one.
"""
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple
import logging
import time

from sqlalchemy import text, bindparam, DateTime
from sqlalchemy.orm import Session

from models import Account, Action, ActionType, BlockBatch

logger = logging.getLogger(__name__)


STALE_ACTIONS_DELETE = text(
    "DELETE FROM actions "
    "WHERE (status_num IN :statuses OR cause_num = :cause) "
    "AND id >= :start_id AND id < :end_id "
    "AND updated_at < :updated_before"
).bindparams(
    bindparam("statuses", expanding=True),
    bindparam("updated_before", type_=DateTime()),
)

# DELETE ... LIMIT is MySQL-only; a keyed subquery works on PostgreSQL and SQLite
BLOCK_ACTIONS_TRIM = text(
    "DELETE FROM actions WHERE id IN ("
    "SELECT id FROM actions "
    "WHERE type_num = :type_num AND source_uid = :source_uid "
    "AND updated_at < :updated_before "
    "ORDER BY updated_at, id LIMIT :limit)"
).bindparams(
    bindparam("updated_before", type_=DateTime()),
)


def log_db_operation(event: str, entity: str, keys: dict, rows: int, latency_ms: float):
    """
    Debug logging for each statement issued against storage.

    Args:
        event: Operation type (select, delete, trim)
        entity: Table/entity name
        keys: Dictionary of identifying keys
        rows: Rows affected or returned
        latency_ms: Operation latency in milliseconds
    """
    logger.debug(
        f"db_operation event={event} entity={entity} keys={keys} rows={rows} latency_ms={latency_ms:.1f}"
    )


class ActionStore:
    """Narrow query capability over accounts, actions and block batches."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def find_oldest_deactivated(self, cutoff: datetime) -> Optional[Account]:
        """Account with the earliest deactivated_at strictly before cutoff, or None."""
        start = time.time()
        db = self.session_factory()
        try:
            account = db.query(Account).filter(
                Account.deactivated_at < cutoff
            ).order_by(Account.deactivated_at.asc()).first()
            if account is not None:
                db.expunge(account)
        finally:
            db.close()
        log_db_operation('select', 'accounts', {'cutoff': cutoff.isoformat()},
                         int(account is not None), (time.time() - start) * 1000)
        return account

    def delete_actions_for(self, uid: str) -> int:
        return self._delete_owned(Action, uid)

    def delete_block_batches_for(self, uid: str) -> int:
        """Delete an account's block batches; the FK cascade removes their blocks."""
        return self._delete_owned(BlockBatch, uid)

    def _delete_owned(self, model, uid: str) -> int:
        start = time.time()
        db = self.session_factory()
        try:
            deleted = db.query(model).filter(
                model.source_uid == uid
            ).delete(synchronize_session=False)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        log_db_operation('delete', model.__tablename__, {'source_uid': uid},
                         deleted, (time.time() - start) * 1000)
        return deleted

    def delete_account(self, account: Account) -> int:
        """Instance-level delete of a previously loaded account. Returns rows deleted."""
        start = time.time()
        db = self.session_factory()
        try:
            current = db.get(Account, account.uid)
            if current is not None:
                db.delete(current)
                db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        deleted = int(current is not None)
        log_db_operation('delete', 'accounts', {'uid': account.uid},
                         deleted, (time.time() - start) * 1000)
        return deleted

    def max_action_id(self) -> Optional[int]:
        db = self.session_factory()
        try:
            value = db.execute(text("SELECT max(id) FROM actions")).scalar()
        finally:
            db.close()
        return int(value) if value is not None else None

    def delete_stale_actions(
        self,
        start_id: int,
        end_id: int,
        updated_before: datetime,
        statuses: Sequence[int],
        cause: int,
    ) -> int:
        """Delete stale actions with start_id <= id < end_id."""
        start = time.time()
        db = self.session_factory()
        try:
            result = db.execute(STALE_ACTIONS_DELETE, {
                "statuses": list(statuses),
                "cause": cause,
                "start_id": start_id,
                "end_id": end_id,
                "updated_before": updated_before,
            })
            deleted = getattr(result, 'rowcount', 0)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        log_db_operation('delete', 'actions', {'start_id': start_id, 'end_id': end_id},
                         deleted, (time.time() - start) * 1000)
        return deleted

    def list_accounts(self) -> List[Tuple[str, int]]:
        """(uid, block_count) for every account, in primary key order."""
        db = self.session_factory()
        try:
            rows = db.query(Account.uid, Account.block_count).order_by(Account.uid).all()
        finally:
            db.close()
        return [(row.uid, row.block_count) for row in rows]

    def trim_block_actions(self, uid: str, updated_before: datetime, limit: int) -> int:
        """Delete at most `limit` of an account's oldest block actions."""
        start = time.time()
        db = self.session_factory()
        try:
            result = db.execute(BLOCK_ACTIONS_TRIM, {
                "type_num": ActionType.BLOCK,
                "source_uid": uid,
                "updated_before": updated_before,
                "limit": limit,
            })
            deleted = getattr(result, 'rowcount', 0)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        log_db_operation('trim', 'actions', {'source_uid': uid, 'limit': limit},
                         deleted, (time.time() - start) * 1000)
        return deleted
