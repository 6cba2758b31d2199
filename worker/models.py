from datetime import datetime, timezone
from sqlalchemy import String, DateTime, create_engine, Integer, Index, Boolean, ForeignKey, event
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from typing import Optional
import os

class Base(DeclarativeBase):
    pass


class ActionType:
    BLOCK = 1
    UNBLOCK = 2
    MUTE = 3


class ActionStatus:
    PENDING = 1
    DONE = 2
    CANCELLED_FOLLOWING = 3
    CANCELLED_SUSPENDED = 4
    CANCELLED_DUPLICATE = 5
    CANCELLED_UNBLOCKED = 6
    CANCELLED_SELF = 7
    DEFERRED_TARGET_SUSPENDED = 8
    CANCELLED_SOURCE_DEACTIVATED = 9
    CANCELLED_UNFOLLOWED = 10

    # Terminal and error outcomes, eligible for purging once stale
    TERMINAL = (3, 4, 5, 6, 7, 8, 9, 10)


class ActionCause:
    EXTERNAL = 0
    SUBSCRIPTION = 1
    BULK_MANUAL_BLOCK = 2
    NEW_ACCOUNT = 3
    LOW_FOLLOWERS = 4


class Account(Base):
    __tablename__ = "accounts"

    uid: Mapped[str] = mapped_column(String, primary_key=True)
    screen_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    deactivated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)
    block_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    def __repr__(self) -> str:
        return f"<Account uid={self.uid} deactivated_at={self.deactivated_at} block_count={self.block_count}>"

class Action(Base):
    __tablename__ = "actions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Logical owner only: no FK, so deletes never cascade from accounts
    source_uid: Mapped[str] = mapped_column(String, nullable=False, index=True)
    sink_uid: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    type_num: Mapped[int] = mapped_column(Integer, nullable=False, default=ActionType.BLOCK)
    status_num: Mapped[int] = mapped_column(Integer, nullable=False, default=ActionStatus.PENDING)
    cause_num: Mapped[int] = mapped_column(Integer, nullable=False, default=ActionCause.EXTERNAL)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(timezone.utc), nullable=False, index=True)

    __table_args__ = (
        Index('idx_action_source_type', 'source_uid', 'type_num', 'updated_at'),
    )

class BlockBatch(Base):
    __tablename__ = "block_batches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_uid: Mapped[str] = mapped_column(String, ForeignKey("accounts.uid", ondelete="CASCADE"), nullable=False, index=True)
    size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

class Block(Base):
    __tablename__ = "blocks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sink_uid: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[int] = mapped_column(Integer, nullable=False, default=ActionType.BLOCK)
    block_batch_id: Mapped[int] = mapped_column(Integer, ForeignKey("block_batches.id", ondelete="CASCADE"), nullable=False, index=True)


def enable_sqlite_foreign_keys(engine):
    """SQLite ignores ON DELETE CASCADE unless the pragma is set per connection."""
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def make_engine(database_url: str):
    if "sqlite" in database_url:
        engine = create_engine(database_url, connect_args={"check_same_thread": False})
        enable_sqlite_foreign_keys(engine)
    else:
        # Three loops issue statements one at a time; a small pool is plenty
        engine = create_engine(
            database_url,
            pool_size=5,
            max_overflow=5,
            pool_pre_ping=True,    # Verify connections before use
            pool_recycle=3600,     # Recycle connections after 1 hour
            pool_timeout=30
        )
    return engine


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./data.db")

engine = make_engine(DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

def init_db():
    Base.metadata.create_all(bind=engine)
