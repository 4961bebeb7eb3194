"""
Store handle

Injectable wrapper around a SQLAlchemy session factory. Every component that
persists or queries data receives a Store instead of reaching for the global
engine, so tests can hand in an in-memory SQLite store and the scheduler can
ask the store itself whether it is reachable.

Objects returned by query methods are detached from their session
(expire_on_commit=False), safe to read after the call returns.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Generator, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from vaultpilot.database.models import (
    Base,
    PoolSnapshot,
    AutomationRecord,
    MarketAverage,
    VaultSnapshot,
    ScheduledTaskExecution,
    utc_now,
)
from vaultpilot.utils import get_logger

logger = get_logger(__name__)


class StoreUnavailableError(RuntimeError):
    """Backing store is unreachable"""


class Store:
    """
    Append-only store for snapshots, automation records and task runs

    Usage:
        >>> store = Store.from_config()
        >>> if store.is_connected():
        ...     store.add_pool_snapshot(PoolSnapshot(...))
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @classmethod
    def from_config(cls) -> "Store":
        """Build a Store over the process-wide engine (config-driven)"""
        from vaultpilot.database.connection import get_session_factory
        return cls(get_session_factory())

    @classmethod
    def from_url(cls, url: str, create_tables: bool = False) -> "Store":
        """
        Build a Store over a dedicated engine

        Args:
            url: SQLAlchemy URL (e.g. 'sqlite://' for in-memory)
            create_tables: Create all tables on the new engine
        """
        from vaultpilot.database.connection import create_db_engine

        engine = create_db_engine(url)
        if create_tables:
            Base.metadata.create_all(engine)

        return cls(sessionmaker(bind=engine, expire_on_commit=False))

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Session scope: commit on success, rollback and re-raise on error"""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Session rollback due to error: {e}", exc_info=True)
            raise
        finally:
            session.close()

    # =========================================================================
    # LIVENESS
    # =========================================================================

    def is_connected(self) -> bool:
        """
        Synchronous liveness probe (SELECT 1)

        Returns:
            True if the store answered, False otherwise (never raises)
        """
        session = self._session_factory()
        try:
            session.execute(select(1))
            return True
        except SQLAlchemyError as e:
            logger.warning(f"Store not reachable: {e}")
            return False
        finally:
            session.close()

    def ensure_connected(self) -> None:
        """
        Raises:
            StoreUnavailableError: If the liveness probe fails
        """
        if not self.is_connected():
            raise StoreUnavailableError("Database is not reachable")

    # =========================================================================
    # POOL SNAPSHOTS
    # =========================================================================

    def add_pool_snapshot(self, snapshot: PoolSnapshot) -> PoolSnapshot:
        with self.session() as session:
            session.add(snapshot)
        return snapshot

    def pool_history(
        self,
        pool_address: str,
        since: Optional[datetime] = None,
        success_only: bool = True
    ) -> List[PoolSnapshot]:
        """
        Snapshots of one pool, oldest first

        Args:
            pool_address: Pool address (any case)
            since: Only snapshots at or after this naive-UTC time
            success_only: Exclude failed fetches
        """
        with self.session() as session:
            query = session.query(PoolSnapshot).filter(
                PoolSnapshot.pool_address == pool_address.lower()
            )
            if since is not None:
                query = query.filter(PoolSnapshot.timestamp >= since)
            if success_only:
                query = query.filter(PoolSnapshot.success.is_(True))

            return query.order_by(PoolSnapshot.timestamp.asc(), PoolSnapshot.id.asc()).all()

    def latest_successful_snapshot(self, pool_address: str) -> Optional[PoolSnapshot]:
        """Most recent successful snapshot of a pool (ties -> latest write)"""
        with self.session() as session:
            return (
                session.query(PoolSnapshot)
                .filter(
                    PoolSnapshot.pool_address == pool_address.lower(),
                    PoolSnapshot.success.is_(True)
                )
                .order_by(PoolSnapshot.timestamp.desc(), PoolSnapshot.id.desc())
                .first()
            )

    def latest_successful_snapshots(
        self,
        since: Optional[datetime] = None
    ) -> List[PoolSnapshot]:
        """
        Latest successful snapshot per pool

        Args:
            since: Ignore pools whose latest successful snapshot is older

        Returns:
            One snapshot per pool (unordered)
        """
        with self.session() as session:
            latest_ids = (
                session.query(func.max(PoolSnapshot.id))
                .filter(PoolSnapshot.success.is_(True))
                .group_by(PoolSnapshot.pool_address)
            )
            query = session.query(PoolSnapshot).filter(PoolSnapshot.id.in_(latest_ids))
            if since is not None:
                query = query.filter(PoolSnapshot.timestamp >= since)
            return query.all()

    # =========================================================================
    # AUTOMATION RECORDS
    # =========================================================================

    def add_automation_record(self, record: AutomationRecord) -> AutomationRecord:
        with self.session() as session:
            session.add(record)
        return record

    def automation_history(
        self,
        vault_address: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 50
    ) -> List[AutomationRecord]:
        """Automation records, newest first"""
        with self.session() as session:
            query = session.query(AutomationRecord)
            if vault_address:
                query = query.filter(AutomationRecord.vault_address == vault_address.lower())
            if since is not None:
                query = query.filter(AutomationRecord.timestamp >= since)

            return (
                query
                .order_by(AutomationRecord.timestamp.desc(), AutomationRecord.id.desc())
                .limit(limit)
                .all()
            )

    def latest_automation_record(
        self,
        vault_address: Optional[str] = None
    ) -> Optional[AutomationRecord]:
        records = self.automation_history(vault_address, limit=1)
        return records[0] if records else None

    # =========================================================================
    # MARKET AVERAGES
    # =========================================================================

    def add_market_average(self, average: MarketAverage) -> MarketAverage:
        with self.session() as session:
            session.add(average)
        return average

    def market_average_history(
        self,
        token_address: Optional[str] = None,
        since: Optional[datetime] = None
    ) -> List[MarketAverage]:
        """
        Market averages, oldest first

        Args:
            token_address: Input token, or None for the all-pools average
            since: Only rows at or after this naive-UTC time
        """
        with self.session() as session:
            query = session.query(MarketAverage)
            if token_address is None:
                query = query.filter(MarketAverage.token_address.is_(None))
            else:
                query = query.filter(MarketAverage.token_address == token_address.lower())
            if since is not None:
                query = query.filter(MarketAverage.timestamp >= since)
            return query.order_by(MarketAverage.timestamp.asc(), MarketAverage.id.asc()).all()

    # =========================================================================
    # VAULT SNAPSHOTS
    # =========================================================================

    def add_vault_snapshot(self, snapshot: VaultSnapshot) -> VaultSnapshot:
        with self.session() as session:
            session.add(snapshot)
        return snapshot

    def vault_history(
        self,
        vault_address: str,
        since: Optional[datetime] = None
    ) -> List[VaultSnapshot]:
        with self.session() as session:
            query = session.query(VaultSnapshot).filter(
                VaultSnapshot.vault_address == vault_address.lower()
            )
            if since is not None:
                query = query.filter(VaultSnapshot.timestamp >= since)
            return query.order_by(VaultSnapshot.timestamp.asc(), VaultSnapshot.id.asc()).all()

    # =========================================================================
    # SCHEDULED TASK EXECUTIONS
    # =========================================================================

    def start_task_execution(
        self,
        task_name: str,
        task_type: str = 'scheduler',
        triggered_by: str = 'system'
    ) -> int:
        """Insert a RUNNING execution row and return its id"""
        with self.session() as session:
            execution = ScheduledTaskExecution(
                task_name=task_name,
                task_type=task_type,
                status='RUNNING',
                started_at=utc_now(),
                triggered_by=triggered_by
            )
            session.add(execution)
            session.flush()
            return execution.id

    def finish_task_execution(
        self,
        execution_id: int,
        status: str,
        duration_seconds: float,
        error_message: Optional[str] = None,
        metadata: Optional[dict] = None
    ) -> None:
        with self.session() as session:
            execution = session.get(ScheduledTaskExecution, execution_id)
            if execution is None:
                logger.warning(f"Task execution {execution_id} not found")
                return

            execution.status = status
            execution.completed_at = utc_now()
            execution.duration_seconds = duration_seconds
            execution.error_message = error_message
            execution.task_metadata = metadata or {}

    def task_history(
        self,
        task_name: Optional[str] = None,
        limit: int = 50
    ) -> List[ScheduledTaskExecution]:
        with self.session() as session:
            query = session.query(ScheduledTaskExecution)
            if task_name:
                query = query.filter(ScheduledTaskExecution.task_name == task_name)
            return (
                query
                .order_by(ScheduledTaskExecution.started_at.desc(), ScheduledTaskExecution.id.desc())
                .limit(limit)
                .all()
            )
