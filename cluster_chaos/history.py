"""
Operation History Store.

============================================================
PURPOSE
============================================================
Persists every recorded operation of a run so the history can
be analysed after the fact.

- One row per invocation or completion
- Rows are ordered by their index within the run
- Values are stored as JSON

============================================================
"""

import json
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Generator, List, Optional

from sqlalchemy import (
    Column, Float, Integer, String, DateTime, JSON, Index, create_engine,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .exceptions import ChaosException
from .models import Operation, OperationType


logger = logging.getLogger(__name__)


Base = declarative_base()


def utc_now():
    """Get current UTC timestamp."""
    return datetime.utcnow()


# =============================================================
# HISTORY TABLE
# =============================================================

class OperationRecord(Base):
    """One operation of a run's history."""
    __tablename__ = "operation_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(String(36), nullable=False, index=True)
    position = Column(Integer, nullable=False)

    process = Column(String(32), nullable=True)
    op_type = Column(String(16), nullable=False)
    action = Column(String(64), nullable=False)
    value = Column(JSON, nullable=True)
    op_time = Column(Float, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index("idx_operation_history_run_position", "run_id", "position"),
    )

    def to_operation(self) -> Operation:
        return Operation(
            type=OperationType(self.op_type),
            action=self.action,
            value=self.value,
            process=self.process,
            time=self.op_time,
        )


class HistoryPersistenceError(ChaosException):
    """The history could not be written or read."""


def _jsonable(value: Any) -> Any:
    """Coerce a value into something the JSON column accepts."""
    return json.loads(json.dumps(value, default=str))


# =============================================================
# STORE
# =============================================================

class HistoryStore:
    """Append-only store of operation histories."""

    def __init__(self, database_url: str = "sqlite:///:memory:", echo: bool = False):
        kwargs = {}
        if database_url.startswith("sqlite") and ":memory:" in database_url:
            # One shared connection, or every session sees an empty database
            kwargs = {
                "poolclass": StaticPool,
                "connect_args": {"check_same_thread": False},
            }

        logger.info(f"Creating history store for: {database_url.split('@')[-1]}")
        self._engine = create_engine(database_url, echo=echo, future=True, **kwargs)
        Base.metadata.create_all(self._engine)
        self._session_factory = sessionmaker(
            bind=self._engine,
            autoflush=False,
            expire_on_commit=False,
        )
        self._positions: dict = {}

    @contextmanager
    def transaction_scope(self) -> Generator[Session, None, None]:
        """
        Commits only if no exception occurs.
        Rolls back on ANY exception.
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            logger.error(f"History transaction failed, rolling back: {e}")
            session.rollback()
            raise HistoryPersistenceError(f"Transaction failed: {e}", cause=e) from e
        finally:
            session.close()

    def record(self, run_id: str, op: Operation) -> int:
        """Append an operation; returns its position in the run."""
        position = self._positions.get(run_id, 0)
        row = op.to_dict()
        with self.transaction_scope() as session:
            session.add(OperationRecord(
                run_id=run_id,
                position=position,
                process=row["process"],
                op_type=row["type"],
                action=row["action"],
                value=_jsonable(row["value"]),
                op_time=row["time"],
            ))
        self._positions[run_id] = position + 1
        return position

    def history(self, run_id: str, process: Optional[str] = None) -> List[Operation]:
        """All operations of a run in recording order."""
        with self.transaction_scope() as session:
            query = session.query(OperationRecord).filter(
                OperationRecord.run_id == run_id
            )
            if process is not None:
                query = query.filter(OperationRecord.process == process)
            rows = query.order_by(OperationRecord.position).all()
            return [row.to_operation() for row in rows]

    def close(self) -> None:
        self._engine.dispose()
