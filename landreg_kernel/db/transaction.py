"""
TransactionManager -- one shared unit-of-work boundary for every component.

Responsibility:
    Opens, commits and rolls back sessions on behalf of the workflow
    components.  Components receive the same manager through constructor
    injection, so an operation that calls into another component (the
    wizard submitting through the approval engine, the engine invoking
    the dispatcher) runs in ONE transaction.

Architecture position:
    Kernel > DB.  Imports only SQLAlchemy and logging.

Invariants enforced:
    - ``transaction()`` joins the transaction already active in the current
      context; only the outermost block commits or rolls back.
    - ``independent()`` always opens a fresh transaction, even when one is
      active, and restores the outer one afterwards.

Failure modes:
    - Any exception inside the outermost block rolls the session back and
      is re-raised unchanged.
"""

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator
from uuid import uuid4

from sqlalchemy.orm import Session, sessionmaker

from landreg_kernel.logging_config import get_logger

logger = get_logger("db.transaction")


class TransactionManager:
    """
    Context-aware session provider.

    Contract:
        Services never commit.  Only the outermost ``transaction()`` /
        ``independent()`` block owned by this manager commits.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory
        self._current: ContextVar[Session | None] = ContextVar(
            f"landreg_tx_{uuid4().hex}", default=None
        )

    def in_transaction(self) -> bool:
        """True when a block owned by this manager is active in this context."""
        return self._current.get() is not None

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Join the active transaction or open a new one."""
        active = self._current.get()
        if active is not None:
            yield active
            return
        with self._open() as session:
            yield session

    @contextmanager
    def independent(self) -> Iterator[Session]:
        """Always open a new transaction, isolated from any active one."""
        with self._open() as session:
            yield session

    @contextmanager
    def _open(self) -> Iterator[Session]:
        session = self._session_factory()
        token = self._current.set(session)
        logger.debug("transaction_started")
        try:
            yield session
            session.commit()
            logger.debug("transaction_committed")
        except Exception:
            session.rollback()
            logger.warning("transaction_rolled_back", exc_info=True)
            raise
        finally:
            self._current.reset(token)
            session.close()
