"""Unit of work abstractions shared by the guard, the writer and the relay."""
from __future__ import annotations

import logging
import time
from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Callable, Protocol, TypeVar

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import TransientStoreError, UnitOfWorkError


logger = logging.getLogger(__name__)

T = TypeVar("T")


class UnitOfWork(AbstractContextManager):
    """Abstract unit-of-work contract."""

    session: Session

    def commit(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def rollback(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def close(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if exc:
                self.rollback()
            elif not getattr(self, "_skip_commit", False):
                self.commit()
        finally:
            self.close()
        return False


SessionFactory = Callable[[], Session]


@dataclass(slots=True)
class SQLAlchemyUnitOfWork(UnitOfWork):
    """SQLAlchemy-backed unit of work with explicit session factory."""

    session_factory: SessionFactory
    session: Session = None  # type: ignore[assignment]
    _skip_commit: bool = False

    def __post_init__(self) -> None:
        self.session = self.session_factory()

    def commit(self) -> None:
        try:
            self.session.commit()
        except OperationalError:
            self.session.rollback()
            raise
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise UnitOfWorkError("COMMIT_FAILED") from exc

    def rollback(self) -> None:
        self._skip_commit = True
        self.session.rollback()

    def close(self) -> None:
        self.session.close()


class UnitOfWorkFactory(Protocol):
    """Factory protocol producing new unit of work instances."""

    def __call__(self) -> UnitOfWork:
        """Return a ready-to-use unit of work."""


def sqlalchemy_uow_factory(session_factory: SessionFactory) -> UnitOfWorkFactory:
    def factory() -> UnitOfWork:
        return SQLAlchemyUnitOfWork(session_factory=session_factory)

    return factory


def run_in_transaction(
    uow_factory: UnitOfWorkFactory,
    work: Callable[[UnitOfWork], T],
    *,
    max_retries: int = 3,
    base_delay: float = 0.05,
    max_delay: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``work`` in a fresh unit of work, retrying lock contention.

    Only ``OperationalError`` (locks, serialisation failures, dropped
    connections) is retried; anything else propagates unchanged. Once the
    budget is spent the contention surfaces as ``TransientStoreError``.
    """

    attempt = 0
    while True:
        try:
            with uow_factory() as uow:
                return work(uow)
        except OperationalError as exc:
            attempt += 1
            if attempt > max_retries:
                logger.error(
                    "transaction failed after retries",
                    extra={"code": "TX_FAILED", "attempts": attempt, "detail": str(exc)[:200]},
                )
                raise TransientStoreError("store contention outlived the retry budget") from exc
            delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
            logger.warning(
                "transaction hit contention; retrying",
                extra={"code": "TX_RETRY", "attempt": attempt, "delay": delay},
            )
            sleep(delay)


__all__ = [
    "SQLAlchemyUnitOfWork",
    "SessionFactory",
    "UnitOfWork",
    "UnitOfWorkFactory",
    "run_in_transaction",
    "sqlalchemy_uow_factory",
]
