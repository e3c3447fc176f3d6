"""
Atomic units with bounded retry.

A unit is a callable run against a fresh Session and committed at the
end. Transient write conflicts roll the whole unit back and run it again,
up to a fixed budget; after that the caller gets a ConflictError. Any
other exception rolls back and propagates unchanged. Closing the session
without a commit (including on cancellation) discards every write.
"""

import random
import time
from typing import Callable, TypeVar

from loguru import logger
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from shelfdesk.circulation.errors import ConflictError

T = TypeVar("T")

# Substrings of driver messages that mean "try again"
TRANSIENT_MARKERS = (
    "database is locked",
    "database table is locked",
    "busy",
    "deadlock",
    "could not serialize",
    "serialization failure",
    "lock timeout",
)


class WriteConflict(Exception):
    """Raised inside a unit when a compare-and-swap write matched no row."""


def is_transient(exc: BaseException) -> bool:
    """True for errors that a rerun of the unit can resolve."""
    if isinstance(exc, (StaleDataError, WriteConflict)):
        return True
    if isinstance(exc, (OperationalError, DBAPIError)):
        message = str(getattr(exc, "orig", exc)).lower()
        return any(marker in message for marker in TRANSIENT_MARKERS)
    return False


class AtomicRunner:
    """
    Runs units of work atomically, retrying transient conflicts.

    Usage:
        runner = AtomicRunner(repo.SessionLocal, max_retries=5)
        txn = runner.run("borrow", lambda session: ...)
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        max_retries: int = 5,
        backoff_seconds: float = 0.02,
    ):
        """
        Args:
            session_factory: Creates the Session for each attempt
            max_retries: Extra attempts after the first one
            backoff_seconds: Base delay, multiplied by the attempt number
        """
        self.session_factory = session_factory
        self.max_retries = max(0, max_retries)
        self.backoff_seconds = max(0.0, backoff_seconds)

    def run(self, operation: str, work: Callable[[Session], T]) -> T:
        """
        Run `work` in a transaction, committing on success.

        Args:
            operation: Name used in logs and in ConflictError
            work: Unit of work; its return value is returned after commit

        Returns:
            Whatever `work` returned

        Raises:
            ConflictError: Transient conflicts outlasted the retry budget
        """
        attempts = self.max_retries + 1

        for attempt in range(1, attempts + 1):
            with self.session_factory() as session:
                try:
                    result = work(session)
                    session.commit()
                    return result
                except Exception as e:
                    session.rollback()
                    if not is_transient(e):
                        raise
                    if attempt == attempts:
                        logger.warning(
                            f"{operation} gave up after {attempts} attempts: {e}"
                        )
                        raise ConflictError(operation, attempts, detail=str(e)) from e
                    logger.debug(f"{operation} attempt {attempt} conflicted, retrying: {e}")

            self._sleep(attempt)

        raise ConflictError(operation, attempts)

    def _sleep(self, attempt: int) -> None:
        if self.backoff_seconds:
            delay = self.backoff_seconds * attempt
            time.sleep(delay + random.uniform(0, delay))
