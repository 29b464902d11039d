"""
kudos.services.retry — Bounded retry with exponential backoff + jitter
=======================================================================

Storage calls that fail with a transient SQLAlchemy error
(``OperationalError`` / ``DBAPIError``: dropped connection, lock timeout,
failover) are retried a bounded number of times.  Backoff doubles per
attempt up to a ceiling, plus up to 50 % random jitter.  When the budget
is spent the failure surfaces as :class:`~kudos.errors.TransientStorageError`.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from kudos.errors import TransientStorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: tuple[type[Exception], ...] = (OperationalError, DBAPIError)


def backoff_delay(attempt: int, base: float, maximum: float) -> float:
    """Delay before retry number *attempt* (1-based), jitter included."""
    backoff = min(base * (2 ** (attempt - 1)), maximum)
    jitter = random.uniform(0, backoff * 0.5)
    return backoff + jitter


def retry_transient(
    func: Callable[[], T],
    *,
    attempts: int = 3,
    base: float = 0.05,
    maximum: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "storage call",
) -> T:
    """Call *func*, retrying transient storage failures.

    Raises
    ------
    TransientStorageError
        After *attempts* consecutive transient failures.
    """
    attempt = 0
    while True:
        try:
            return func()
        except IntegrityError:
            # Constraint violations are not transient
            raise
        except TRANSIENT_ERRORS as exc:
            attempt += 1
            if attempt >= attempts:
                logger.error(
                    "%s failed after %d attempts: %s", description, attempt, exc,
                )
                raise TransientStorageError(
                    f"{description} failed after {attempt} attempts",
                    {"attempts": attempt, "error": type(exc).__name__},
                ) from exc

            wait = backoff_delay(attempt, base, maximum)
            logger.warning(
                "%s hit a transient error (attempt %d/%d). Retrying in %.2fs…",
                description, attempt, attempts, wait,
            )
            sleep(wait)
