"""
Module: shipment_kernel.selectors.base
Responsibility: Abstract base class for read-only query selectors, plus the
    bounded retry policy applied to reads when the store is unreachable.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/dtos.py.  MUST NOT import from services/.

Invariants enforced:
    - Read-only access: selectors never add, delete, flush or commit.
    - DTO return convention: selectors return frozen dataclasses, never ORM
      instances.
    - Reads are retried at most ``retries`` extra times on OperationalError /
      InterfaceError; mutations are never routed through ``run_with_read_retry``.

Failure modes:
    - StoreUnavailableError once the retry budget is spent.
"""

import time
from abc import ABC
from typing import Callable, TypeVar

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from shipment_kernel.exceptions import StoreUnavailableError
from shipment_kernel.logging_config import get_logger

logger = get_logger("selectors.base")

T = TypeVar("T")

TRANSIENT_STORE_ERRORS = (OperationalError, InterfaceError)


def run_with_read_retry(
    operation: str,
    attempt: Callable[[], T],
    retries: int = 3,
    backoff_seconds: float = 0.05,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run ``attempt`` until it succeeds or ``retries`` retries are spent.

    ``attempt`` must open its own session so every try starts clean.  The
    wait grows linearly with the attempt number.
    """
    attempts = 0

    def counted() -> T:
        nonlocal attempts
        attempts += 1
        return attempt()

    def log_retry(retry_state: RetryCallState) -> None:
        logger.warning(
            "store_read_retry",
            extra={"operation": operation, "attempt": retry_state.attempt_number},
        )

    retrying = Retrying(
        stop=stop_after_attempt(retries + 1),
        wait=wait_incrementing(start=backoff_seconds, increment=backoff_seconds),
        retry=retry_if_exception_type(TRANSIENT_STORE_ERRORS),
        before_sleep=log_retry,
        sleep=sleep,
        reraise=True,
    )
    try:
        return retrying(counted)
    except TRANSIENT_STORE_ERRORS as exc:
        logger.error(
            "store_read_failed",
            extra={"operation": operation, "attempts": attempts},
        )
        raise StoreUnavailableError(operation, str(exc.orig or exc), attempts) from exc


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only queries
        and return DTOs.
    """

    def __init__(self, session: Session):
        self.session = session
