"""Bounded admission for store calls.

Each entity type gets one bulkhead: a bounded semaphore sized by
``DATA_LAYER["MAX_CONCURRENT_QUERIES"]``. A caller that cannot obtain a
slot within ``ADMISSION_TIMEOUT`` seconds is rejected with
``ServiceOverloaded`` instead of queueing on the connection pool forever.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

import structlog
from django.conf import settings

from modules.core.exceptions import ServiceOverloaded

logger = structlog.get_logger(__name__)


class Bulkhead:
    def __init__(self, name: str, max_concurrent: int, timeout: float) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1.")
        self.name = name
        self.max_concurrent = max_concurrent
        self.timeout = timeout
        self._slots = threading.BoundedSemaphore(max_concurrent)

    @contextmanager
    def admit(self, operation: str) -> Iterator[None]:
        """Hold one slot for the duration of the ``with`` block.

        Raises:
            ServiceOverloaded: no slot freed up within ``timeout`` seconds.
        """
        if not self._slots.acquire(timeout=self.timeout):
            logger.warning(
                "bulkhead.rejected",
                bulkhead=self.name,
                operation=operation,
                max_concurrent=self.max_concurrent,
            )
            raise ServiceOverloaded(
                operation,
                self.name,
                reason=f"no slot free within {self.timeout}s",
            )
        try:
            yield
        finally:
            self._slots.release()


_registry: dict[str, Bulkhead] = {}
_registry_lock = threading.Lock()


def get_bulkhead(name: str) -> Bulkhead:
    """Return the process-wide bulkhead for ``name``, creating it on first use."""
    with _registry_lock:
        bulkhead = _registry.get(name)
        if bulkhead is None:
            conf = settings.DATA_LAYER
            bulkhead = Bulkhead(
                name,
                conf["MAX_CONCURRENT_QUERIES"],
                conf["ADMISSION_TIMEOUT"],
            )
            _registry[name] = bulkhead
        return bulkhead
