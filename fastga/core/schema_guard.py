#!/usr/bin/env python3
"""
Process-wide guard around schema descriptor compilation.

Compiling a container schema stages the descriptor text through one
temporary file whose name depends only on the process id, so two threads
compiling at once overwrite each other's descriptor. Every compilation must
go through a SchemaGuard.
"""
import logging
import threading
from typing import Callable, TypeVar

T = TypeVar('T')

logger = logging.getLogger("fastga.core.schema_guard")


class SchemaGuard:
    """Serializes schema compilation across all threads of the process

    Every instance shares one class-level lock; only the acquisition
    counter is per instance.
    """

    _lock = threading.Lock()

    def __init__(self):
        self.acquisitions = 0

    def with_exclusive_schema_access(self, func: Callable[[], T]) -> T:
        """Run func while holding the process-wide schema lock

        Concurrent callers block until the lock is released; contention is
        never reported as an error.

        Args:
            func: Zero-argument callable performing the compilation

        Returns:
            Whatever func returns
        """
        with self._lock:
            self.acquisitions += 1
            logger.debug(f"Schema access #{self.acquisitions} granted")
            return func()


DEFAULT_SCHEMA_GUARD = SchemaGuard()


def with_exclusive_schema_access(func: Callable[[], T]) -> T:
    """Run func under the process-wide default schema guard"""
    return DEFAULT_SCHEMA_GUARD.with_exclusive_schema_access(func)
