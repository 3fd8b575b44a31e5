"""Duration logging for outbound calls."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager


@contextmanager
def time_block(
    name: str,
    *,
    logger: logging.Logger | None = None,
    level: int = logging.DEBUG,
    slow_ms: float | None = None,
) -> Iterator[None]:
    """Log how long the block took; at WARNING when it exceeded ``slow_ms``."""
    log = logger or logging.getLogger(__name__)
    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        if slow_ms is not None and elapsed_ms > slow_ms:
            level = max(level, logging.WARNING)
        log.log(level, "%s took %.1fms", name, elapsed_ms, extra={"event": "timing"})
