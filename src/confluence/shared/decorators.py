from __future__ import annotations
from functools import wraps
import logging
import time

def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0

def logged(fn):
    """Debug-log a broker call with its result and duration; log and re-raise failures."""
    log = logging.getLogger(fn.__module__)

    @wraps(fn)
    def wrapper(*args, **kwargs):
        name = fn.__qualname__
        started = time.perf_counter()
        try:
            res = fn(*args, **kwargs)
        except Exception:
            log.exception("%s failed after %.1f ms", name, _elapsed_ms(started))
            raise
        log.debug("%s -> %r (%.1f ms)", name, res, _elapsed_ms(started))
        return res
    return wrapper
