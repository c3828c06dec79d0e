import asyncio
import functools
import time

from .logger import logger

# Router calls fan out to remote venues; anything slower than this is worth a warning.
SLOW_CALL_MS = 2000.0


def log_timing(func=None, *, label=None, slow_ms=SLOW_CALL_MS):
    """Log how long a coroutine took.

    Usable bare (``@log_timing``) or with options
    (``@log_timing(label="route", slow_ms=500)``). Calls over ``slow_ms`` are
    logged at WARNING, failures are logged and re-raised.
    """
    if func is None:
        return functools.partial(log_timing, label=label, slow_ms=slow_ms)

    if not asyncio.iscoroutinefunction(func):
        raise TypeError(f"log_timing expects a coroutine function, got {func!r}")

    name = label or func.__qualname__

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        started = time.perf_counter()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            elapsed = round((time.perf_counter() - started) * 1000, 2)
            logger.warning(f"{name} failed", duration_ms=elapsed, error=str(e))
            raise

        elapsed = round((time.perf_counter() - started) * 1000, 2)
        if elapsed > slow_ms:
            logger.warning(f"{name} slow", duration_ms=elapsed, threshold_ms=slow_ms)
        else:
            logger.debug(f"{name} completed", duration_ms=elapsed)
        return result

    return wrapper
