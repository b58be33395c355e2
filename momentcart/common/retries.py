import asyncio
import functools
import random
from typing import Callable, Optional
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from momentcart.common import logger
from momentcart.common.circuit_breaker import CircuitBreaker, CircuitOpenError, store_circuit
from momentcart.common.errors import StoreUnavailable


def is_recoverable_exception(exc: BaseException) -> bool:
    if isinstance(exc, asyncio.CancelledError):
        return False
    # transient store failures: dropped connections, timeouts, lock waits
    if isinstance(exc, (TimeoutError, ConnectionError, OperationalError, InterfaceError)):
        return True
    if isinstance(exc, DBAPIError):
        if getattr(exc, "connection_invalidated", False):
            return True
        orig = getattr(exc, "orig", None)
        if orig is not None:
            name = type(orig).__name__.lower()
            if any(k in name for k in ("timeout", "connection", "brokenpipe", "deadlock", "serialization")):
                return True
    return False


async def _sleep_with_jitter(delay: float, jitter: float) -> None:
    jitter_val = random.uniform(-jitter * delay, jitter * delay)
    await asyncio.sleep(max(0.0, delay + jitter_val))


def retry_with_db_circuit(
    *,
    attempts: int = 3,
    base_delay: float = 0.1,
    factor: float = 2.0,
    max_delay: float = 1.0,
    jitter: float = 0.15,
    if_retryable: Optional[Callable[[BaseException], bool]] = None,
    per_attempt_timeout: Optional[float] = None,
    circuit: Optional[CircuitBreaker] = None,
):
    """Retry a whole unit of work on recoverable store errors.

    The wrapped coroutine must own its transaction so a retry starts from scratch.
    Exhausted retries and an open circuit both surface as StoreUnavailable.
    """
    if if_retryable is None:
        if_retryable = is_recoverable_exception

    def deco(fn: Callable):
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            breaker = circuit or store_circuit
            for attempt in range(1, attempts + 1):
                try:
                    is_probe = await breaker.before_call()
                except CircuitOpenError:
                    raise StoreUnavailable()

                try:
                    if per_attempt_timeout:
                        result = await asyncio.wait_for(fn(*args, **kwargs), timeout=per_attempt_timeout)
                    else:
                        result = await fn(*args, **kwargs)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    if not if_retryable(exc):
                        await breaker.record_success()
                        raise

                    await breaker.record_failure()
                    if attempt == attempts:
                        logger.error("store.retries_exhausted", extra={"operation": fn.__name__, "attempts": attempts})
                        raise StoreUnavailable() from exc

                    delay = min(max_delay, base_delay * (factor ** (attempt - 1)))
                    logger.debug("transaction retry attempt %d failed; retrying in %f: %s", attempt, delay, exc)
                    await _sleep_with_jitter(delay, jitter)
                    continue
                finally:
                    if is_probe:
                        await breaker.release_probe()

                await breaker.record_success()
                return result
        return wrapper
    return deco
