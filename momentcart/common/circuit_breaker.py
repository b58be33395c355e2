import asyncio
import time
from typing import Optional


class CircuitOpenError(RuntimeError):
    pass


class CircuitBreaker:
    """
    Async in-memory circuit breaker guarding the checkout store.

    Usage:
      cb = CircuitBreaker(name="store", failure_threshold=5, recovery_timeout=30)

    Behavior:
      - CLOSED: normal operation; recoverable failures increment fail_count.
      - OPEN: before_call() raises CircuitOpenError until recovery_timeout elapses.
      - HALF_OPEN: a limited number of probes go through; enough successes close
        the circuit, any failure reopens it.
    """
    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        half_open_success_threshold: int = 1,
        max_concurrent_half_open_probes: int = 1,
    ):
        self.name = name
        self.failure_threshold = max(1, int(failure_threshold))
        self.recovery_timeout = float(recovery_timeout)
        self.half_open_success_threshold = max(1, int(half_open_success_threshold))
        self.max_concurrent_half_open_probes = max_concurrent_half_open_probes

        self._state = "CLOSED"  # CLOSED | OPEN | HALF_OPEN
        self._fail_count = 0
        self._opened_at: Optional[float] = None
        self._half_open_success_count = 0
        self._probes_in_flight = 0

        self._lock = asyncio.Lock()

    @property
    def state(self) -> str:
        return self._state

    def _maybe_transition(self):
        # caller holds the lock
        if self._state == "OPEN" and self._opened_at is not None:
            if time.monotonic() - self._opened_at >= self.recovery_timeout:
                self._state = "HALF_OPEN"
                self._half_open_success_count = 0
                self._probes_in_flight = 0

    async def before_call(self) -> bool:
        """Raise CircuitOpenError when calls must fail fast.

        Returns True when the caller was admitted as a half-open probe and must
        call release_probe() once it is done.
        """
        async with self._lock:
            self._maybe_transition()
            if self._state == "OPEN":
                raise CircuitOpenError(f"circuit {self.name} is open")
            if self._state == "HALF_OPEN":
                if self._probes_in_flight >= self.max_concurrent_half_open_probes:
                    raise CircuitOpenError(f"circuit {self.name} is half-open and probes are saturated")
                self._probes_in_flight += 1
                return True
        return False

    async def release_probe(self):
        async with self._lock:
            self._probes_in_flight = max(0, self._probes_in_flight - 1)

    async def record_success(self):
        async with self._lock:
            if self._state == "HALF_OPEN":
                self._half_open_success_count += 1
                if self._half_open_success_count >= self.half_open_success_threshold:
                    self._close()
            elif self._state == "OPEN":
                self._close()
            else:
                self._fail_count = 0

    async def record_failure(self):
        async with self._lock:
            if self._state == "HALF_OPEN":
                self._open()
            elif self._state == "CLOSED":
                self._fail_count += 1
                if self._fail_count >= self.failure_threshold:
                    self._open()

    def _open(self):
        self._state = "OPEN"
        self._opened_at = time.monotonic()
        self._fail_count = 0
        self._half_open_success_count = 0

    def _close(self):
        self._state = "CLOSED"
        self._fail_count = 0
        self._opened_at = None
        self._half_open_success_count = 0


store_circuit = CircuitBreaker(name="checkout-store", failure_threshold=5, recovery_timeout=30.0)
