from __future__ import annotations

import asyncio
import concurrent.futures
import inspect
import logging
import time
from collections import deque
from enum import Enum
from typing import Awaitable, Callable, Generic, TypeVar

from bikawo.infra.metrics import metrics

logger = logging.getLogger("bikawo.circuit")

T = TypeVar("T")


class CircuitBreakerOpenError(RuntimeError):
    pass


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class _FailureWindow:
    """Timestamps of recent failures, trimmed to a sliding window."""

    def __init__(self, window_seconds: float) -> None:
        self.window_seconds = window_seconds
        self._stamps: deque[float] = deque()

    def add(self, now: float) -> int:
        self._stamps.append(now)
        horizon = now - self.window_seconds
        while self._stamps and self._stamps[0] < horizon:
            self._stamps.popleft()
        return len(self._stamps)

    def clear(self) -> None:
        self._stamps.clear()


class CircuitBreaker(Generic[T]):
    """Guards calls to a remote provider such as the refund gateway.

    ``failure_threshold`` failures within ``window_seconds`` open the circuit
    and calls fail fast with ``CircuitBreakerOpenError``. Once ``recovery_time``
    has passed, up to ``half_open_max_calls`` probes go through; a successful
    probe closes the circuit, a failed one opens it again. Calls exceeding the
    timeout raise the builtin ``TimeoutError`` and count as failures.
    """

    def __init__(
        self,
        *,
        name: str,
        failure_threshold: int = 5,
        recovery_time: float = 30.0,
        window_seconds: float = 60.0,
        half_open_max_calls: int = 1,
        timeout_seconds: float | None = None,
    ) -> None:
        self.name = name
        self.failure_threshold = max(1, failure_threshold)
        self.recovery_time = max(0.01, recovery_time)
        self.half_open_max_calls = max(1, half_open_max_calls)
        self.timeout_seconds = None if timeout_seconds is None else max(0.01, timeout_seconds)
        self._failures = _FailureWindow(max(0.01, window_seconds))
        self._lock = asyncio.Lock()
        self._opened_at = 0.0
        self._probes = 0
        self._state = CircuitState.CLOSED
        metrics.record_circuit_state(self.name, self._state.value)

    @property
    def state(self) -> str:
        return self._state.value

    def _transition(self, state: CircuitState) -> None:
        if state is self._state:
            return
        self._state = state
        metrics.record_circuit_state(self.name, state.value)
        logger.info("circuit_state_changed", extra={"extra": {"name": self.name, "state": state.value}})

    async def call(
        self,
        fn: Callable[..., T | Awaitable[T]],
        *args,
        timeout_seconds: float | None = None,
        **kwargs,
    ) -> T:
        await self._admit()
        timeout = self.timeout_seconds if timeout_seconds is None else max(0.01, timeout_seconds)
        try:
            result = fn(*args, **kwargs)
            if isinstance(result, concurrent.futures.Future):
                result = asyncio.wrap_future(result)
            if inspect.isawaitable(result):
                result = await self._bounded(result, timeout)
        except Exception as exc:  # noqa: BLE001
            await self._on_failure()
            logger.warning(
                "circuit_call_failed",
                extra={"extra": {"name": self.name, "state": self.state, "error_type": type(exc).__name__}},
            )
            raise
        await self._on_success()
        return result  # type: ignore[return-value]

    @staticmethod
    async def _bounded(awaitable: Awaitable[T], timeout: float | None) -> T:
        if timeout is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise TimeoutError(f"timed out after {timeout}s") from exc

    async def _admit(self) -> None:
        async with self._lock:
            if self._state is CircuitState.OPEN:
                if time.monotonic() - self._opened_at < self.recovery_time:
                    raise CircuitBreakerOpenError(f"circuit_open:{self.name}")
                self._probes = 0
                self._transition(CircuitState.HALF_OPEN)
            if self._state is CircuitState.HALF_OPEN:
                if self._probes >= self.half_open_max_calls:
                    raise CircuitBreakerOpenError(f"circuit_half_open_limit:{self.name}")
                self._probes += 1

    async def _on_failure(self) -> None:
        async with self._lock:
            now = time.monotonic()
            recent = self._failures.add(now)
            if self._state is CircuitState.HALF_OPEN or recent >= self.failure_threshold:
                self._opened_at = now
                self._probes = 0
                self._transition(CircuitState.OPEN)

    async def _on_success(self) -> None:
        async with self._lock:
            self._failures.clear()
            self._probes = 0
            self._transition(CircuitState.CLOSED)

    def reset(self) -> None:
        self._failures.clear()
        self._probes = 0
        self._transition(CircuitState.CLOSED)
