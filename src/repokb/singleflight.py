"""Lazy, memoized initialization shared by concurrent first callers."""
from __future__ import annotations

import threading
from concurrent.futures import Future
from typing import Callable, Generic, TypeVar

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """Run `factory` at most once per generation; concurrent callers share it.

    The first caller becomes the leader and runs the factory outside the lock;
    everyone arriving while it runs waits on the same in-flight Future and
    receives the same value (or exception). Failures are not memoized, so the
    next call after a failure tries again. `reset()` drops the cached value.
    """

    def __init__(self, factory: Callable[[], T]) -> None:
        self._factory = factory
        self._lock = threading.Lock()
        self._value: T | None = None
        self._ready = False
        self._inflight: Future[T] | None = None
        self._generation = 0

    @property
    def ready(self) -> bool:
        with self._lock:
            return self._ready

    def get(self) -> T:
        with self._lock:
            if self._ready:
                return self._value  # type: ignore[return-value]
            fut = self._inflight
            leader = fut is None
            if leader:
                fut = Future()
                self._inflight = fut
            generation = self._generation

        assert fut is not None
        if not leader:
            return fut.result()

        try:
            value = self._factory()
        except BaseException as e:
            with self._lock:
                if self._inflight is fut:
                    self._inflight = None
            fut.set_exception(e)
            raise

        with self._lock:
            if self._generation == generation:
                self._value = value
                self._ready = True
            if self._inflight is fut:
                self._inflight = None
        fut.set_result(value)
        return value

    def reset(self) -> None:
        with self._lock:
            self._generation += 1
            self._value = None
            self._ready = False
            self._inflight = None
