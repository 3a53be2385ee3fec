"""
Thread-safe building blocks for the factorial pipeline.

Every container here is safe to use from several threads without the caller
taking a lock. The pipeline shares exactly these objects between the Ingestor,
the worker pool and the Emitter.

COMPONENTS:
1. ResultCache: put-if-absent map with wait/notify lookups
2. OrderQueue: bounded FIFO whose put blocks when full
3. PermitBudget: admission control on top of the thread pool
4. RateLimiter: per-task minimum duration plus a completion log for rate stats
"""
import logging
import queue
import threading
import time
from concurrent.futures import CancelledError
from contextlib import contextmanager
from typing import Iterator

import numpy as np

logger = logging.getLogger(__name__)

# Upper bound for a single blocking wait, so cancellation is noticed promptly
_CANCEL_POLL_SECONDS = 0.05


# ============================================================================
# PART 1: RESULT CACHE
# ============================================================================

class ResultCache:
    """
    Concurrent mapping from input value to computed factorial.

    Entries are written once and never overwritten. Readers can block on
    wait_for() until a key shows up; writers notify all waiters on every put.
    """

    def __init__(self):
        self._entries: dict[int, int] = {}
        self._condition = threading.Condition()

    def __contains__(self, key: int) -> bool:
        with self._condition:
            return key in self._entries

    def __len__(self) -> int:
        with self._condition:
            return len(self._entries)

    def get(self, key: int) -> int | None:
        with self._condition:
            return self._entries.get(key)

    def put_if_absent(self, key: int, value: int) -> bool:
        """Store value under key unless already present. Returns True if stored."""
        with self._condition:
            if key in self._entries:
                return False
            self._entries[key] = value
            self._condition.notify_all()
            return True

    def wait_for(self, key: int, timeout: float) -> int | None:
        """Block up to timeout seconds for key to be written. None if still absent."""
        deadline = time.monotonic() + timeout
        with self._condition:
            while key not in self._entries:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._condition.wait(remaining)
            return self._entries[key]

    def wake_all(self):
        """Wake every waiter so it can re-check external state (e.g. pool termination)."""
        with self._condition:
            self._condition.notify_all()


# ============================================================================
# PART 2: ORDER QUEUE
# ============================================================================

class OrderQueue:
    """
    Bounded FIFO of input values in ingestion order.

    put() blocks while the queue is full (backpressure, never data loss).
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError("Queue capacity must be positive")
        self.capacity = capacity
        self._queue: queue.Queue[int] = queue.Queue(maxsize=capacity)

    def put(self, value: int, abort: threading.Event | None = None) -> None:
        """
        Enqueue value, blocking while the queue is full.

        Raises:
            CancelledError: abort was set before space became available
        """
        if abort is None:
            self._queue.put(value)
            return
        while True:
            if abort.is_set():
                raise CancelledError("Enqueue aborted")
            try:
                self._queue.put(value, timeout=_CANCEL_POLL_SECONDS)
                return
            except queue.Full:
                continue

    def poll(self, timeout: float) -> int | None:
        """Dequeue the next value, or None if nothing arrived within timeout."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def empty(self) -> bool:
        return self._queue.empty()

    def full(self) -> bool:
        return self._queue.full()

    def __len__(self) -> int:
        return self._queue.qsize()


# ============================================================================
# PART 3: PERMIT BUDGET
# ============================================================================

class PermitBudget:
    """
    Fixed number of concurrency permits shared by all workers.

    Independent of the pool's thread count: the thread pool bounds parallelism,
    the permit budget bounds how many computations may be in their
    compute-then-throttle section at once.
    """

    def __init__(self, permits: int):
        if permits <= 0:
            raise ValueError("Permit budget must be positive")
        self.permits = permits
        self._semaphore = threading.BoundedSemaphore(permits)
        self._lock = threading.Lock()
        self._held = 0

    @property
    def in_use(self) -> int:
        with self._lock:
            return self._held

    def acquire(self, cancel: threading.Event) -> None:
        """
        Take one permit, waiting as long as needed.

        Raises:
            CancelledError: cancel was set while waiting
        """
        while not self._semaphore.acquire(timeout=_CANCEL_POLL_SECONDS):
            if cancel.is_set():
                raise CancelledError("Permit acquisition cancelled")
        if cancel.is_set():
            self._semaphore.release()
            raise CancelledError("Permit acquisition cancelled")
        with self._lock:
            self._held += 1

    def release(self) -> None:
        with self._lock:
            self._held -= 1
        self._semaphore.release()

    @contextmanager
    def permit(self, cancel: threading.Event) -> Iterator[None]:
        """Hold one permit for the duration of the block."""
        self.acquire(cancel)
        try:
            yield
        finally:
            self.release()


# ============================================================================
# PART 4: RATE LIMITER
# ============================================================================

class RateLimiter:
    """
    Caps aggregate completions at roughly target_per_second across the pool.

    Each task must take at least pool_size / target_per_second seconds from its
    start; faster tasks sleep the remainder. With pool_size tasks in flight this
    yields about target_per_second completions per second overall.
    """

    def __init__(self, pool_size: int, target_per_second: float):
        if pool_size <= 0 or target_per_second <= 0:
            raise ValueError("Pool size and target rate must be positive")
        self.pool_size = pool_size
        self.target_per_second = target_per_second
        self.min_interval = pool_size / target_per_second
        self._completions: list[float] = []
        self._lock = threading.Lock()

    @property
    def min_interval_millis(self) -> float:
        return self.min_interval * 1000

    def throttle(self, started_at: float, cancel: threading.Event) -> float:
        """
        Sleep until min_interval has passed since started_at (time.monotonic()).

        Returns the time slept in seconds.

        Raises:
            CancelledError: cancel was set during the sleep
        """
        remaining = self.min_interval - (time.monotonic() - started_at)
        slept = 0.0
        if remaining > 0:
            if cancel.wait(remaining):
                raise CancelledError("Rate-limit sleep cancelled")
            slept = remaining
        with self._lock:
            self._completions.append(time.monotonic())
        return slept

    def completion_times(self) -> np.ndarray:
        """Monotonic timestamps of all throttled completions, ascending."""
        with self._lock:
            return np.asarray(self._completions, dtype=np.float64)

    def completions_in_window(self, window: float = 1.0) -> np.ndarray:
        """
        Count of completions in the window ending at each completion.

        Entry i is the number of completions in (t[i] - window, t[i]].
        """
        times = self.completion_times()
        if times.size == 0:
            return np.zeros(0, dtype=np.int64)
        starts = np.searchsorted(times, times - window, side="right")
        return np.arange(1, times.size + 1, dtype=np.int64) - starts

    def peak_rate(self, window: float = 1.0) -> float:
        """Highest completions-per-second seen over any rolling window."""
        counts = self.completions_in_window(window)
        if counts.size == 0:
            return 0.0
        return float(counts.max()) / window
