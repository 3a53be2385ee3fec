"""
Rate-limited, order-preserving factorial pipeline.

Reads integers from a line source, computes factorials on a thread pool and
writes "<n> = <n!>" lines to a sink in the exact input order.

FLOW:
1. Ingestor: source -> parse -> OrderQueue (blocking) + one task per distinct value
2. WorkerPool: permit -> factorial -> ResultCache -> rate-limit sleep -> release
3. Emitter: OrderQueue front-to-back, waiting on ResultCache for each value

Ingestor and Emitter each run on their own thread, concurrently with the pool.
The Emitter stops once the pool has terminated and the queue is drained.
"""
import logging
import threading
import time
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, replace
from typing import Any, Iterable, Protocol

from factorial import factorial, parse_line
from sync_primitives import OrderQueue, PermitBudget, RateLimiter, ResultCache

logger = logging.getLogger(__name__)

DEFAULT_PERMITS = 100
DEFAULT_TARGET_PER_SECOND = 100
DEFAULT_QUEUE_CAPACITY = 130000
DEFAULT_SHUTDOWN_TIMEOUT = 15 * 60.0
DEFAULT_POLL_INTERVAL = 0.1


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass(frozen=True)
class PipelineConfig:
    """Tuning knobs for one pipeline run. Defaults match the production constants."""
    pool_size: int = 1
    permits: int = DEFAULT_PERMITS
    target_per_second: float = DEFAULT_TARGET_PER_SECOND
    queue_capacity: int = DEFAULT_QUEUE_CAPACITY
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL

    def __post_init__(self):
        if self.pool_size <= 0:
            raise ValueError("Pool size must be positive")
        if self.permits <= 0:
            raise ValueError("Permit budget must be positive")
        if self.target_per_second <= 0:
            raise ValueError("Target rate must be positive")
        if self.queue_capacity <= 0:
            raise ValueError("Queue capacity must be positive")
        if self.shutdown_timeout < 0 or self.poll_interval <= 0:
            raise ValueError("Timeouts must be non-negative and poll interval positive")

    @property
    def min_interval_millis(self) -> float:
        return self.pool_size * 1000 / self.target_per_second

    def with_pool_size(self, raw: Any) -> "PipelineConfig":
        """Copy with pool_size taken from untrusted input; anything unusable becomes 1."""
        return replace(self, pool_size=sanitize_pool_size(raw))


def sanitize_pool_size(raw: Any) -> int:
    """Turn a raw pool-size value (int, text or None) into a positive int, default 1."""
    if raw is None:
        logger.info("Pool size is empty. Set 1 by default.")
        return 1
    try:
        pool_size = int(str(raw).strip())
    except ValueError:
        logger.info(f"Pool size should be a number, got {raw!r}. Set 1 by default.")
        return 1
    if pool_size <= 0:
        logger.info(f"Pool size {pool_size} is not positive. Set 1 by default.")
        return 1
    return pool_size


class ResultSink(Protocol):
    def write(self, value: int, result: int) -> None:
        ...


# ============================================================================
# WORKER POOL
# ============================================================================

class WorkerPool:
    """
    Fixed-size thread pool computing one factorial per submitted value.

    Two independent admission controls are composed here: the executor's
    thread count and the shared PermitBudget. Cancellation is cooperative via
    an Event observed while waiting for a permit and while rate-limit sleeping.
    """

    def __init__(self, config: PipelineConfig, cache: ResultCache):
        self.config = config
        self.cache = cache
        self.permits = PermitBudget(config.permits)
        self.rate_limiter = RateLimiter(config.pool_size, config.target_per_second)

        self._executor = ThreadPoolExecutor(
            max_workers=config.pool_size, thread_name_prefix="factorial-worker"
        )
        self._cancel = threading.Event()
        self._terminated = threading.Event()
        self._futures: list[Future] = []
        self._lock = threading.Lock()
        self._shutdown = False

        self.submitted = 0
        self.computed = 0
        self.cancelled = 0

    @property
    def terminated(self) -> bool:
        return self._terminated.is_set()

    def wait_terminated(self, timeout: float | None = None) -> bool:
        return self._terminated.wait(timeout)

    def submit(self, value: int) -> Future:
        """Schedule factorial(value). Raises RuntimeError after shutdown()."""
        with self._lock:
            if self._shutdown:
                raise RuntimeError("WorkerPool is shut down")
            future = self._executor.submit(self._run_task, value)
            self._futures.append(future)
            self.submitted += 1
        return future

    def _run_task(self, value: int) -> int:
        started_at = time.monotonic()
        try:
            with self.permits.permit(self._cancel):
                result = factorial(value, cancel=self._cancel)
                self.cache.put_if_absent(value, result)
                with self._lock:
                    self.computed += 1
                logger.debug(f"Computed factorial of {value}")
                self.rate_limiter.throttle(started_at, self._cancel)
            return result
        except CancelledError:
            with self._lock:
                self.cancelled += 1
            logger.error(f"Task for {value} was cancelled while calculating factorial")
            raise
        except Exception:
            logger.exception(f"Unexpected failure computing factorial of {value}")
            raise

    def shutdown(self, timeout: float) -> bool:
        """
        Stop accepting tasks and wait up to timeout seconds for in-flight ones.

        On timeout the remaining tasks are cancelled and the condition is logged
        as critical. The pool is terminated when this returns. A running
        computation notices cancellation within a few hundred multiplications,
        so the overrun past timeout is bounded by that much work.

        Returns:
            True if every task finished within timeout
        """
        with self._lock:
            self._shutdown = True
            futures = list(self._futures)

        clean = True
        try:
            _, not_done = wait(futures, timeout=timeout)
            if not_done:
                clean = False
                logger.critical(
                    f"Worker pool did not terminate within {timeout:.0f}s; "
                    f"cancelling {len(not_done)} outstanding task(s)"
                )
                self._cancel.set()
                for future in not_done:
                    if future.cancel():
                        with self._lock:
                            self.cancelled += 1
            self._executor.shutdown(wait=True, cancel_futures=True)
        finally:
            self._terminated.set()
            self.cache.wake_all()
            logger.info("Calculation executor was shutdown.")
        return clean


# ============================================================================
# INGESTOR
# ============================================================================

class Ingestor:
    """Reads the source in order, feeds OrderQueue and dispatches distinct values."""

    def __init__(self, source: Iterable[str], order_queue: OrderQueue,
                 pool: WorkerPool, cache: ResultCache, abort: threading.Event,
                 shutdown_timeout: float):
        self.source = source
        self.order_queue = order_queue
        self.pool = pool
        self.cache = cache
        self.abort = abort
        self.shutdown_timeout = shutdown_timeout
        self._dispatched: set[int] = set()

        self.lines_read = 0
        self.clean_shutdown = True

    @property
    def dispatched(self) -> int:
        return len(self._dispatched)

    def run(self) -> None:
        try:
            for line in self.source:
                self._process_line(line)
        except FileNotFoundError as e:
            logger.error(f"File is not found! {e}")
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Error while reading file. {e}")
        except CancelledError:
            logger.error("Putting number to queue was interrupted.")
        except Exception:
            logger.exception("Ingestion stopped unexpectedly")
        finally:
            self.clean_shutdown = self.pool.shutdown(self.shutdown_timeout)

    def _process_line(self, line: str) -> None:
        value = parse_line(line)
        self.order_queue.put(value, self.abort)
        self.lines_read += 1
        if value in self._dispatched or value in self.cache:
            return
        self._dispatched.add(value)
        self.pool.submit(value)


# ============================================================================
# EMITTER
# ============================================================================

class Emitter:
    """
    Writes results strictly in OrderQueue order.

    For each dequeued value it waits on the ResultCache condition until the
    entry exists or the pool has terminated without producing it.
    """

    def __init__(self, sink_factory, order_queue: OrderQueue, pool: WorkerPool,
                 cache: ResultCache, abort: threading.Event, poll_interval: float):
        self.sink_factory = sink_factory
        self.order_queue = order_queue
        self.pool = pool
        self.cache = cache
        self.abort = abort
        self.poll_interval = poll_interval

        self.written = 0
        self.lost = 0

    def run(self) -> None:
        try:
            with self.sink_factory() as sink:
                self._drain(sink)
        except OSError as e:
            logger.error(f"Error while writing to file. {e}")
            self.abort.set()
        except Exception:
            logger.exception("Emitter stopped unexpectedly; aborting ingestion")
            self.abort.set()

    def _drain(self, sink: ResultSink) -> None:
        while not self.pool.terminated or not self.order_queue.empty():
            value = self.order_queue.poll(self.poll_interval)
            if value is None:
                continue
            result = self._await_result(value)
            if result is None:
                self.lost += 1
                logger.error(f"The factorial of {value} was never produced; skipping entry")
                continue
            sink.write(value, result)
            self.written += 1

    def _await_result(self, value: int) -> int | None:
        while True:
            result = self.cache.wait_for(value, self.poll_interval)
            if result is not None:
                return result
            if self.pool.terminated:
                # Termination is set after the last cache write; one final look.
                return self.cache.get(value)


# ============================================================================
# ORCHESTRATOR
# ============================================================================

@dataclass
class PipelineReport:
    lines_read: int
    dispatched: int
    computed: int
    cancelled: int
    written: int
    lost: int
    clean_shutdown: bool
    elapsed_seconds: float


class FactorialPipeline:
    """
    Wires the queue, cache and pool together and runs Ingestor and Emitter.

    Args:
        config: Tuning parameters
        source: Iterable of input lines, consumed once
        sink_factory: Zero-argument callable returning a context manager whose
            value has write(value, result)
    """

    def __init__(self, config: PipelineConfig, source: Iterable[str], sink_factory):
        self.config = config
        self.cache = ResultCache()
        self.order_queue = OrderQueue(config.queue_capacity)
        self.pool = WorkerPool(config, self.cache)
        self.abort = threading.Event()
        self.ingestor = Ingestor(source, self.order_queue, self.pool, self.cache,
                                 self.abort, config.shutdown_timeout)
        self.emitter = Emitter(sink_factory, self.order_queue, self.pool, self.cache,
                               self.abort, config.poll_interval)

    def run(self) -> PipelineReport:
        start = time.perf_counter()
        logger.info(
            f"Starting pipeline: pool_size={self.config.pool_size}, "
            f"{self.config.target_per_second:g}/s, "
            f"min interval {self.config.min_interval_millis:.0f}ms per task"
        )

        threads = [
            threading.Thread(target=self.ingestor.run, name="factorial-ingestor"),
            threading.Thread(target=self.emitter.run, name="factorial-emitter"),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        logger.info("Write executor was shutdown.")

        elapsed = time.perf_counter() - start
        logger.info(f"Elapsed sec = {int(elapsed)}")
        return PipelineReport(
            lines_read=self.ingestor.lines_read,
            dispatched=self.ingestor.dispatched,
            computed=self.pool.computed,
            cancelled=self.pool.cancelled,
            written=self.emitter.written,
            lost=self.emitter.lost,
            clean_shutdown=self.ingestor.clean_shutdown,
            elapsed_seconds=elapsed,
        )
