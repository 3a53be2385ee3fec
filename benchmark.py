"""
Benchmark suite for the factorial pipeline.

Benchmarks:
1. BigFactorial: cost growth with input size
2. Result cache: put-if-absent and lookup overhead under contention
3. Pipeline throughput: achieved vs. target rate for several pool sizes
4. Ordering overhead: heavy duplicates and out-of-order completion
"""

import random
import statistics
import sys
import threading
import time
from typing import Callable, List

import numpy as np

from factorial import factorial
from factorial_pipeline import FactorialPipeline, PipelineConfig
from sync_primitives import ResultCache


# ============================================================================
# BENCHMARK UTILITIES
# ============================================================================

class BenchmarkResult:
    """Store benchmark results with statistics."""

    def __init__(self, name: str, times: List[float], operations: int = 1):
        self.name = name
        self.times = sorted(times)
        self.operations = operations

        self.min = min(times)
        self.max = max(times)
        self.mean = statistics.mean(times)
        self.median = statistics.median(times)
        self.stdev = statistics.stdev(times) if len(times) > 1 else 0

    def __str__(self):
        return (f"{self.name:40} | "
                f"Mean: {self.mean*1000:8.3f}ms | "
                f"Median: {self.median*1000:8.3f}ms | "
                f"StdDev: {self.stdev*1000:8.3f}ms | "
                f"Min: {self.min*1000:8.3f}ms | "
                f"Max: {self.max*1000:8.3f}ms")


def benchmark(func: Callable, *args, iterations: int = 5, **kwargs) -> BenchmarkResult:
    """
    Benchmark a function and return statistics.

    Args:
        func: Function to benchmark
        *args: Positional arguments to function
        iterations: Number of iterations to run
        **kwargs: Keyword arguments to function

    Returns:
        BenchmarkResult with timing statistics
    """
    times = []

    # Warm up
    func(*args, **kwargs)

    for _ in range(iterations):
        start = time.perf_counter()
        func(*args, **kwargs)
        times.append(time.perf_counter() - start)

    return BenchmarkResult(func.__name__, times)


class NullSink:
    """Discards output; keeps pipeline benchmarks free of disk I/O."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def write(self, value, result):
        pass


def _header(title: str):
    print("\n" + "="*100)
    print(title)
    print("="*100)


# ============================================================================
# 1. BIG FACTORIAL BENCHMARKS
# ============================================================================

def benchmark_factorial():
    """Benchmark factorial cost as n grows."""
    _header("BIG FACTORIAL BENCHMARKS")

    sizes = [100, 1000, 5000, 10000, 20000]
    means = []
    for n in sizes:
        result = benchmark(factorial, n, iterations=5)
        result.name = f"factorial({n})"
        means.append(result.mean)
        print(result)

    # Fit log(time) = k*log(n) + c to show growth order
    k, _ = np.polyfit(np.log(sizes), np.log(means), 1)
    print(f"  → Empirical growth: O(n^{k:.2f})")


# ============================================================================
# 2. RESULT CACHE BENCHMARKS
# ============================================================================

def benchmark_cache_contention():
    """Benchmark put_if_absent/get with several writer threads."""
    _header("RESULT CACHE CONTENTION")

    for threads in (1, 2, 4, 8):
        cache = ResultCache()
        keys = list(range(5000))

        def worker():
            for k in keys:
                cache.put_if_absent(k, k)
                cache.get(k)

        start = time.perf_counter()
        pool = [threading.Thread(target=worker) for _ in range(threads)]
        for t in pool:
            t.start()
        for t in pool:
            t.join()
        elapsed = time.perf_counter() - start

        ops = threads * len(keys) * 2
        print(f"{threads} thread(s): {ops} ops in {elapsed*1000:8.3f}ms "
              f"({ops/elapsed:,.0f} ops/s)")


# ============================================================================
# 3. PIPELINE THROUGHPUT BENCHMARKS
# ============================================================================

def benchmark_throughput():
    """Compare achieved completion rate with the configured target."""
    _header("PIPELINE THROUGHPUT (target 100/s)")

    lines = [str(n) for n in range(300)]
    for pool_size in (1, 2, 4, 8):
        config = PipelineConfig(pool_size=pool_size, poll_interval=0.01)
        pipeline = FactorialPipeline(config, iter(lines), NullSink)
        report = pipeline.run()

        times = pipeline.pool.rate_limiter.completion_times()
        gaps = np.diff(times) if times.size > 1 else np.zeros(1)
        achieved = report.computed / report.elapsed_seconds
        print(f"pool_size={pool_size:2} | "
              f"achieved {achieved:7.2f}/s | "
              f"peak 1s window {pipeline.pool.rate_limiter.peak_rate(1.0):6.1f}/s | "
              f"p50 gap {np.percentile(gaps, 50)*1000:6.2f}ms | "
              f"p99 gap {np.percentile(gaps, 99)*1000:6.2f}ms")


# ============================================================================
# 4. ORDERING OVERHEAD
# ============================================================================

def benchmark_ordering():
    """Heavy duplicates and mixed sizes: measure emitter lag vs. raw compute."""
    _header("ORDERING OVERHEAD")

    rng = random.Random(42)
    lines = [str(rng.choice([5, 50, 500, 5000, 15000])) for _ in range(5000)]
    config = PipelineConfig(pool_size=4, target_per_second=10000, poll_interval=0.01)

    start = time.perf_counter()
    report = FactorialPipeline(config, iter(lines), NullSink).run()
    elapsed = time.perf_counter() - start

    raw = sum(benchmark(factorial, n, iterations=1).mean for n in {int(x) for x in lines})
    print(f"{report.lines_read} lines, {report.dispatched} distinct | "
          f"pipeline {elapsed*1000:8.3f}ms | sequential compute {raw*1000:8.3f}ms")


# ============================================================================
# MAIN BENCHMARK SUITE
# ============================================================================

def run_all_benchmarks():
    """Run all benchmarks."""
    print("\n")
    print("╔" + "="*98 + "╗")
    print("║" + " "*30 + "FACTORIAL PIPELINE BENCHMARK SUITE" + " "*34 + "║")
    print("╚" + "="*98 + "╝")

    try:
        benchmark_factorial()
        benchmark_cache_contention()
        benchmark_throughput()
        benchmark_ordering()

        print("\n" + "="*100)
        print("BENCHMARK COMPLETE")
        print("="*100 + "\n")

    except KeyboardInterrupt:
        print("\nBenchmark interrupted by user")
        sys.exit(1)


if __name__ == "__main__":
    run_all_benchmarks()
