#!/usr/bin/env python3
"""
Factorial pipeline command line entry point.

Usage:
    factorial-pipeline                              # prompts for pool size, input.txt -> output.txt
    factorial-pipeline -p 4 -i numbers.txt -o out.txt
    echo 8 | factorial-pipeline -i numbers.txt      # pool size from stdin
"""
import logging

import click

from factorial_pipeline import (
    DEFAULT_PERMITS,
    DEFAULT_QUEUE_CAPACITY,
    DEFAULT_SHUTDOWN_TIMEOUT,
    DEFAULT_TARGET_PER_SECOND,
    FactorialPipeline,
    PipelineConfig,
)
from line_io import LineFileSource, ResultFileWriter

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def _prompt_pool_size() -> str | None:
    try:
        return click.prompt("Enter the thread pool size", default="", show_default=False)
    except click.Abort:
        logger.error("Error while reading pool size.")
        return None


@click.command()
@click.option('--input', '-i', 'input_path', default='input.txt', show_default=True,
              type=click.Path(dir_okay=False), help='File with one integer per line')
@click.option('--output', '-o', 'output_path', default='output.txt', show_default=True,
              type=click.Path(dir_okay=False), help='Result file (overwritten)')
@click.option('--pool-size', '-p', default=None, help='Worker threads; prompted for when omitted')
@click.option('--target-per-second', default=DEFAULT_TARGET_PER_SECOND, show_default=True,
              type=float, help='Aggregate factorial completions per second')
@click.option('--permits', default=DEFAULT_PERMITS, show_default=True, type=int,
              help='Concurrent computation permits')
@click.option('--queue-capacity', default=DEFAULT_QUEUE_CAPACITY, show_default=True, type=int,
              help='Bounded order queue size')
@click.option('--shutdown-timeout', default=DEFAULT_SHUTDOWN_TIMEOUT, show_default=True,
              type=float, help='Seconds to wait for in-flight work at end of input')
@click.option('--verbose', '-v', is_flag=True, help='Debug logging')
def main(input_path, output_path, pool_size, target_per_second, permits,
         queue_capacity, shutdown_timeout, verbose):
    """Compute factorials for every line of INPUT and write them in order to OUTPUT."""
    _configure_logging(verbose)

    raw_pool_size = pool_size if pool_size is not None else _prompt_pool_size()

    try:
        config = PipelineConfig(
            target_per_second=target_per_second,
            permits=permits,
            queue_capacity=queue_capacity,
            shutdown_timeout=shutdown_timeout,
        ).with_pool_size(raw_pool_size)
    except ValueError as e:
        raise click.BadParameter(str(e))

    pipeline = FactorialPipeline(
        config,
        LineFileSource(input_path),
        lambda: ResultFileWriter(output_path),
    )
    try:
        report = pipeline.run()
    except Exception as e:
        logger.error(f"Error while executing calculator. {e}")
        return

    click.echo(
        f"✅ {report.written}/{report.lines_read} line(s) written to {output_path} "
        f"in {report.elapsed_seconds:.2f}s"
    )
    if report.lost:
        click.echo(f"⚠️  {report.lost} result(s) lost", err=True)


if __name__ == "__main__":
    main()
