"""CLI entry point for chainmirror.

Runs the selected sync jobs under the in-process scheduler. Jobs run either
once, in dependency order (``--once``), or continuously on their configured
intervals with a Prometheus metrics server.

Examples:
    ```bash
    python -m chainmirror                          # every enabled job, continuously
    python -m chainmirror pool_list --once
    python -m chainmirror pool_delegators utxo_info --log-level DEBUG
    python -m chainmirror --config /etc/chainmirror.yaml
    ```
"""

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from chainmirror.config import AppConfig
from chainmirror.core import (
    ChainMirrorError,
    ConcurrencyGate,
    FailedBatchRetryQueue,
    Pool,
    ResilientQueryExecutor,
    Scheduler,
    Store,
    start_metrics_server,
)
from chainmirror.core.base_job import BaseJob
from chainmirror.core.logger import Logger, StructuredFormatter
from chainmirror.core.metrics import JOB_INFO
from chainmirror.core.yaml import load_yaml
from chainmirror.jobs import JOB_REGISTRY
from chainmirror.jobs.common.queries import UPSTREAM_FUNCTIONS


DEFAULT_CONFIG = Path("config") / "chainmirror.yaml"

logger = Logger("cli")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments for the job runner."""
    parser = argparse.ArgumentParser(
        prog="chainmirror",
        description="chainmirror job runner",
    )

    parser.add_argument(
        "jobs",
        nargs="*",
        metavar="job",
        help=f"Jobs to run (default: every enabled job). Choices: {', '.join(JOB_REGISTRY)}",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help=f"Config path (default: {DEFAULT_CONFIG})",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Run the selected jobs once, in order, and exit (default: run continuously)",
    )

    args = parser.parse_args(argv)
    unknown = [name for name in args.jobs if name not in JOB_REGISTRY]
    if unknown:
        parser.error(f"unknown jobs: {', '.join(unknown)} (choose from {', '.join(JOB_REGISTRY)})")
    return args


def setup_logging(level: str) -> None:
    """Install a ``StructuredFormatter`` on the root logger."""
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level))


def _load_yaml_dict(path: Path) -> dict[str, Any]:
    """Load a YAML file as a dict, returning ``{}`` if the file does not exist."""
    if not path.exists():
        logger.warning("config_not_found", path=str(path))
        return {}
    return load_yaml(path)


def select_jobs(app_config: AppConfig, requested: Sequence[str]) -> list[str]:
    """Job names to run, in registry order.

    Explicitly requested jobs run even when disabled in the configuration;
    otherwise every enabled job is selected.
    """
    if requested:
        wanted = set(requested)
        return [name for name in JOB_REGISTRY if name in wanted]
    return [
        name
        for name in JOB_REGISTRY
        if app_config.jobs.get(name, {}).get("enabled", True)
    ]


def build_jobs(
    app_config: AppConfig,
    job_names: Sequence[str],
    store: Store,
    executor: ResilientQueryExecutor,
    retry_queue: FailedBatchRetryQueue,
) -> list[BaseJob[Any]]:
    """Instantiate the selected jobs from their configuration sections."""
    return [
        JOB_REGISTRY[name].from_dict(
            app_config.job_config(name),
            store=store,
            executor=executor,
            retry_queue=retry_queue,
        )
        for name in job_names
    ]


async def run(app_config: AppConfig, job_names: Sequence[str], *, once: bool) -> int:
    """Wire the engine, register the jobs, and run them.

    Returns:
        Exit code: 0 for success, 1 for failure.
    """
    gate = ConcurrencyGate(app_config.gate)
    store = Store(Pool(app_config.pool), gate, app_config.store)
    executor = ResilientQueryExecutor(app_config.sources, gate)
    retry_queue = FailedBatchRetryQueue(app_config.retry_queue)
    scheduler = Scheduler(app_config.scheduler)
    for job in build_jobs(app_config, job_names, store, executor, retry_queue):
        scheduler.register(job)

    health = await executor.check_health(UPSTREAM_FUNCTIONS)
    if not any(result.healthy for result in health):
        logger.warning("no_healthy_sources", sources=[result.source for result in health])

    # One-shot mode: each job once, in dependency order, no metrics server
    if once:
        async with store, retry_queue:
            ok = await scheduler.run_once(job_names)
        logger.info("run_once_completed", jobs=list(job_names), ok=ok)
        return 0 if ok else 1

    # Continuous mode: metrics server + scheduler until a shutdown signal
    metrics_config = app_config.metrics
    metrics_server = await start_metrics_server(metrics_config)
    if metrics_config.enabled:
        JOB_INFO.info({"jobs": ",".join(job_names)})
        logger.info(
            "metrics_server_started",
            host=metrics_config.host,
            port=metrics_config.port,
            path=metrics_config.path,
        )

    def handle_signal(sig: signal.Signals) -> None:
        logger.info("shutdown_signal", signal=sig.name)
        scheduler.request_shutdown()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        async with store, retry_queue:
            await scheduler.run_forever()
        return 0
    except Exception as e:  # Intentionally broad: CLI error boundary for continuous mode
        logger.error("scheduler_failed", error=str(e))
        return 1
    finally:
        await metrics_server.stop()
        if metrics_config.enabled:
            logger.info("metrics_server_stopped")


async def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point: parse args, load the configuration, and run."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        app_config = AppConfig.from_dict(_load_yaml_dict(args.config))
    except (ValidationError, ChainMirrorError) as e:
        logger.error("config_invalid", path=str(args.config), error=str(e))
        return 2

    job_names = select_jobs(app_config, args.jobs)
    if not job_names:
        logger.error("no_jobs_selected")
        return 2

    try:
        return await run(app_config, job_names, once=args.once)
    except ChainMirrorError as e:
        logger.error("startup_failed", error=str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("interrupted")
        return 130


def cli() -> None:
    """Synchronous entry point for console_scripts."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
