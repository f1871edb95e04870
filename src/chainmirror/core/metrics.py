"""
Prometheus metrics collection and HTTP exposition.

Module-level metric objects are process-wide singletons shared by every
job. [BaseJob.execute()][chainmirror.core.base_job.BaseJob.execute] records
run counts and durations; jobs add their own values through
``set_gauge()`` and ``inc_counter()``. The shared engine components update
their own gauges (gate occupancy, circuit failures, retry queue depth) so
that source health is visible even between job runs.

Architecture:
    JOB_INFO:               Static metadata set once at startup.
    JOB_GAUGE:              Point-in-time values per job.
    JOB_COUNTER:            Cumulative totals per job.
    JOB_DURATION_SECONDS:   Histogram of run durations (p50/p95/p99).
    GATE_IN_FLIGHT:         Operations currently holding a gate permit.
    SOURCE_FAILURES:        Recorded circuit failures per upstream source.
    SOURCE_HEALTHY:         Last active health check result per upstream source.
    SOURCE_RESPONSE_SECONDS: Health check round-trip time per upstream source.
    RETRY_QUEUE_DEPTH:      Work units waiting for a deferred retry.
"""

from __future__ import annotations

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class MetricsConfig(BaseModel):
    """Configuration for the Prometheus metrics endpoint.

    Set ``host`` to ``"0.0.0.0"`` in containers to allow external scraping.
    """

    enabled: bool = Field(default=False, description="Enable metrics collection")
    port: int = Field(default=8000, ge=1024, le=65535, description="Metrics HTTP port")
    host: str = Field(default="127.0.0.1", description="Metrics HTTP bind address")
    path: str = Field(default="/metrics", description="Metrics endpoint path")


# ---------------------------------------------------------------------------
# Job Metrics (recorded by BaseJob.execute)
#
# Automatic labels:
#   gauge:   last_run_timestamp, last_run_records
#   counter: runs_success, runs_failed, runs_rescheduled, errors_{type}
# ---------------------------------------------------------------------------

JOB_INFO = Info(
    "chainmirror",
    "chainmirror process information and metadata",
)

JOB_DURATION_SECONDS = Histogram(
    "job_duration_seconds",
    "Duration of a sync job run in seconds",
    ["job"],
    buckets=(1, 5, 10, 30, 60, 120, 300, 600, 1800, 3600),
)

JOB_GAUGE = Gauge(
    "job_gauge",
    "Job gauge values (point-in-time state)",
    ["job", "name"],
)

JOB_COUNTER = Counter(
    "job_counter",
    "Job counter values (cumulative totals)",
    ["job", "name"],
)


# ---------------------------------------------------------------------------
# Engine Metrics (updated by the shared components)
# ---------------------------------------------------------------------------

GATE_IN_FLIGHT = Gauge(
    "gate_in_flight",
    "Operations currently holding a concurrency gate permit",
)

SOURCE_FAILURES = Gauge(
    "source_failures",
    "Consecutive recorded failures per upstream source",
    ["source"],
)

SOURCE_HEALTHY = Gauge(
    "source_healthy",
    "Whether the last active health check of an upstream source passed (1) or not (0)",
    ["source"],
)

SOURCE_RESPONSE_SECONDS = Gauge(
    "source_response_seconds",
    "Round-trip time of the last health check per upstream source",
    ["source"],
)

RETRY_QUEUE_DEPTH = Gauge(
    "retry_queue_depth",
    "Work units waiting in the failed-batch retry queue",
)


# ---------------------------------------------------------------------------
# HTTP Server
# ---------------------------------------------------------------------------


class MetricsServer:
    """Async HTTP server exposing a Prometheus-compatible endpoint.

    Example:
        server = MetricsServer(MetricsConfig(enabled=True, port=8001))
        await server.start()
        # ... jobs run ...
        await server.stop()
    """

    def __init__(self, config: MetricsConfig) -> None:
        self._config = config
        self._runner: web.AppRunner | None = None

    @property
    def is_running(self) -> bool:
        """Whether the HTTP listener is bound."""
        return self._runner is not None

    async def start(self) -> None:
        """Start listening for scrape requests (no-op when disabled).

        Raises:
            OSError: If the port is already in use or binding fails.
        """
        if not self._config.enabled or self._runner is not None:
            return

        app = web.Application()
        app.router.add_get(self._config.path, self._handle_metrics)

        runner = web.AppRunner(app, access_log=None)
        await runner.setup()
        site = web.TCPSite(runner, self._config.host, self._config.port)
        await site.start()
        self._runner = runner

    async def stop(self) -> None:
        """Stop the HTTP server. Safe to call when it never started."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

    @staticmethod
    async def _handle_metrics(_request: web.Request) -> web.Response:
        """Serve the latest metrics in exposition format."""
        return web.Response(
            body=generate_latest(),
            headers={"Content-Type": CONTENT_TYPE_LATEST},
        )


async def start_metrics_server(config: MetricsConfig | None = None) -> MetricsServer:
    """Create and start a metrics server.

    Returns:
        A started [MetricsServer][chainmirror.core.metrics.MetricsServer].
        The caller owns it and must call ``stop()`` during shutdown.
    """
    server = MetricsServer(config or MetricsConfig())
    await server.start()
    return server
