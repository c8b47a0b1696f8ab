"""Prometheus-compatible Metrics Exporter for poolmon.

Serves scan-cycle counters and per-backend health on ``/metrics`` in
Prometheus text format, plus a small JSON ``/health`` endpoint for the
exporter itself.
"""

import time
from collections import defaultdict
from typing import Any, Dict, Optional
from aiohttp import web
import logging

logger = logging.getLogger(__name__)

COUNTERS = {
    "cycles": "Scan cycles started",
    "cycles_skipped": "Scan cycles skipped because the host list was unavailable",
    "scans": "Host scans completed",
    "scans_lost": "Host scans that crashed or overran their deadline",
    "enables": "Hosts restored to service",
    "disables": "Hosts taken out of service",
    "action_failures": "Enable or disable actions that failed",
}


class MetricsExporter:
    """Async Prometheus-compatible metrics exporter."""

    def __init__(self, host: str = '127.0.0.1', port: int = 9273):
        """Initialize the metrics exporter.

        Args:
            host: Host address to bind the metrics server
            port: Port number for the metrics endpoint
        """
        self.host = host
        self.port = port
        self.app = web.Application()
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

        self._counters: Dict[str, int] = defaultdict(int)
        self._backend_health: Dict[str, bool] = {}
        self._last_cycle_duration = 0.0
        self._start_time = time.time()

        self.app.router.add_get('/metrics', self.handle_metrics)
        self.app.router.add_get('/health', self.handle_health)

    def inc(self, name: str, amount: int = 1) -> None:
        """Increment a counter by name."""
        if name not in COUNTERS:
            raise KeyError(f"Unknown counter: {name}")
        self._counters[name] += amount

    def update_backend_health(self, backend: str, is_healthy: bool) -> None:
        self._backend_health[backend] = is_healthy

    def retain_backends(self, backends) -> None:
        """Forget health gauges for backends the director no longer lists."""
        keep = set(backends)
        for backend in list(self._backend_health):
            if backend not in keep:
                del self._backend_health[backend]

    def observe_cycle(self, duration: float) -> None:
        self._last_cycle_duration = duration

    def reset(self) -> None:
        self._counters.clear()
        self._backend_health.clear()
        self._last_cycle_duration = 0.0

    def snapshot(self) -> Dict[str, Any]:
        """Get a summary of current metrics.

        Returns:
            Dictionary containing current metrics state
        """
        data: Dict[str, Any] = {name: self._counters.get(name, 0) for name in COUNTERS}
        data["backend_health"] = dict(self._backend_health)
        data["last_cycle_duration"] = self._last_cycle_duration
        data["uptime"] = time.time() - self._start_time
        return data

    def render(self) -> str:
        """Render all metrics in Prometheus text exposition format."""
        lines = []

        uptime = time.time() - self._start_time
        lines.append("# HELP poolmon_uptime_seconds Exporter uptime in seconds")
        lines.append("# TYPE poolmon_uptime_seconds gauge")
        lines.append(f"poolmon_uptime_seconds {uptime:.2f}")

        for name, help_text in COUNTERS.items():
            metric = f"poolmon_{name}_total"
            lines.append(f"# HELP {metric} {help_text}")
            lines.append(f"# TYPE {metric} counter")
            lines.append(f"{metric} {self._counters.get(name, 0)}")

        lines.append("# HELP poolmon_cycle_duration_seconds Duration of the last scan cycle")
        lines.append("# TYPE poolmon_cycle_duration_seconds gauge")
        lines.append(f"poolmon_cycle_duration_seconds {self._last_cycle_duration:.4f}")

        lines.append("# HELP poolmon_backend_health Backend health status (1=healthy, 0=unhealthy)")
        lines.append("# TYPE poolmon_backend_health gauge")
        for backend, is_healthy in sorted(self._backend_health.items()):
            lines.append(f'poolmon_backend_health{{backend="{backend}"}} {1 if is_healthy else 0}')

        return "\n".join(lines) + "\n"

    async def handle_metrics(self, request: web.Request) -> web.Response:
        return web.Response(text=self.render(), content_type='text/plain')

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "healthy",
            "uptime": time.time() - self._start_time,
            "cycles": self._counters.get("cycles", 0),
        })

    async def start(self):
        """Start the metrics HTTP server in the background."""
        try:
            self.runner = web.AppRunner(self.app)
            await self.runner.setup()

            self.site = web.TCPSite(self.runner, self.host, self.port)
            await self.site.start()

            logger.info(f"Metrics exporter started at http://{self.host}:{self.port}/metrics")

        except Exception as e:
            logger.error(f"Failed to start metrics exporter: {e}")
            raise

    async def stop(self):
        """Stop the metrics HTTP server and clean up."""
        if self.site:
            await self.site.stop()
            self.site = None
        if self.runner:
            await self.runner.cleanup()
            self.runner = None
        logger.info("Metrics exporter stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
