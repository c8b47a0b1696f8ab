"""Poolmon service loop.

Wires the director client, health scanner, weight registry and optional
metrics exporter together and runs a scan cycle every interval until asked to
stop. SIGHUP reloads the weight file and reopens the log file; SIGTERM and
SIGINT stop the loop once the current cycle has finished.

Author: Poolmon Team
Version: 1.0.0
"""

import asyncio
import logging
import signal
from typing import Optional

from poolmon.config import PoolmonConfig
from poolmon.core.orchestrator import CycleReport, ScanOrchestrator
from poolmon.director.client import DirectorClient
from poolmon.health.scanner import HealthScanner
from poolmon.lifecycle.reload import ReloadTrigger
from poolmon.metrics.exporter import MetricsExporter
from poolmon.weights.registry import WeightRegistry

logger = logging.getLogger(__name__)


class PoolmonService:
    """Interval driver around the scan orchestrator."""

    def __init__(self, config: PoolmonConfig, registry: Optional[WeightRegistry] = None,
                 director: Optional[DirectorClient] = None,
                 scanner: Optional[HealthScanner] = None,
                 reload_trigger: Optional[ReloadTrigger] = None):
        """Build the service from configuration.

        Args:
            config: Validated configuration
            registry: Weight registry, created empty if not given
            director: Director client, built from config if not given
            scanner: Health scanner, built from config if not given
            reload_trigger: Trigger fired on SIGHUP
        """
        self.config = config
        self.registry = registry or WeightRegistry()
        self.director = director or DirectorClient(config.socket, config.director_timeout)
        self.scanner = scanner or HealthScanner(config.ports, config.ssl_ports, config.timeout)
        self.reload_trigger = reload_trigger or ReloadTrigger()
        self.metrics: Optional[MetricsExporter] = None
        if config.metrics_port is not None:
            self.metrics = MetricsExporter(config.metrics_host, config.metrics_port)

        self.orchestrator = ScanOrchestrator(
            self.director, self.scanner, self.registry,
            scan_deadline=config.scan_deadline, metrics=self.metrics,
        )
        self.reload_trigger.subscribe(self._reload_weights)
        self._stop: Optional[asyncio.Event] = None
        self._reloads = set()

    def _reload_weights(self) -> None:
        if self.config.weight_file:
            self.registry.reload()

    def load_weights(self) -> None:
        if not self.config.weight_file:
            return
        self.registry.load(self.config.weight_file)
        if self.config.watch_weights:
            self.registry.enable_hot_reload()

    def request_reload(self) -> None:
        """Run the reload trigger off the event loop; DNS lookups may block."""
        logger.info("Reload requested")
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, self.reload_trigger.fire)
        self._reloads.add(future)
        future.add_done_callback(self._reloads.discard)

    def request_stop(self) -> None:
        logger.info("Stop requested, finishing current cycle")
        if self._stop is not None:
            self._stop.set()

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        loop.add_signal_handler(signal.SIGHUP, self.request_reload)
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.request_stop)

    def _remove_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in (signal.SIGHUP, signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)

    async def run_once(self) -> CycleReport:
        """Run a single cycle; unexpected errors are logged, not raised."""
        try:
            return await self.orchestrator.run_cycle()
        except Exception:
            logger.exception("Scan cycle failed")
            return CycleReport(skipped=True)

    async def run(self, install_signals: bool = True, max_cycles: Optional[int] = None) -> int:
        """Run cycles until stopped.

        Args:
            install_signals: Register SIGHUP/SIGTERM/SIGINT handlers
            max_cycles: Stop after this many cycles, None runs forever

        Returns:
            Number of cycles run
        """
        loop = asyncio.get_running_loop()
        self._stop = asyncio.Event()
        if install_signals:
            self._install_signal_handlers(loop)

        self.load_weights()
        if self.metrics is not None:
            await self.metrics.start()

        logger.info(
            f"poolmon started: ports={self.config.ports} ssl_ports={self.config.ssl_ports} "
            f"timeout={self.config.timeout}s interval={self.config.interval}s"
        )
        cycles = 0
        try:
            while not self._stop.is_set():
                await self.run_once()
                cycles += 1
                if max_cycles is not None and cycles >= max_cycles:
                    break
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.config.interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            if install_signals:
                self._remove_signal_handlers(loop)
            self.registry.disable_hot_reload()
            if self.metrics is not None:
                await self.metrics.stop()
            logger.info(f"poolmon stopped after {cycles} cycles")
        return cycles
