"""Scan Orchestrator.

Runs one monitoring cycle: list the director's backends, scan every backend
concurrently, wait for all scans, then reconcile each backend's weight with
its verdict.

The decision for a host depends only on its own verdict and the weight the
director reported for it in this cycle's listing:

- healthy and weight 0: enable at the weight registry's restore weight
- unhealthy and weight > 0: disable (weight 0, then flush)
- otherwise: nothing to do

Author: Poolmon Team
Version: 1.0.0
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Protocol

from poolmon.director.client import HostRecord
from poolmon.errors import PoolmonError
from poolmon.metrics.exporter import MetricsExporter
from poolmon.weights.registry import WeightRegistry

logger = logging.getLogger(__name__)


class ScanOutcome(Enum):
    """Result of one host scan."""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    LOST = "lost"  # Scan raised or overran its deadline


class Action(Enum):
    ENABLE = "enable"
    DISABLE = "disable"
    NONE = "none"


@dataclass(frozen=True)
class ScanVerdict:
    host: str
    prior_weight: int
    outcome: ScanOutcome
    detail: Optional[str] = None

    @property
    def healthy(self) -> bool:
        return self.outcome is ScanOutcome.HEALTHY


@dataclass
class CycleReport:
    """Summary of one scan cycle."""
    skipped: bool = False
    hosts: List[str] = field(default_factory=list)
    verdicts: List[ScanVerdict] = field(default_factory=list)
    enabled: Dict[str, int] = field(default_factory=dict)  # host -> restored weight
    disabled: List[str] = field(default_factory=list)
    failed_actions: List[str] = field(default_factory=list)
    duration: float = 0.0

    @property
    def lost(self) -> List[str]:
        return [v.host for v in self.verdicts if v.outcome is ScanOutcome.LOST]


class Director(Protocol):
    async def list_hosts(self) -> List[HostRecord]: ...  # pragma: no cover
    async def enable(self, host: str, weight: int) -> None: ...  # pragma: no cover
    async def disable(self, host: str) -> None: ...  # pragma: no cover


class Scanner(Protocol):
    async def scan(self, host: str) -> bool: ...  # pragma: no cover


def decide(verdict: ScanVerdict) -> Action:
    """Map a verdict and the host's listed weight to the action needed."""
    if verdict.healthy and verdict.prior_weight == 0:
        return Action.ENABLE
    if not verdict.healthy and verdict.prior_weight != 0:
        return Action.DISABLE
    return Action.NONE


class ScanOrchestrator:
    """Drives list, scan and reconcile for one cycle at a time."""

    def __init__(self, director: Director, scanner: Scanner, registry: WeightRegistry,
                 scan_deadline: float, metrics: Optional[MetricsExporter] = None):
        """Initialize the orchestrator.

        Args:
            director: Director client used for listing and actions
            scanner: Health scanner run once per host
            registry: Restore weights for re-enabled hosts
            scan_deadline: Seconds after which a host scan counts as lost
            metrics: Optional exporter to record cycle statistics
        """
        self.director = director
        self.scanner = scanner
        self.registry = registry
        self.scan_deadline = scan_deadline
        self.metrics = metrics

    def _count(self, name: str, amount: int = 1) -> None:
        if self.metrics is not None:
            self.metrics.inc(name, amount)

    async def _scan_host(self, record: HostRecord) -> ScanVerdict:
        try:
            healthy = await asyncio.wait_for(self.scanner.scan(record.address),
                                             timeout=self.scan_deadline)
        except asyncio.TimeoutError:
            return ScanVerdict(record.address, record.weight, ScanOutcome.LOST,
                               f"scan overran {self.scan_deadline}s deadline")
        except Exception as e:
            logger.exception(f"Scan of {record.address} crashed")
            return ScanVerdict(record.address, record.weight, ScanOutcome.LOST, repr(e))
        outcome = ScanOutcome.HEALTHY if healthy else ScanOutcome.UNHEALTHY
        return ScanVerdict(record.address, record.weight, outcome)

    async def scan_all(self, hosts: List[HostRecord]) -> List[ScanVerdict]:
        """Scan every host concurrently and return once all have a verdict.

        Verdicts are returned in completion order.
        """
        tasks = [asyncio.ensure_future(self._scan_host(record)) for record in hosts]
        verdicts = []
        for finished in asyncio.as_completed(tasks):
            verdicts.append(await finished)
        return verdicts

    async def apply(self, verdict: ScanVerdict, report: CycleReport) -> Action:
        """Issue the director action a verdict calls for, containing failures."""
        action = decide(verdict)
        host = verdict.host
        try:
            if action is Action.ENABLE:
                weight = self.registry.resolve(host)
                await self.director.enable(host, weight)
                report.enabled[host] = weight
                self._count("enables")
                logger.info(f"{host} is healthy, enabling with weight {weight}")
            elif action is Action.DISABLE:
                await self.director.disable(host)
                report.disabled.append(host)
                self._count("disables")
                reason = f" ({verdict.detail})" if verdict.detail else ""
                logger.info(f"{host} is {verdict.outcome.value}{reason}, disabling")
        except PoolmonError as e:
            report.failed_actions.append(host)
            self._count("action_failures")
            logger.error(f"Failed to {action.value} {host}: {e}")
        except Exception:
            report.failed_actions.append(host)
            self._count("action_failures")
            logger.exception(f"Unexpected error trying to {action.value} {host}")
        return action

    async def run_cycle(self) -> CycleReport:
        """Run one complete list, scan and reconcile cycle."""
        report = CycleReport()
        start = time.monotonic()
        self._count("cycles")

        try:
            hosts = await self.director.list_hosts()
        except PoolmonError as e:
            logger.error(f"Skipping cycle, cannot list director hosts: {e}")
            report.skipped = True
            self._count("cycles_skipped")
            return report

        report.hosts = [h.address for h in hosts]
        logger.debug(f"Scanning {len(hosts)} hosts")

        report.verdicts = await self.scan_all(hosts)
        self._count("scans", len(report.verdicts))
        self._count("scans_lost", len(report.lost))

        for verdict in report.verdicts:
            if verdict.outcome is ScanOutcome.LOST:
                logger.warning(f"Scan of {verdict.host} lost: {verdict.detail}")
            if self.metrics is not None:
                self.metrics.update_backend_health(verdict.host, verdict.healthy)
            await self.apply(verdict, report)

        if self.metrics is not None:
            self.metrics.retain_backends(report.hosts)

        report.duration = time.monotonic() - start
        if self.metrics is not None:
            self.metrics.observe_cycle(report.duration)
        return report
