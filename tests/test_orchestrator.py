import pytest

from fakes import FakeDirector, FakeScanner
from poolmon.core.orchestrator import (
    Action,
    ScanOrchestrator,
    ScanOutcome,
    ScanVerdict,
    decide,
)
from poolmon.metrics.exporter import MetricsExporter
from poolmon.weights.registry import WeightRegistry


def make_orchestrator(director, scanner, registry=None, deadline=5.0, metrics=None):
    return ScanOrchestrator(director, scanner, registry or WeightRegistry(),
                            scan_deadline=deadline, metrics=metrics)


@pytest.mark.parametrize("healthy, prior, expected", [
    (True, 0, Action.ENABLE),
    (True, 100, Action.NONE),
    (False, 100, Action.DISABLE),
    (False, 0, Action.NONE),
])
def test_decide(healthy, prior, expected):
    outcome = ScanOutcome.HEALTHY if healthy else ScanOutcome.UNHEALTHY
    assert decide(ScanVerdict("h", prior, outcome)) is expected


def test_lost_scan_counts_as_unhealthy():
    verdict = ScanVerdict("h", 100, ScanOutcome.LOST, "crashed")
    assert not verdict.healthy
    assert decide(verdict) is Action.DISABLE


@pytest.mark.asyncio
async def test_recovered_and_failed_hosts():
    director = FakeDirector({"mail1": 0, "mail2": 100})
    scanner = FakeScanner({"mail1": True, "mail2": False})

    report = await make_orchestrator(director, scanner).run_cycle()

    assert sorted(scanner.scanned) == ["mail1", "mail2"]
    assert ("set", "mail1", 100) in director.writes
    assert ("flush", "mail1") not in director.writes
    mail2 = [c for c in director.writes if c[1] == "mail2"]
    assert mail2 == [("set", "mail2", 0), ("flush", "mail2")]
    assert report.enabled == {"mail1": 100}
    assert report.disabled == ["mail2"]


@pytest.mark.asyncio
async def test_enable_uses_registry_weight():
    registry = WeightRegistry()
    registry._weights = registry.parse(["10.0.0.5:50"])
    director = FakeDirector({"10.0.0.5": 0, "10.0.0.9": 0})

    await make_orchestrator(director, FakeScanner({}), registry).run_cycle()

    assert sorted(director.writes) == [("set", "10.0.0.5", 50), ("set", "10.0.0.9", 100)]


@pytest.mark.asyncio
async def test_stable_pool_issues_no_writes():
    director = FakeDirector({"mail1": 100, "mail2": 0})
    scanner = FakeScanner({"mail1": True, "mail2": False})

    report = await make_orchestrator(director, scanner).run_cycle()

    assert director.writes == []
    assert report.enabled == {} and report.disabled == []


@pytest.mark.asyncio
async def test_second_cycle_is_idempotent():
    director = FakeDirector({"mail1": 0, "mail2": 100, "mail3": 50})
    scanner = FakeScanner({"mail1": True, "mail2": False, "mail3": True})
    orchestrator = make_orchestrator(director, scanner)

    await orchestrator.run_cycle()
    writes = len(director.writes)
    assert writes == 3

    await orchestrator.run_cycle()
    assert len(director.writes) == writes


@pytest.mark.asyncio
async def test_unlisted_director_skips_cycle():
    director = FakeDirector({"mail1": 0}, fail_list=True)
    scanner = FakeScanner({})
    metrics = MetricsExporter()

    report = await make_orchestrator(director, scanner, metrics=metrics).run_cycle()

    assert report.skipped
    assert scanner.scanned == []
    assert director.writes == []
    assert metrics.snapshot()["cycles_skipped"] == 1


@pytest.mark.asyncio
async def test_crashed_scan_is_lost_and_disables():
    director = FakeDirector({"mail1": 100, "mail2": 0})
    scanner = FakeScanner({"mail1": RuntimeError("boom"), "mail2": True})

    report = await make_orchestrator(director, scanner).run_cycle()

    assert report.lost == ["mail1"]
    assert ("set", "mail1", 0) in director.writes
    assert ("set", "mail2", 100) in director.writes


@pytest.mark.asyncio
async def test_stalled_scan_does_not_block_others():
    director = FakeDirector({"stuck": 100, "mail2": 0})
    scanner = FakeScanner({"stuck": "hang", "mail2": True})

    report = await make_orchestrator(director, scanner, deadline=0.1).run_cycle()

    assert report.lost == ["stuck"]
    assert [v.host for v in report.verdicts] == ["mail2", "stuck"]
    assert ("flush", "stuck") in director.writes
    assert ("set", "mail2", 100) in director.writes


@pytest.mark.asyncio
async def test_failed_action_does_not_abort_cycle():
    director = FakeDirector({"bad": 100, "mail2": 0}, fail_actions_for=("bad",))
    scanner = FakeScanner({"bad": False, "mail2": True})
    metrics = MetricsExporter()

    report = await make_orchestrator(director, scanner, metrics=metrics).run_cycle()

    assert report.failed_actions == ["bad"]
    assert report.enabled == {"mail2": 100}
    assert metrics.snapshot()["action_failures"] == 1


@pytest.mark.asyncio
async def test_hosts_are_scanned_concurrently():
    hosts = {f"mail{i}": 100 for i in range(8)}
    scanner = FakeScanner({}, delay=0.05)

    await make_orchestrator(FakeDirector(hosts), scanner).run_cycle()

    assert scanner.max_in_flight == len(hosts)


@pytest.mark.asyncio
async def test_metrics_track_cycle():
    director = FakeDirector({"mail1": 0, "mail2": 100, "gone": 100})
    scanner = FakeScanner({"mail1": True, "mail2": False})
    metrics = MetricsExporter()
    metrics.update_backend_health("removed", True)

    await make_orchestrator(director, scanner, metrics=metrics).run_cycle()

    data = metrics.snapshot()
    assert data["cycles"] == 1
    assert data["scans"] == 3
    assert data["enables"] == 1
    assert data["disables"] == 1
    assert data["backend_health"] == {"mail1": True, "mail2": False, "gone": True}
