"""Scan cycle orchestration."""

from poolmon.core.orchestrator import (
    Action,
    CycleReport,
    ScanOrchestrator,
    ScanOutcome,
    ScanVerdict,
    decide,
)

__all__ = ["Action", "CycleReport", "ScanOrchestrator", "ScanOutcome", "ScanVerdict", "decide"]
