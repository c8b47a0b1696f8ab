from poolmon.health.scanner import HealthScanner, PortCheckResult

__all__ = ["HealthScanner", "PortCheckResult"]
