from poolmon.metrics.exporter import MetricsExporter

__all__ = ["MetricsExporter"]
