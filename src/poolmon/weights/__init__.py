from poolmon.weights.registry import DEFAULT_WEIGHT, WeightRegistry

__all__ = ["DEFAULT_WEIGHT", "WeightRegistry"]
