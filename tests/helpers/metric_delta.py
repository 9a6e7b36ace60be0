"""
Helpers for validating metric value changes during tests.
"""

from contextlib import contextmanager


def metric_value(metric) -> float:
    """Current value of a counter or gauge child."""
    if not hasattr(metric, "_value"):
        raise ValueError(f"Metric {metric} doesn't have a _value attribute")
    return metric._value.get()


@contextmanager
def metric_delta(metric, expected_delta=1):
    """
    Assert that ``metric`` changes by exactly ``expected_delta`` inside the block.

    Usage:
        with metric_delta(METRICS["rate_limit_hits"]):
            ...
    """
    initial_value = metric_value(metric)

    yield

    final_value = metric_value(metric)
    actual_delta = final_value - initial_value

    if actual_delta != expected_delta:
        raise AssertionError(
            f"Expected metric to change by {expected_delta}, "
            f"but it changed by {actual_delta} "
            f"(from {initial_value} to {final_value})"
        )
