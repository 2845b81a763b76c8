# file: backend/evaluator.py

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from backend.channels import CRITICAL_T_VALUE


@dataclass(frozen=True)
class Evaluation:
    average: float
    std_dev: float
    standard_error: float
    t_value: float
    passed: bool
    slope: float
    intercept: float


def evaluate(readings: Sequence[float], reference: float) -> Evaluation:
    """Run a one-sample t-test of the readings against the reference value.

    The verdict uses the fixed df=29 critical value, so it is only exact for
    30 readings. A zero-variance sample set yields t=0 and passes. The derived
    correction is a pure scale factor: slope = reference / average, intercept 0.
    """
    values = np.asarray(readings, dtype=float)
    n = values.size
    if n < 2:
        raise ValueError(f"At least 2 readings are required, got {n}")

    average = float(np.mean(values))
    std_dev = float(np.std(values, ddof=1))
    standard_error = std_dev / float(np.sqrt(n))

    t_value = (average - reference) / standard_error if standard_error != 0 else 0.0
    slope = reference / average if average != 0 else 1.0

    return Evaluation(
        average = average,
        std_dev = std_dev,
        standard_error = standard_error,
        t_value = t_value,
        passed = abs(t_value) <= CRITICAL_T_VALUE,
        slope = slope,
        intercept = 0.0,
    )
