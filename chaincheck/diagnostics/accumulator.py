"""
Single-pass mean and variance accumulation.

Welford's update keeps a running mean and the sum of squared deviations
from it, which avoids the cancellation of the sum-of-squares formula.
Accumulators built independently (one per chain) are combined with the
parallel rule of Chan, Golub & LeVeque instead of rescanning the data.

References:
    [1] Welford (1962). "Note on a method for calculating corrected sums
        of squares and products"
    [2] Chan, Golub & LeVeque (1979). "Updating formulae and a pairwise
        algorithm for computing sample variances"
"""

from typing import Iterable, List, Tuple

import numpy as np


class Accumulator:
    """
    Running count, mean and sum of squared deviations.

    The frozen flag is exact: it is set only when at least two values were
    seen and every one of them was identical.
    """

    def __init__(self):
        self.count = 0
        self.mean = 0.0
        self.m2 = 0.0  # Sum of squared deviations from the running mean

    def update(self, value: float) -> "Accumulator":
        """Ingest one value."""
        self.count += 1
        delta = value - self.mean
        self.mean += delta / self.count
        self.m2 += delta * (value - self.mean)
        return self

    def extend(self, values: Iterable[float]) -> "Accumulator":
        """
        Ingest a batch of values.

        The batch moments are computed in one vectorized pass and merged
        with the parallel rule, so the result matches repeated update().
        """
        values = np.asarray(values, dtype=float).ravel()
        if values.size == 0:
            return self

        batch = Accumulator()
        batch.count = values.size
        if values.min() == values.max():
            # Identical values contribute exactly zero deviation
            batch.mean = float(values[0])
            batch.m2 = 0.0
        else:
            batch.mean = float(np.mean(values))
            batch.m2 = float(np.sum((values - batch.mean) ** 2))

        return self.combine(batch)

    def combine(self, other: "Accumulator") -> "Accumulator":
        """Merge another accumulator into this one in place."""
        if other.count == 0:
            return self
        if self.count == 0:
            self.count, self.mean, self.m2 = other.count, other.mean, other.m2
            return self

        n = self.count + other.count
        delta = other.mean - self.mean
        self.mean += delta * other.count / n
        self.m2 += other.m2 + delta ** 2 * self.count * other.count / n
        self.count = n
        return self

    @classmethod
    def merge(cls, accumulators: Iterable["Accumulator"]) -> "Accumulator":
        """New accumulator holding the combination of several others."""
        total = cls()
        for acc in accumulators:
            total.combine(acc)
        return total

    @property
    def variance(self) -> float:
        """Unbiased sample variance, NaN with fewer than two values."""
        if self.count < 2:
            return float('nan')
        return self.m2 / (self.count - 1)

    @property
    def std(self) -> float:
        return float(np.sqrt(self.variance))

    @property
    def frozen(self) -> bool:
        return self.count >= 2 and self.m2 == 0.0

    def __repr__(self) -> str:
        return f"Accumulator(count={self.count}, mean={self.mean:.6g}, variance={self.variance:.6g})"


def accumulate_chains(chains: np.ndarray) -> List[Accumulator]:
    """One accumulator per chain (row) of a chain matrix."""
    return [Accumulator().extend(chain) for chain in chains]


def welford_summary(values: Iterable[float]) -> Tuple[float, float]:
    """Mean and unbiased variance of a sequence using one-at-a-time updates."""
    acc = Accumulator()
    for v in values:
        acc.update(float(v))
    return acc.mean, acc.variance
