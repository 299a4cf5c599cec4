"""
Truncate-Replicate-Sample (TRS) integerization.

Fractional IPF weights are turned into whole-number replication counts one
zone at a time:

1. Truncate: every weight is floored.
2. Replicate: the floored counts are kept as-is.
3. Sample: the deficit (rounded sum of remainders) is filled by
   topping up individuals by one, drawn without replacement with
   probability proportional to their fractional remainder.

Each zone's integer total equals its rounded fractional total. Sampling
uses an explicit ``numpy.random.Generator`` so results are reproducible
for a given seed.
"""

from typing import Any, Optional

import numpy as np
import pandas as pd

from .errors import IntegerizationDeficit, SchemaMismatch


def integerize_trs(
    weights: np.ndarray,
    rng: np.random.Generator,
    zone_id: Any = None,
) -> np.ndarray:
    """
    Integerize one zone's weight vector.

    Args:
        weights: Non-negative fractional weights for one zone
        rng: Random generator used for the top-up draw
        zone_id: Zone label used in error messages

    Returns:
        int64 array; each value is floor(w) or floor(w) + 1 and the sum is
        sum(floor(w)) + round(sum of remainders)

    Raises:
        IntegerizationDeficit: More top-ups needed than nonzero remainders
        SchemaMismatch: Negative or non-finite weights
    """
    xv = np.asarray(weights, dtype=float).ravel()
    if not np.isfinite(xv).all() or (xv < 0).any():
        raise SchemaMismatch(
            f"Weights for zone {zone_id!r} must be finite and non-negative"
        )

    xint = np.floor(xv)
    remainders = xv - xint
    deficit = int(np.round(remainders.sum()))
    if deficit > 0:
        xint[draw_topups(remainders, deficit, rng, zone_id=zone_id)] += 1
    return xint.astype(np.int64)


def draw_topups(
    remainders: np.ndarray,
    deficit: int,
    rng: np.random.Generator,
    zone_id: Any = None,
) -> np.ndarray:
    """
    Pick ``deficit`` distinct positions with probability proportional to
    their fractional remainder.

    Raises:
        IntegerizationDeficit: Fewer nonzero remainders than top-ups
    """
    remainders = np.asarray(remainders, dtype=float)
    eligible = int(np.count_nonzero(remainders > 0))
    if deficit > eligible:
        raise IntegerizationDeficit(zone_id, deficit, eligible)
    return rng.choice(
        remainders.size, size=deficit, replace=False, p=remainders / remainders.sum()
    )


class Integerizer:
    """
    Apply TRS to every zone column of a weight matrix.

    A single generator is seeded once and consumed zone by zone in column
    order, so the same seed and weight matrix always give the same counts.

    Example:
        >>> counts = Integerizer(seed=123).integerize(result.weights)
        >>> counts.sum(axis=0)  # synthetic population per zone
    """

    def __init__(self, seed: Optional[int] = None, verbose: bool = False):
        """
        Args:
            seed: Seed for the top-up sampling. None draws fresh entropy.
            verbose: Print per-run totals
        """
        self.seed = seed
        self.verbose = verbose

    def integerize(self, weights: pd.DataFrame) -> pd.DataFrame:
        """
        Integerize an individuals x zones weight matrix.

        Args:
            weights: Fractional weights, individuals as index and zones as columns

        Returns:
            int64 DataFrame with the same index and columns
        """
        rng = np.random.default_rng(self.seed)
        values = weights.to_numpy(dtype=float)
        counts = np.empty(values.shape, dtype=np.int64)
        for z, zone_id in enumerate(weights.columns):
            counts[:, z] = integerize_trs(values[:, z], rng, zone_id=zone_id)

        if self.verbose:
            print(f"  Integerized {len(weights.columns):,} zones: "
                  f"{values.sum():,.1f} fractional -> {counts.sum():,} individuals")

        return pd.DataFrame(counts, index=weights.index, columns=weights.columns)


def zone_totals_preserved(weights: pd.DataFrame, counts: pd.DataFrame) -> bool:
    """Whether every zone's integer total equals its rounded fractional total."""
    expected = np.round(weights.to_numpy(dtype=float).sum(axis=0)).astype(np.int64)
    actual = counts.to_numpy().sum(axis=0)
    return bool(np.array_equal(expected, actual))
