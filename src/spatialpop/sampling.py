"""Stratified pre-sampling of the survey to correct outcome bias.

Optional step before IPF. When the survey over-represents one outcome
(e.g. 91% vaccinated), a subsample with a chosen outcome share is drawn.
Each outcome side is stratified by the full combination of indicator
columns so the attribute mix within each side is preserved.
"""

from typing import Optional

import numpy as np
import pandas as pd

from .errors import SchemaMismatch
from .schema import AttributeSchema


def allocate_strata(strata_sizes: pd.Series, n_side: int) -> pd.Series:
    """Sample size per stratum: round(share * n_side), capped at stratum size."""
    total = strata_sizes.sum()
    if total == 0:
        return strata_sizes * 0
    wanted = np.round(strata_sizes / total * n_side).astype(np.int64)
    return np.minimum(wanted, strata_sizes)


def stratified_sample(
    individuals: pd.DataFrame,
    schema: AttributeSchema,
    total: int,
    outcome_share: float = 0.5,
    seed: Optional[int] = None,
    outcome_column: Optional[str] = None,
) -> pd.DataFrame:
    """
    Draw an outcome-balanced, attribute-stratified subsample.

    Args:
        individuals: Survey table with indicator and outcome columns
        schema: Attribute schema naming the indicator columns
        total: Requested number of records (the result may be slightly
            smaller or larger because of per-stratum rounding and caps)
        outcome_share: Share of the sample with outcome == 1
        seed: Seed for the draws
        outcome_column: Outcome column; defaults to the schema's

    Returns:
        Subset of ``individuals`` (outcome == 1 rows first), original
        columns and index

    Raises:
        SchemaMismatch: Outcome or indicator columns are missing
        ValueError: total or outcome_share out of range
    """
    outcome_column = outcome_column or schema.outcome_column
    if outcome_column is None or outcome_column not in individuals.columns:
        raise SchemaMismatch(
            "Stratified sampling needs an outcome column",
            columns=[outcome_column] if outcome_column else None,
        )
    strata_columns = schema.individual_columns
    missing = [c for c in strata_columns if c not in individuals.columns]
    if missing:
        raise SchemaMismatch("Individual table is missing schema columns", columns=missing)
    if total <= 0:
        raise ValueError(f"total must be positive, got {total}")
    if not 0 <= outcome_share <= 1:
        raise ValueError(f"outcome_share must be in [0, 1], got {outcome_share}")

    rng = np.random.default_rng(seed)
    n_positive = int(np.round(total * outcome_share))
    sides = [(1, n_positive), (0, total - n_positive)]

    selected = []
    outcome = individuals[outcome_column].to_numpy()
    for value, n_side in sides:
        side_pos = np.flatnonzero(outcome == value)
        if len(side_pos) == 0 or n_side == 0:
            continue
        side = individuals.iloc[side_pos]
        groups = side.groupby(strata_columns, sort=True).indices
        keys = sorted(groups.keys())
        sizes = pd.Series([len(groups[k]) for k in keys], dtype=np.int64)
        allocation = allocate_strata(sizes, n_side)
        for key, n_draw in zip(keys, allocation):
            if n_draw == 0:
                continue
            members = side_pos[groups[key]]
            selected.append(rng.choice(members, size=int(n_draw), replace=False))

    if not selected:
        return individuals.iloc[[]]
    return individuals.iloc[np.concatenate(selected)]
