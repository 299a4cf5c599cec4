"""
Expansion of integer counts into synthetic individual records.

For every (individual, zone) cell with count k > 0, k copies of the
individual's attribute row are emitted, tagged with the zone id. Zones are
emitted in column order and individuals in index order within a zone, so
the output is deterministic.

Also provides per-zone summaries of the synthetic population and the
"null model" that replaces the outcome with draws at known zone rates.
"""

from typing import Optional, Sequence

import numpy as np
import pandas as pd

from .errors import NegativeOrFractionalCount, SchemaMismatch
from .schema import AttributeSchema


def _check_counts(counts: pd.DataFrame) -> np.ndarray:
    values = counts.to_numpy()
    if values.dtype == bool or not np.issubdtype(values.dtype, np.number):
        raise NegativeOrFractionalCount(None, None, values.dtype)
    as_float = values.astype(float)
    bad = ~np.isfinite(as_float) | (as_float < 0) | (as_float != np.floor(as_float))
    if bad.any():
        i, z = np.argwhere(bad)[0]
        raise NegativeOrFractionalCount(counts.columns[z], counts.index[i], values[i, z])
    return as_float.astype(np.int64)


def expand_population(
    counts: pd.DataFrame,
    individuals: pd.DataFrame,
    zone_column: str = "zone_id",
    individual_column: Optional[str] = None,
) -> pd.DataFrame:
    """
    Replicate individuals according to an integer count matrix.

    Args:
        counts: Individuals x zones non-negative integer counts
        individuals: Individual attributes indexed by the same ids as ``counts``
        zone_column: Name of the zone id column in the output
        individual_column: Name of the individual id column in the output.
            Defaults to the individual index name, or "individual_id".

    Returns:
        DataFrame with one row per synthetic individual: zone id, individual
        id, then the individual's attributes. Row count equals counts.sum().

    Raises:
        NegativeOrFractionalCount: A count is negative, fractional or not finite
        SchemaMismatch: Count rows reference unknown individuals
    """
    values = _check_counts(counts)

    missing = counts.index.difference(individuals.index)
    if len(missing):
        raise SchemaMismatch(
            "Count matrix references individuals not in the attribute table",
            ids=missing.tolist(),
        )
    if individual_column is None:
        individual_column = individuals.index.name or "individual_id"

    n_individuals, n_zones = values.shape
    # Zone-major order: all individuals of zone 0, then zone 1, ...
    repeats = values.T.ravel()
    individual_pos = np.repeat(np.tile(np.arange(n_individuals), n_zones), repeats)
    zone_pos = np.repeat(np.repeat(np.arange(n_zones), n_individuals), repeats)

    attributes = individuals.loc[counts.index]
    attributes = attributes.drop(
        columns=[c for c in (zone_column, individual_column) if c in attributes.columns]
    )
    records = attributes.iloc[individual_pos].reset_index(drop=True)
    records.insert(0, individual_column, counts.index.to_numpy()[individual_pos])
    records.insert(0, zone_column, counts.columns.to_numpy()[zone_pos])
    return records


def long_counts(
    counts: pd.DataFrame,
    individual_column: str = "individual_id",
    zone_column: str = "zone_id",
    drop_zero: bool = False,
) -> pd.DataFrame:
    """
    Reshape a count matrix to one row per (individual, zone) pair.

    Returns:
        DataFrame with columns individual id, zone id, count
    """
    values = _check_counts(counts)
    n_individuals, n_zones = values.shape
    long = pd.DataFrame({
        individual_column: np.repeat(counts.index.to_numpy(), n_zones),
        zone_column: np.tile(counts.columns.to_numpy(), n_individuals),
        "count": values.ravel(),
    })
    if drop_zero:
        long = long[long["count"] > 0].reset_index(drop=True)
    return long


def summarize_by_zone(
    population: pd.DataFrame,
    schema: AttributeSchema,
    zone_column: str = "zone_id",
    zone_ids: Optional[Sequence] = None,
) -> pd.DataFrame:
    """
    Per-zone totals of every category indicator and the outcome.

    Args:
        population: Expanded synthetic population
        schema: Attribute schema naming the indicator and outcome columns
        zone_column: Zone id column in ``population``
        zone_ids: Optional full list of zones; zones with no synthetic
            individuals get zero rows

    Returns:
        DataFrame indexed by zone with ``total_<column>`` columns and
        ``total_population``
    """
    columns = list(schema.individual_columns)
    if schema.outcome_column and schema.outcome_column in population.columns:
        columns = [schema.outcome_column] + columns
    missing = [c for c in columns + [zone_column] if c not in population.columns]
    if missing:
        raise SchemaMismatch("Population is missing columns", columns=missing)

    grouped = population.groupby(zone_column, sort=False)
    summary = grouped[columns].sum().add_prefix("total_")
    summary["total_population"] = grouped.size()
    if zone_ids is not None:
        summary = summary.reindex(zone_ids, fill_value=0)
    summary.index.name = zone_column
    return summary


def impose_outcome_rates(
    population: pd.DataFrame,
    rates: pd.Series,
    outcome_column: str,
    zone_column: str = "zone_id",
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """
    Replace the outcome with Bernoulli draws at each zone's known rate.

    Baseline ("null model") population that keeps the synthetic
    demographics but ignores the survey's outcome. Zones without a rate
    are dropped.

    Args:
        population: Expanded synthetic population
        rates: Outcome probability per zone, indexed by zone id
        outcome_column: Column to overwrite (created if absent)
        zone_column: Zone id column in ``population``
        seed: Seed for the draws

    Returns:
        New DataFrame restricted to zones present in ``rates``
    """
    rates = rates.astype(float)
    if ((rates < 0) | (rates > 1) | rates.isna()).any():
        raise ValueError("Outcome rates must be probabilities in [0, 1]")

    result = population[population[zone_column].isin(rates.index)].copy()
    p = result[zone_column].map(rates).to_numpy(dtype=float)
    rng = np.random.default_rng(seed)
    result[outcome_column] = rng.binomial(1, p)
    return result.reset_index(drop=True)
