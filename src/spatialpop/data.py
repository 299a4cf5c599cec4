"""
Sample survey and zone tables for testing and demos.

The generated tables follow ``health_survey_schema()``: a binarized survey
with one indicator per category and a vaccination outcome, and zone
marginals whose groups all add up to the same zone population.
"""

from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd

from .schema import AttributeSchema, health_survey_schema

# Survey category shares, roughly matching a national household survey
SURVEY_SHARES: Dict[str, list] = {
    "age": [0.18, 0.34, 0.26, 0.22],
    "sex": [0.48, 0.52],
    "race": [0.62, 0.12, 0.17, 0.09],
    "education": [0.64, 0.36],
    "income": [0.20, 0.22, 0.30, 0.28],
}


def create_sample_data(
    n_individuals: int = 500,
    n_zones: int = 20,
    seed: int = 42,
    schema: Optional[AttributeSchema] = None,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Create a synthetic survey and zone marginal table.

    Zone marginals are drawn per group from a multinomial on the zone
    total, so every group of a zone sums to the same population. The first
    zone has no individuals of the last race category, giving exact zero
    marginals to exercise epsilon substitution.

    Args:
        n_individuals: Number of survey respondents
        n_zones: Number of zones
        seed: Random seed for reproducibility
        schema: Schema to follow; defaults to health_survey_schema()

    Returns:
        (individuals, zones) tuple

    Example:
        >>> individuals, zones = create_sample_data(n_individuals=1000, n_zones=50)
    """
    schema = schema or health_survey_schema()
    rng = np.random.default_rng(seed)

    individuals = pd.DataFrame({schema.id_column: np.arange(1, n_individuals + 1)})
    for group in schema.groups:
        k = len(group.categories)
        shares = SURVEY_SHARES.get(group.name, [1.0 / k] * k)
        if len(shares) != k:
            shares = [1.0 / k] * k
        choice = rng.choice(k, size=n_individuals, p=shares)
        # Guarantee every category has at least one respondent
        head = min(k, n_individuals)
        choice[:head] = np.arange(head)
        for pos, category in enumerate(group.categories):
            individuals[group.column_for(category)] = (choice == pos).astype(np.int64)

    if schema.outcome_column:
        logit = 1.5 + 0.8 * individuals.get("age_65_plus", 0) + 0.6 * individuals.get("bachelors", 0)
        p = 1 / (1 + np.exp(-np.asarray(logit, dtype=float)))
        individuals[schema.outcome_column] = rng.binomial(1, p)

    totals = rng.integers(800, 5000, size=n_zones)
    zones = pd.DataFrame({schema.zone_id_column: [f"Z{z:04d}" for z in range(n_zones)]})
    for group in schema.groups:
        k = len(group.categories)
        shares = rng.dirichlet(np.full(k, 4.0), size=n_zones)
        if group.name == "race" and n_zones:
            shares[0, -1] = 0.0
            shares[0] /= shares[0].sum()
        counts = np.array(
            [rng.multinomial(t, s) for t, s in zip(totals, shares)], dtype=np.int64
        ).reshape(n_zones, k)
        for pos, category in enumerate(group.categories):
            zones[group.marginal_column_for(category)] = counts[:, pos].astype(float)

    return individuals, zones
