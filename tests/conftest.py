"""Shared fixtures: tiny schemas and tables with hand-checkable results."""

import pytest
import pandas as pd

from spatialpop.schema import AttributeGroup, AttributeSchema


@pytest.fixture
def sex_schema():
    """Single-group schema: sex = {male, female}."""
    return AttributeSchema(
        groups=[AttributeGroup(name="sex", categories=["male", "female"])],
        id_column="id",
        zone_id_column="zone_id",
        outcome_column="vaccine",
    )


@pytest.fixture
def sex_individuals():
    """Three respondents: male, female, male."""
    return pd.DataFrame({
        "id": [1, 2, 3],
        "male": [1, 0, 1],
        "female": [0, 1, 0],
        "vaccine": [1, 0, 1],
    })


@pytest.fixture
def sex_zones():
    """Two zones: males [2, 1], females [1, 2]."""
    return pd.DataFrame({
        "zone_id": ["Z1", "Z2"],
        "male": [2.0, 1.0],
        "female": [1.0, 2.0],
    })


@pytest.fixture
def sex_age_schema():
    """Two groups: sex and age."""
    return AttributeSchema(
        groups=[
            AttributeGroup(name="sex", categories=["male", "female"]),
            AttributeGroup(name="age", categories=["young", "old"]),
        ],
        id_column="id",
        zone_id_column="zone_id",
    )


@pytest.fixture
def sparse_individuals():
    """Three respondents with no old female, so later passes disturb sex."""
    return pd.DataFrame({
        "id": [10, 11, 12],
        "male": [1, 1, 0],
        "female": [0, 0, 1],
        "young": [1, 0, 1],
        "old": [0, 1, 0],
    })


@pytest.fixture
def full_individuals():
    """One respondent per sex x age cell."""
    return pd.DataFrame({
        "id": [1, 2, 3, 4],
        "male": [1, 1, 0, 0],
        "female": [0, 0, 1, 1],
        "young": [1, 0, 1, 0],
        "old": [0, 1, 0, 1],
    })


@pytest.fixture
def sex_age_zones():
    return pd.DataFrame({
        "zone_id": ["A", "B"],
        "male": [50.0, 70.0],
        "female": [50.0, 30.0],
        "young": [50.0, 40.0],
        "old": [50.0, 60.0],
    })
