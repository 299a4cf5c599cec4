"""Attribute schema: category groups shared by the survey and the zone marginals.

A schema is an ordered list of mutually exclusive attribute groups
(sex, race, age band, ...). Each category maps to one binary indicator
column in the individual table and one marginal count column in the zone
table. All lookups go through category names; nothing downstream relies on
column positions.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd
import yaml
from pydantic import BaseModel, Field, model_validator

from spatialpop.errors import DegenerateMarginal, SchemaMismatch

DEFAULT_EPSILON = 1e-6


class AttributeGroup(BaseModel):
    """One mutually exclusive attribute group, e.g. sex = {male, female}."""

    name: str = Field(..., description="Group identifier")
    categories: list[str] = Field(..., min_length=1, description="Ordered categories")
    columns: dict[str, str] = Field(
        default_factory=dict,
        description="Category -> indicator column in the individual table",
    )
    marginal_columns: dict[str, str] = Field(
        default_factory=dict,
        description="Category -> count column in the zone table",
    )

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_categories(self) -> AttributeGroup:
        if len(set(self.categories)) != len(self.categories):
            raise ValueError(f"Duplicate categories in group '{self.name}'")
        for mapping in (self.columns, self.marginal_columns):
            unknown = set(mapping) - set(self.categories)
            if unknown:
                raise ValueError(
                    f"Column mapping for group '{self.name}' names unknown "
                    f"categories: {sorted(unknown)}"
                )
        return self

    def column_for(self, category: str) -> str:
        """Indicator column for a category (defaults to the category name)."""
        return self.columns.get(category, category)

    def marginal_column_for(self, category: str) -> str:
        """Marginal column for a category (defaults to the category name)."""
        return self.marginal_columns.get(category, category)

    @property
    def individual_columns(self) -> list[str]:
        return [self.column_for(c) for c in self.categories]

    @property
    def zone_columns(self) -> list[str]:
        return [self.marginal_column_for(c) for c in self.categories]


class AttributeSchema(BaseModel):
    """Ordered attribute groups plus the id and outcome columns."""

    groups: list[AttributeGroup] = Field(..., min_length=1)
    id_column: str = Field(default="id", description="Individual id column")
    zone_id_column: str = Field(default="zone_id", description="Zone id column")
    outcome_column: str | None = Field(
        default=None, description="Binary outcome carried by each individual"
    )

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_groups(self) -> AttributeSchema:
        names = [g.name for g in self.groups]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate group names: {names}")
        categories = [c for g in self.groups for c in g.categories]
        if len(set(categories)) != len(categories):
            raise ValueError("Category names must be unique across groups")
        for attr in ("individual_columns", "marginal_columns"):
            cols = getattr(self, attr)
            if len(set(cols)) != len(cols):
                raise ValueError(f"Two categories share a column in {attr}")
        return self

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @property
    def group_names(self) -> list[str]:
        return [g.name for g in self.groups]

    @property
    def categories(self) -> list[str]:
        """All categories, flattened in group order."""
        return [c for g in self.groups for c in g.categories]

    @property
    def individual_columns(self) -> list[str]:
        return [col for g in self.groups for col in g.individual_columns]

    @property
    def marginal_columns(self) -> list[str]:
        return [col for g in self.groups for col in g.zone_columns]

    def group(self, name: str) -> AttributeGroup:
        """Get a group by name, raising SchemaMismatch if unknown."""
        for g in self.groups:
            if g.name == name:
                return g
        raise SchemaMismatch(f"Unknown attribute group '{name}'", group=name)

    def category_positions(self, name: str) -> list[int]:
        """Positions of a group's categories in the flattened category list."""
        lookup = {c: i for i, c in enumerate(self.categories)}
        return [lookup[c] for c in self.group(name).categories]

    def category_group(self) -> dict[str, str]:
        """Map each category to the name of its group."""
        return {c: g.name for g in self.groups for c in g.categories}

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_individuals(
        self,
        individuals: pd.DataFrame,
        drop_invalid: bool = False,
        verbose: bool = False,
    ) -> pd.DataFrame:
        """Validate the survey table and return a copy indexed by id.

        Every row must have exactly one indicator set per group and, when
        the schema names one, an outcome of 0 or 1. Rows that break this
        are either rejected (default) or dropped.

        Args:
            individuals: Survey table with an id column and indicator columns
            drop_invalid: Drop invalid rows instead of raising
            verbose: Print how many rows were dropped

        Returns:
            Copy of the table indexed by the id column, indicators as int64

        Raises:
            SchemaMismatch: Missing columns, duplicate ids or invalid rows
            DegenerateMarginal: A category has no survey members
        """
        if self.id_column not in individuals.columns:
            raise SchemaMismatch(
                "Individual table has no id column", columns=[self.id_column]
            )
        missing = [c for c in self.individual_columns if c not in individuals.columns]
        if self.outcome_column and self.outcome_column not in individuals.columns:
            missing.append(self.outcome_column)
        if missing:
            raise SchemaMismatch(
                "Individual table is missing schema columns", columns=missing
            )

        ids = individuals[self.id_column]
        duplicated = ids[ids.duplicated()].unique().tolist()
        if duplicated:
            raise SchemaMismatch("Duplicate individual ids", ids=duplicated)

        df = individuals.set_index(self.id_column)
        invalid = pd.Series(False, index=df.index)
        for g in self.groups:
            block = df[g.individual_columns]
            non_binary = ~block.isin([0, 1]).all(axis=1)
            bad = non_binary | (block.sum(axis=1) != 1)
            if bad.any() and not drop_invalid:
                raise SchemaMismatch(
                    f"{int(bad.sum())} individuals do not have exactly one "
                    "indicator set",
                    group=g.name,
                    ids=bad[bad].index.tolist(),
                )
            invalid |= bad

        if self.outcome_column:
            bad = ~df[self.outcome_column].isin([0, 1])
            if bad.any() and not drop_invalid:
                raise SchemaMismatch(
                    f"{int(bad.sum())} individuals have an outcome other than 0 or 1",
                    columns=[self.outcome_column],
                    ids=bad[bad].index.tolist(),
                )
            invalid |= bad

        if invalid.any():
            if verbose:
                print(f"   Dropped {int(invalid.sum())} invalid individuals")
            df = df.loc[~invalid].copy()
        else:
            df = df.copy()

        df[self.individual_columns] = df[self.individual_columns].astype(np.int64)
        if self.outcome_column:
            df[self.outcome_column] = df[self.outcome_column].astype(np.int64)

        for g in self.groups:
            for category in g.categories:
                if df[g.column_for(category)].sum() == 0:
                    raise DegenerateMarginal(
                        "No survey individuals in category",
                        group=g.name,
                        category=category,
                    )
        return df

    def validate_zones(self, zones: pd.DataFrame) -> pd.DataFrame:
        """Validate the zone marginal table and return a copy indexed by zone id.

        Raises:
            SchemaMismatch: Missing or non-numeric columns, duplicate zone
                ids, negative or non-finite marginals
        """
        if self.zone_id_column not in zones.columns:
            raise SchemaMismatch(
                "Zone table has no zone id column", columns=[self.zone_id_column]
            )
        missing = [c for c in self.marginal_columns if c not in zones.columns]
        if missing:
            raise SchemaMismatch("Zone table is missing schema columns", columns=missing)

        zone_ids = zones[self.zone_id_column]
        duplicated = zone_ids[zone_ids.duplicated()].unique().tolist()
        if duplicated:
            raise SchemaMismatch("Duplicate zone ids", ids=duplicated)

        df = zones.set_index(self.zone_id_column)
        cols = self.marginal_columns
        non_numeric = [c for c in cols if not pd.api.types.is_numeric_dtype(df[c])]
        if non_numeric:
            raise SchemaMismatch("Marginal columns must be numeric", columns=non_numeric)

        values = df[cols].astype(float)
        bad = ~np.isfinite(values).all(axis=1) | (values < 0).any(axis=1)
        if bad.any():
            raise SchemaMismatch(
                "Zone marginals must be finite and non-negative",
                ids=bad[bad].index.tolist(),
            )
        df = df.copy()
        df[cols] = values
        return df

    def substitute_zeros(
        self, zones: pd.DataFrame, epsilon: float = DEFAULT_EPSILON
    ) -> pd.DataFrame:
        """Replace exact zero marginals with ``epsilon``.

        Epsilon must be positive and below every nonzero marginal so the
        order and magnitude of real counts is untouched. Applying this twice
        gives the same result as applying it once.
        """
        if epsilon <= 0:
            raise ValueError(f"epsilon must be positive, got {epsilon}")
        cols = self.marginal_columns
        values = zones[cols].to_numpy(dtype=float)
        # Cells already at epsilon come from an earlier substitution
        nonzero = values[(values > 0) & (values != epsilon)]
        if nonzero.size and epsilon >= nonzero.min():
            raise ValueError(
                f"epsilon ({epsilon}) must be smaller than the smallest "
                f"nonzero marginal ({nonzero.min()})"
            )
        result = zones.copy()
        result[cols] = np.where(values == 0, epsilon, values)
        return result

    # ------------------------------------------------------------------
    # Matrices
    # ------------------------------------------------------------------

    def indicator_matrix(self, individuals: pd.DataFrame) -> np.ndarray:
        """Individuals x categories 0/1 matrix in schema category order."""
        return individuals[self.individual_columns].to_numpy(dtype=float)

    def marginal_matrix(self, zones: pd.DataFrame) -> np.ndarray:
        """Zones x categories marginal matrix in schema category order."""
        return zones[self.marginal_columns].to_numpy(dtype=float)

    def check_constraint_totals(
        self, individuals: pd.DataFrame, zones: pd.DataFrame
    ) -> pd.DataFrame:
        """Per-zone population implied by each group's marginals.

        Each group of a zone should add up to the same total population.
        The returned frame has one column per group plus
        ``max_relative_spread`` = (max - min) / max across groups.

        Args:
            individuals: Validated individual table
            zones: Validated zone table

        Raises:
            SchemaMismatch: The individual indicators do not sum to
                n_individuals x n_groups
        """
        expected = len(individuals) * len(self.groups)
        actual = int(individuals[self.individual_columns].to_numpy().sum())
        if actual != expected:
            raise SchemaMismatch(
                f"Indicator total {actual} != {len(individuals)} individuals "
                f"x {len(self.groups)} groups"
            )

        totals = pd.DataFrame(
            {g.name: zones[g.zone_columns].sum(axis=1) for g in self.groups},
            index=zones.index,
        )
        high = totals.max(axis=1)
        spread = (high - totals.min(axis=1)) / high.where(high > 0, 1.0)
        totals["max_relative_spread"] = spread
        return totals

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AttributeSchema:
        return cls.model_validate(data)

    @classmethod
    def from_yaml(cls, path: str | Path) -> AttributeSchema:
        """Load a schema from a YAML file.

        Example file::

            id_column: id
            zone_id_column: geoid
            outcome_column: vaccine
            groups:
              - name: sex
                categories: [male, female]
        """
        with open(Path(path)) as f:
            data = yaml.safe_load(f) or {}
        if "attributes" in data:
            data = data["attributes"]
        return cls.from_dict(data)


def load_schema(path: str | Path) -> AttributeSchema:
    """Load an attribute schema from YAML."""
    return AttributeSchema.from_yaml(path)


def health_survey_schema() -> AttributeSchema:
    """Five-group schema of the public health survey workflow.

    Groups are listed in the default constraint order (age first, income
    last) and the outcome is vaccination status.
    """
    return AttributeSchema(
        groups=[
            AttributeGroup(
                name="age",
                categories=["age_18_29", "age_30_49", "age_50_64", "age_65_plus"],
            ),
            AttributeGroup(name="sex", categories=["male", "female"]),
            AttributeGroup(
                name="race", categories=["white", "black", "hispanic", "other"]
            ),
            AttributeGroup(name="education", categories=["no_bachelors", "bachelors"]),
            AttributeGroup(
                name="income",
                categories=[
                    "income_25k_u",
                    "income_25_50k",
                    "income_50_100k",
                    "income_100k_p",
                ],
            ),
        ],
        id_column="id",
        zone_id_column="geoid",
        outcome_column="vaccine",
    )
