"""
End-to-end spatial population synthesis.

Chains the core stages:

1. Validate the survey and zone tables against the attribute schema and
   replace zero marginals with a small epsilon
2. Fit individual x zone weights with IPF
3. Integerize the weights with TRS
4. Expand the integer counts into synthetic individual records

Example:
    >>> from spatialpop import PopulationSynthesizer, SynthesisConfig
    >>> config = SynthesisConfig(n_iterations=5, seed=123)
    >>> result = PopulationSynthesizer(config).run(individuals, zones)
    >>> result.population.groupby("geoid").size()
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import pandas as pd
import yaml
from pydantic import BaseModel, Field, model_validator

from spatialpop.convergence import ConvergenceReport
from spatialpop.expansion import expand_population, summarize_by_zone
from spatialpop.integerize import Integerizer
from spatialpop.ipf import IPFEngine, IPFResult
from spatialpop.schema import DEFAULT_EPSILON, AttributeSchema, health_survey_schema


class SynthesisConfig(BaseModel):
    """Configuration for a synthesis run."""

    attributes: AttributeSchema = Field(
        default_factory=health_survey_schema,
        description="Attribute groups, id and outcome columns",
    )
    constraint_order: list[str] | None = Field(
        default=None,
        description="Group names in fitting order; defaults to schema order",
    )
    n_iterations: int = Field(default=1, ge=1, description="Outer IPF iterations")
    stopping: Literal["fixed", "converged"] = Field(
        default="fixed", description="Run all iterations or stop once converged"
    )
    tol: float = Field(default=1e-6, gt=0, description="Max relative error when converged")
    min_correlation: float | None = Field(default=None, ge=-1, le=1)
    epsilon: float = Field(
        default=DEFAULT_EPSILON, gt=0, description="Replacement for zero marginals"
    )
    seed: int | None = Field(default=None, description="Integerization seed")
    keep_history: bool = False
    drop_invalid: bool = Field(
        default=False, description="Drop survey rows with invalid indicators"
    )

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_order(self) -> SynthesisConfig:
        if self.constraint_order is not None:
            unknown = set(self.constraint_order) - set(self.attributes.group_names)
            if unknown:
                raise ValueError(f"constraint_order names unknown groups: {sorted(unknown)}")
        return self

    @property
    def order(self) -> list[str]:
        return list(self.constraint_order or self.attributes.group_names)

    @classmethod
    def from_yaml(cls, path: str | Path) -> SynthesisConfig:
        """Load configuration from a YAML file.

        Example file::

            n_iterations: 5
            seed: 123
            constraint_order: [age, sex, race, education, income]
            attributes:
              zone_id_column: geoid
              groups:
                - name: sex
                  categories: [male, female]
        """
        with open(Path(path)) as f:
            data = yaml.safe_load(f) or {}
        return cls.model_validate(data)


@dataclass
class SynthesisResult:
    """Outputs of a synthesis run."""
    individuals: pd.DataFrame
    zones: pd.DataFrame
    ipf: IPFResult
    counts: pd.DataFrame
    population: pd.DataFrame
    config: SynthesisConfig

    @property
    def weights(self) -> pd.DataFrame:
        return self.ipf.weights

    @property
    def reports(self) -> list[ConvergenceReport]:
        return self.ipf.reports

    def zone_summary(self) -> pd.DataFrame:
        schema = self.config.attributes
        return summarize_by_zone(
            self.population,
            schema,
            zone_column=schema.zone_id_column,
            zone_ids=list(self.zones.index),
        )

    def summary(self) -> str:
        final = self.ipf.final_report
        lines = [
            "Synthesis Result:",
            f"  Individuals: {len(self.individuals):,}",
            f"  Zones: {len(self.zones):,}",
            f"  IPF iterations: {self.ipf.n_iterations} (converged: {self.ipf.converged})",
            f"  Correlation: {final.correlation:.6f}",
            f"  Max relative error: {final.max_relative_error:.4%}",
            f"  Synthetic population: {len(self.population):,}",
        ]
        return "\n".join(lines)


class PopulationSynthesizer:
    """
    Run IPF, integerization and expansion with one configuration.

    Example:
        >>> synth = PopulationSynthesizer(SynthesisConfig(n_iterations=3, seed=1))
        >>> result = synth.run(individuals, zones)
        >>> print(result.summary())
    """

    def __init__(self, config: SynthesisConfig | None = None):
        self.config = config or SynthesisConfig()

    @property
    def schema(self) -> AttributeSchema:
        return self.config.attributes

    def prepare(
        self,
        individuals: pd.DataFrame,
        zones: pd.DataFrame,
        verbose: bool = False,
    ) -> tuple[pd.DataFrame, pd.DataFrame]:
        """Validate both tables and substitute zero marginals."""
        schema = self.schema
        clean_individuals = schema.validate_individuals(
            individuals, drop_invalid=self.config.drop_invalid, verbose=verbose
        )
        clean_zones = schema.validate_zones(zones)
        totals = schema.check_constraint_totals(clean_individuals, clean_zones)
        n_zero = int((clean_zones[schema.marginal_columns] == 0).to_numpy().sum())
        clean_zones = schema.substitute_zeros(clean_zones, self.config.epsilon)
        if verbose:
            spread = totals["max_relative_spread"]
            print(f"   Individuals: {len(clean_individuals):,}")
            print(f"   Zones: {len(clean_zones):,}")
            print(f"   Zero marginals replaced: {n_zero:,}")
            print(f"   Max group-total spread: {spread.max() if len(spread) else 0.0:.4%}"
                  f" ({int((spread > 0).sum()):,} zones with unequal group totals)")
        return clean_individuals, clean_zones

    def run(
        self,
        individuals: pd.DataFrame,
        zones: pd.DataFrame,
        verbose: bool = True,
    ) -> SynthesisResult:
        """
        Build the synthetic population.

        Args:
            individuals: Survey table (id column, indicators, outcome)
            zones: Zone marginal table (zone id column, one count per category)
            verbose: Print progress

        Returns:
            SynthesisResult
        """
        config = self.config
        schema = self.schema

        if verbose:
            print("=" * 60)
            print("SPATIAL POPULATION SYNTHESIS")
            print("=" * 60)
            print("\n1. Validating inputs...")
        clean_individuals, clean_zones = self.prepare(individuals, zones, verbose=verbose)

        if verbose:
            print(f"\n2. Fitting weights ({config.n_iterations} iterations, "
                  f"{config.stopping})...")
        engine = IPFEngine(
            schema,
            constraint_order=config.order,
            n_iterations=config.n_iterations,
            stopping=config.stopping,
            tol=config.tol,
            min_correlation=config.min_correlation,
            keep_history=config.keep_history,
            verbose=verbose,
        )
        ipf_result = engine.fit(clean_individuals, clean_zones)

        if verbose:
            print("\n3. Integerizing weights...")
        counts = Integerizer(seed=config.seed, verbose=verbose).integerize(ipf_result.weights)

        if verbose:
            print("\n4. Expanding population...")
        population = expand_population(
            counts,
            clean_individuals,
            zone_column=schema.zone_id_column,
            individual_column=schema.id_column,
        )

        result = SynthesisResult(
            individuals=clean_individuals,
            zones=clean_zones,
            ipf=ipf_result,
            counts=counts,
            population=population,
            config=config,
        )
        if verbose:
            print("\n" + "=" * 60)
            print(result.summary())
            print("=" * 60)
        return result


def synthesize_population(
    individuals: pd.DataFrame,
    zones: pd.DataFrame,
    config: SynthesisConfig | None = None,
    verbose: bool = False,
    **overrides,
) -> SynthesisResult:
    """
    Synthesize a population (convenience function).

    Args:
        individuals: Survey table
        zones: Zone marginal table
        config: Base configuration; defaults to SynthesisConfig()
        verbose: Print progress
        **overrides: Config fields to override, e.g. n_iterations=5, seed=1

    Returns:
        SynthesisResult
    """
    config = config or SynthesisConfig()
    if overrides:
        config = SynthesisConfig.model_validate({**config.model_dump(), **overrides})
    return PopulationSynthesizer(config).run(individuals, zones, verbose=verbose)
