"""
End-to-end tests for the synthesis pipeline.

Tests the full flow: validation -> IPF -> TRS -> expansion.
"""

import pytest
import numpy as np
import pandas as pd

from spatialpop.data import create_sample_data
from spatialpop.errors import SchemaMismatch
from spatialpop.pipeline import (
    PopulationSynthesizer,
    SynthesisConfig,
    synthesize_population,
)


@pytest.fixture(scope="module")
def sample_data():
    return create_sample_data(n_individuals=300, n_zones=8, seed=3)


@pytest.fixture(scope="module")
def result(sample_data):
    individuals, zones = sample_data
    return synthesize_population(individuals, zones, n_iterations=5, seed=11)


class TestSmallExample:
    """Test two zones and three respondents with hand-checkable weights."""

    def test_weights_and_population(self, sex_schema, sex_individuals, sex_zones):
        """Should reproduce the hand-computed weights and zone sizes."""
        config = SynthesisConfig(attributes=sex_schema, seed=0)
        result = PopulationSynthesizer(config).run(
            sex_individuals, sex_zones, verbose=False
        )

        np.testing.assert_allclose(
            result.weights.values, [[1.0, 0.5], [1.0, 2.0], [1.0, 0.5]]
        )
        assert list(result.counts["Z1"]) == [1, 1, 1]
        assert result.counts.loc[2, "Z2"] == 2
        sizes = result.population.groupby("zone_id").size()
        assert sizes["Z1"] == 3
        assert sizes["Z2"] == 3


class TestPrepare:
    """Test input validation before fitting."""

    def test_reports_group_total_spread(
        self, sex_age_schema, full_individuals, sex_age_zones, capsys
    ):
        """Should print the largest spread between a zone's group totals."""
        sex_age_zones.loc[0, "old"] = 30.0
        synth = PopulationSynthesizer(SynthesisConfig(attributes=sex_age_schema))

        synth.prepare(full_individuals, sex_age_zones, verbose=True)

        out = capsys.readouterr().out
        assert "Max group-total spread: 20.0000%" in out
        assert "1 zones with unequal group totals" in out

    def test_consistent_zones_report_zero_spread(
        self, sex_age_schema, full_individuals, sex_age_zones, capsys
    ):
        """Should report no unequal zones when groups agree."""
        synth = PopulationSynthesizer(SynthesisConfig(attributes=sex_age_schema))

        synth.prepare(full_individuals, sex_age_zones, verbose=True)

        assert "0 zones with unequal group totals" in capsys.readouterr().out


class TestSynthesizePopulation:
    """Test a full run on sample data."""

    def test_population_size_matches_counts(self, result):
        """Should emit one record per integer count."""
        assert len(result.population) == result.counts.values.sum()

    def test_zone_totals_preserved(self, result):
        """Should keep each zone's rounded weight total."""
        sizes = result.population.groupby("geoid").size()
        expected = np.round(result.weights.sum(axis=0)).astype(int)

        for zone_id in result.zones.index:
            assert sizes.get(zone_id, 0) == expected[zone_id]

    def test_fit_quality(self, result):
        """Should fit the sample marginals closely."""
        assert result.ipf.final_report.correlation > 0.99
        assert len(result.reports) == 5

    def test_zero_marginals_substituted(self, sample_data, result):
        """Should replace zero marginals with epsilon."""
        _, zones = sample_data
        assert zones.loc[0, "other"] == 0
        assert result.zones.loc["Z0000", "other"] == pytest.approx(1e-6)

    def test_population_columns(self, result):
        """Should lead with zone id and individual id columns."""
        cols = list(result.population.columns)
        assert cols[:2] == ["geoid", "id"]
        assert "vaccine" in cols
        assert "bachelors" in cols

    def test_zone_summary(self, result):
        """Should total the population per zone."""
        summary = result.zone_summary()

        np.testing.assert_array_equal(
            summary["total_population"].values,
            result.counts.sum(axis=0).loc[summary.index].values,
        )
        assert "total_vaccine" in summary.columns
        np.testing.assert_array_equal(
            summary[["total_male", "total_female"]].sum(axis=1).values,
            summary["total_population"].values,
        )

    def test_same_seed_same_population(self, sample_data, result):
        """Should be reproducible for a fixed seed."""
        individuals, zones = sample_data
        again = synthesize_population(individuals, zones, n_iterations=5, seed=11)
        pd.testing.assert_frame_equal(result.population, again.population)

    def test_summary_text(self, result):
        """Should summarise the run as text."""
        text = result.summary()
        assert "Synthetic population" in text

    def test_quiet_by_default(self, sample_data, capsys):
        """Should print nothing unless verbose."""
        individuals, zones = sample_data
        synthesize_population(individuals, zones, seed=1)
        assert capsys.readouterr().out == ""

    def test_verbose_progress(self, sample_data, capsys):
        """Should print the banner and each step when verbose."""
        individuals, zones = sample_data
        synthesize_population(individuals, zones, seed=1, verbose=True)

        out = capsys.readouterr().out
        assert "SPATIAL POPULATION SYNTHESIS" in out
        assert "Integerizing" in out
        assert "Max group-total spread" in out

    def test_schema_mismatch_propagates(self, sample_data):
        """Should raise SchemaMismatch for a missing marginal column."""
        individuals, zones = sample_data
        with pytest.raises(SchemaMismatch):
            synthesize_population(individuals, zones.drop(columns=["bachelors"]))


class TestSynthesisConfig:
    """Test configuration validation and loading."""

    def test_defaults(self):
        """Should default to one fixed iteration in schema order."""
        config = SynthesisConfig()
        assert config.n_iterations == 1
        assert config.stopping == "fixed"
        assert config.order == ["age", "sex", "race", "education", "income"]

    def test_unknown_group_in_order(self):
        """Should raise error for an unknown group in the order."""
        with pytest.raises(ValueError, match="unknown groups"):
            SynthesisConfig(constraint_order=["religion"])

    def test_invalid_iterations(self):
        """Should raise error for fewer than one iteration."""
        with pytest.raises(ValueError):
            SynthesisConfig(n_iterations=0)

    def test_custom_order(self):
        """Should use an explicit constraint order."""
        config = SynthesisConfig(constraint_order=["income", "age"])
        assert config.order == ["income", "age"]

    def test_from_yaml(self, tmp_path):
        """Should load a configuration from YAML."""
        path = tmp_path / "config.yaml"
        path.write_text(
            "n_iterations: 3\n"
            "seed: 5\n"
            "stopping: converged\n"
            "constraint_order: [age, sex]\n"
            "attributes:\n"
            "  zone_id_column: tract\n"
            "  groups:\n"
            "    - name: sex\n"
            "      categories: [male, female]\n"
            "    - name: age\n"
            "      categories: [young, old]\n"
        )

        config = SynthesisConfig.from_yaml(path)

        assert config.n_iterations == 3
        assert config.seed == 5
        assert config.stopping == "converged"
        assert config.order == ["age", "sex"]
        assert config.attributes.zone_id_column == "tract"

    def test_overrides(self, sample_data):
        """Should apply keyword overrides on top of a base config."""
        individuals, zones = sample_data
        result = synthesize_population(
            individuals, zones, config=SynthesisConfig(seed=1), n_iterations=2
        )
        assert result.config.n_iterations == 2
        assert result.config.seed == 1
        assert result.ipf.n_iterations == 2
