"""Tests for the convergence evaluator."""

import pytest
import numpy as np
import pandas as pd

from spatialpop.convergence import (
    ConvergenceEvaluator,
    ConvergenceReport,
    pearson_correlation,
)
from spatialpop.errors import SchemaMismatch


@pytest.fixture
def marginals():
    return pd.DataFrame(
        {"male": [2.0, 1.0], "female": [1.0, 2.0], "young": [1.5, 2.0], "old": [1.5, 1.0]},
        index=pd.Index(["A", "B"], name="zone_id"),
    )


class TestPearsonCorrelation:
    """Test the flattened Pearson correlation helper."""

    def test_perfect_correlation(self):
        """Should return 1 for proportional arrays."""
        assert pearson_correlation([1, 2, 3], [2, 4, 6]) == pytest.approx(1.0)

    def test_flattens_matrices(self):
        """Should flatten 2-D inputs."""
        x = np.array([[1.0, 2.0], [3.0, 4.0]])
        assert pearson_correlation(x, -x) == pytest.approx(-1.0)

    def test_constant_input_is_nan(self):
        """Should return NaN for constant input."""
        assert np.isnan(pearson_correlation([1, 1, 1], [1, 2, 3]))

    def test_non_finite_input_is_nan(self):
        """Should return NaN for non-finite input."""
        assert np.isnan(pearson_correlation([1, np.nan, 3], [1, 2, 3]))


class TestEvaluate:
    """Test reports comparing aggregates with marginals."""

    def test_perfect_fit(self, sex_age_schema, marginals):
        """Should report zero error for identical tables."""
        evaluator = ConvergenceEvaluator(sex_age_schema)
        report = evaluator.evaluate(marginals.copy(), marginals, iteration=2)

        assert report.iteration == 2
        assert report.group is None
        assert report.correlation == pytest.approx(1.0)
        assert report.max_relative_error == 0.0
        assert report.max_row_sum_deviation == 0.0

    def test_row_sums_by_group(self, sex_age_schema, marginals):
        """Should total each group per zone."""
        evaluator = ConvergenceEvaluator(sex_age_schema)
        aggregates = marginals.copy()
        aggregates["male"] = [4.0, 1.0]

        report = evaluator.evaluate(aggregates, marginals)

        assert list(report.row_sums.columns) == ["sex", "age"]
        np.testing.assert_allclose(report.row_sums["sex"].values, [5.0, 3.0])
        np.testing.assert_allclose(report.target_row_sums["sex"].values, [3.0, 3.0])
        np.testing.assert_allclose(report.row_sum_deviation["sex"].values, [2.0, 0.0])

    def test_relative_errors(self, sex_age_schema, marginals):
        """Should compute per-cell and per-group relative errors."""
        evaluator = ConvergenceEvaluator(sex_age_schema)
        aggregates = marginals.copy()
        aggregates["male"] = [4.0, 1.0]

        report = evaluator.evaluate(aggregates, marginals, group="sex")

        assert report.relative_errors.loc["A", "male"] == pytest.approx(1.0)
        assert report.group_errors["sex"] == pytest.approx(1.0)
        assert report.group_errors["age"] == 0.0
        assert report.max_relative_error == pytest.approx(1.0)
        assert report.group == "sex"

    def test_inputs_unchanged(self, sex_age_schema, marginals):
        """Should not modify either table."""
        evaluator = ConvergenceEvaluator(sex_age_schema)
        aggregates = marginals * 1.1
        before_agg = aggregates.copy()
        before_marg = marginals.copy()

        evaluator.evaluate(aggregates, marginals)

        pd.testing.assert_frame_equal(aggregates, before_agg)
        pd.testing.assert_frame_equal(marginals, before_marg)

    def test_missing_category(self, sex_age_schema, marginals):
        """Should raise error when a category column is missing."""
        evaluator = ConvergenceEvaluator(sex_age_schema)
        with pytest.raises(SchemaMismatch, match="missing categories"):
            evaluator.evaluate(marginals.drop(columns=["old"]), marginals)

    def test_zone_index_mismatch(self, sex_age_schema, marginals):
        """Should raise error when zone indexes differ."""
        evaluator = ConvergenceEvaluator(sex_age_schema)
        other = marginals.rename(index={"B": "C"})
        with pytest.raises(SchemaMismatch, match="zone indexes"):
            evaluator.evaluate(other, marginals)

    def test_summary_and_dict(self, sex_age_schema, marginals):
        """Should render a summary string and a plain dict."""
        report = ConvergenceEvaluator(sex_age_schema).evaluate(marginals, marginals, 1)

        assert "Correlation" in report.summary()
        d = report.to_dict()
        assert d["iteration"] == 1
        assert set(d["group_errors"]) == {"sex", "age"}


class TestZoneCorrelations:
    """Test per-zone correlation breakdown."""

    def test_one_value_per_zone(self, sex_age_schema, marginals):
        """Should return one correlation per zone."""
        evaluator = ConvergenceEvaluator(sex_age_schema)
        result = evaluator.zone_correlations(marginals * 2, marginals)

        assert list(result.index) == ["A", "B"]
        np.testing.assert_allclose(result.values, [1.0, 1.0])


class TestIsConverged:
    """Test the convergence criterion."""

    def _report(self, error, correlation):
        rel = pd.DataFrame({"male": [error]})
        empty = pd.DataFrame({"sex": [0.0]})
        return ConvergenceReport(
            iteration=1,
            group=None,
            correlation=correlation,
            row_sums=empty,
            target_row_sums=empty,
            relative_errors=rel,
        )

    def test_error_below_tolerance(self):
        """Should converge when the error is below tolerance."""
        assert ConvergenceEvaluator.is_converged(self._report(1e-8, 0.99), tol=1e-6)

    def test_error_above_tolerance(self):
        """Should not converge when the error exceeds tolerance."""
        assert not ConvergenceEvaluator.is_converged(self._report(1e-3, 1.0), tol=1e-6)

    def test_correlation_floor(self):
        """Should also require the correlation floor when set."""
        report = self._report(1e-8, 0.99)
        assert not ConvergenceEvaluator.is_converged(report, tol=1e-6, min_correlation=0.999)
        assert ConvergenceEvaluator.is_converged(report, tol=1e-6, min_correlation=0.98)
