"""
Fit diagnostics for IPF weight matrices.

After each constraint pass the weighted aggregates (zones x categories) are
compared with the known zone marginals. The report carries the Pearson
correlation between the flattened tables, per-zone totals by attribute
group, and relative errors per cell. Reports are diagnostics only; the
engine decides whether to act on them.

Example:
    >>> evaluator = ConvergenceEvaluator(schema)
    >>> report = evaluator.evaluate(aggregates, marginals, iteration=1)
    >>> print(report.summary())
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd
from scipy import stats as scipy_stats

from .errors import SchemaMismatch
from .schema import AttributeSchema


def pearson_correlation(x: np.ndarray, y: np.ndarray) -> float:
    """Pearson correlation of two flattened arrays.

    NaN when either array is constant, too short or not finite.
    """
    x = np.asarray(x, dtype=float).ravel()
    y = np.asarray(y, dtype=float).ravel()
    if x.size < 2 or not (np.isfinite(x).all() and np.isfinite(y).all()):
        return float("nan")
    if np.std(x) == 0 or np.std(y) == 0:
        return float("nan")
    r, _ = scipy_stats.pearsonr(x, y)
    return float(r)


@dataclass
class ConvergenceReport:
    """Fit of one weight matrix against the zone marginals."""
    iteration: int
    group: Optional[str]  # group fitted by the pass, None for iteration-level
    correlation: float
    row_sums: pd.DataFrame  # zones x groups, weighted aggregates
    target_row_sums: pd.DataFrame  # zones x groups, marginals
    relative_errors: pd.DataFrame  # zones x categories
    group_errors: Dict[str, float] = field(default_factory=dict)

    @property
    def max_relative_error(self) -> float:
        if self.relative_errors.empty:
            return 0.0
        return float(np.nanmax(self.relative_errors.to_numpy()))

    @property
    def mean_relative_error(self) -> float:
        if self.relative_errors.empty:
            return 0.0
        return float(np.nanmean(self.relative_errors.to_numpy()))

    @property
    def row_sum_deviation(self) -> pd.DataFrame:
        """Aggregate group totals minus target group totals, per zone."""
        return self.row_sums - self.target_row_sums

    @property
    def max_row_sum_deviation(self) -> float:
        dev = self.row_sum_deviation.abs().to_numpy()
        return float(dev.max()) if dev.size else 0.0

    def summary(self) -> str:
        label = f"iteration {self.iteration}"
        if self.group is not None:
            label += f", group {self.group}"
        lines = [
            f"Convergence ({label}):",
            f"  Correlation: {self.correlation:.6f}",
            f"  Max relative error: {self.max_relative_error:.4%}",
            f"  Mean relative error: {self.mean_relative_error:.4%}",
            f"  Max row-sum deviation: {self.max_row_sum_deviation:.4f}",
        ]
        for name, err in self.group_errors.items():
            lines.append(f"    {name}: {err:.4%}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "iteration": self.iteration,
            "group": self.group,
            "correlation": self.correlation,
            "max_relative_error": self.max_relative_error,
            "mean_relative_error": self.mean_relative_error,
            "max_row_sum_deviation": self.max_row_sum_deviation,
            "group_errors": dict(self.group_errors),
        }


class ConvergenceEvaluator:
    """
    Compare weighted aggregates with zone marginals.

    Both tables are zones x categories with the schema's category names as
    columns and the same zone index. Inputs are never modified.
    """

    def __init__(self, schema: AttributeSchema):
        self.schema = schema

    def _align(self, aggregates: pd.DataFrame, marginals: pd.DataFrame):
        categories = self.schema.categories
        for name, table in (("aggregates", aggregates), ("marginals", marginals)):
            missing = [c for c in categories if c not in table.columns]
            if missing:
                raise SchemaMismatch(f"{name} table is missing categories", columns=missing)
        if not aggregates.index.equals(marginals.index):
            raise SchemaMismatch("aggregates and marginals have different zone indexes")
        return aggregates[categories], marginals[categories]

    def _group_totals(self, table: pd.DataFrame) -> pd.DataFrame:
        return pd.DataFrame(
            {g.name: table[g.categories].sum(axis=1) for g in self.schema.groups},
            index=table.index,
        )

    def evaluate(
        self,
        aggregates: pd.DataFrame,
        marginals: pd.DataFrame,
        iteration: int = 0,
        group: Optional[str] = None,
    ) -> ConvergenceReport:
        """
        Build a convergence report.

        Args:
            aggregates: Weighted aggregates (zones x categories)
            marginals: Known zone marginals (zones x categories)
            iteration: Outer iteration number (0 = before fitting)
            group: Group fitted by the pass that produced the aggregates

        Returns:
            ConvergenceReport
        """
        agg, marg = self._align(aggregates, marginals)
        agg_values = agg.to_numpy(dtype=float)
        marg_values = marg.to_numpy(dtype=float)

        diff = np.abs(agg_values - marg_values)
        with np.errstate(divide="ignore", invalid="ignore"):
            rel = np.where(marg_values > 0, diff / marg_values, 0.0)
        relative_errors = pd.DataFrame(rel, index=agg.index, columns=agg.columns)

        group_errors = {
            g.name: float(relative_errors[g.categories].to_numpy().max())
            if len(relative_errors) else 0.0
            for g in self.schema.groups
        }

        return ConvergenceReport(
            iteration=iteration,
            group=group,
            correlation=pearson_correlation(marg_values, agg_values),
            row_sums=self._group_totals(agg),
            target_row_sums=self._group_totals(marg),
            relative_errors=relative_errors,
            group_errors=group_errors,
        )

    def zone_correlations(
        self, aggregates: pd.DataFrame, marginals: pd.DataFrame
    ) -> pd.Series:
        """Correlation between aggregates and marginals within each zone."""
        agg, marg = self._align(aggregates, marginals)
        marg_values = marg.to_numpy(dtype=float)
        agg_values = agg.to_numpy(dtype=float)
        values = [
            pearson_correlation(marg_values[z], agg_values[z])
            for z in range(len(agg_values))
        ]
        return pd.Series(values, index=agg.index, name="correlation")

    @staticmethod
    def is_converged(
        report: ConvergenceReport,
        tol: float = 1e-6,
        min_correlation: Optional[float] = None,
    ) -> bool:
        """Whether a report meets the error tolerance and correlation floor."""
        if report.max_relative_error >= tol:
            return False
        if min_correlation is not None:
            if np.isnan(report.correlation) or report.correlation < min_correlation:
                return False
        return True
