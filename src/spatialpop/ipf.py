"""
Spatial Iterative Proportional Fitting.

Computes a weight for every (individual, zone) pair so that, in each zone,
the weighted count of survey individuals in each category matches the
zone's marginal. Constraint groups are applied one at a time in an
explicit order; one outer iteration is one pass over every group.

Algorithm (per outer iteration):
    for each group g in constraint_order:
        aggregate[z, c] = sum_i weight[i, z] * indicator[i, c]
        factor[i, z]    = marginal[z, c(i)] / aggregate[z, c(i)]
        weight[i, z]   *= factor[i, z]

where c(i) is the single category of group g that individual i belongs to.
After pass g, group g matches its marginals exactly; later passes perturb
it, so repeated outer iterations reduce the total residual. The order of
groups matters: the last group is fitted best.

Example:
    >>> from spatialpop.ipf import IPFEngine
    >>> engine = IPFEngine(schema, constraint_order=["age", "sex"], n_iterations=5)
    >>> result = engine.fit(individuals, zones)
    >>> result.weights.loc[person_id, zone_id]
"""

from dataclasses import dataclass, field, replace
from typing import List, Literal, Optional, Sequence

import numpy as np
import pandas as pd

from .convergence import ConvergenceEvaluator, ConvergenceReport
from .errors import DegenerateMarginal, SchemaMismatch
from .schema import AttributeSchema


@dataclass
class WeightSnapshot:
    """Cumulative weights after one constraint pass."""
    iteration: int
    group: str
    weights: np.ndarray


@dataclass
class IPFResult:
    """Output of an IPF fit."""
    weights: pd.DataFrame  # individuals x zones
    aggregates: pd.DataFrame  # zones x categories
    initial_report: ConvergenceReport
    reports: List[ConvergenceReport]  # one per outer iteration
    pass_reports: List[ConvergenceReport]  # one per group pass
    constraint_order: List[str]
    n_iterations: int
    converged: bool
    history: List[WeightSnapshot] = field(default_factory=list)

    @property
    def final_report(self) -> ConvergenceReport:
        return self.reports[-1] if self.reports else self.initial_report

    def get_convergence_history(self) -> pd.DataFrame:
        """One row per outer iteration with correlation and error summaries."""
        rows = [self.initial_report.to_dict()] + [r.to_dict() for r in self.reports]
        history = pd.DataFrame(rows)
        return history.drop(columns=["group", "group_errors"])


def compute_aggregates(weights: np.ndarray, indicators: np.ndarray) -> np.ndarray:
    """
    Weighted category counts per zone.

    Args:
        weights: Individuals x zones weight matrix
        indicators: Individuals x categories 0/1 matrix

    Returns:
        Zones x categories matrix; entry [z, c] = sum_i w[i, z] * x[i, c]
    """
    return weights.T @ indicators


def ipf_pass(
    weights: np.ndarray,
    indicators: np.ndarray,
    marginals: np.ndarray,
    positions: Sequence[int],
    group: str = "",
    categories: Optional[Sequence[str]] = None,
    zone_ids: Optional[Sequence] = None,
) -> np.ndarray:
    """
    Fit one constraint group.

    Args:
        weights: Current cumulative weights (individuals x zones)
        indicators: Individuals x categories 0/1 matrix
        marginals: Zones x categories marginal matrix
        positions: Column positions of the group's categories
        group: Group name (for error messages)
        categories: Category names matching ``positions`` (for error messages)
        zone_ids: Zone labels (for error messages)

    Returns:
        New cumulative weights; the input array is not modified.

    Raises:
        DegenerateMarginal: A group aggregate is exactly zero in some zone
        SchemaMismatch: The adjustment ratio is NaN or infinite
    """
    positions = list(positions)
    group_indicators = indicators[:, positions]
    aggregate = compute_aggregates(weights, group_indicators)
    target = marginals[:, positions]

    zero = aggregate == 0
    if zero.any():
        zone_idx, cat_idx = np.nonzero(zero)
        category = categories[cat_idx[0]] if categories is not None else None
        zones = zone_idx if zone_ids is None else [zone_ids[z] for z in zone_idx]
        raise DegenerateMarginal(
            "Weighted aggregate is zero", group=group, category=category, zone_ids=zones
        )

    ratio = target / aggregate
    if not np.isfinite(ratio).all():
        raise SchemaMismatch(
            "Adjustment factor is not finite; individual and zone columns "
            "are misaligned",
            group=group,
        )

    # Exactly one category per individual, so this picks each row's ratio
    factor = group_indicators @ ratio.T
    return weights * factor


class IPFEngine:
    """
    Fit individual-by-zone weights to zone marginals.

    Two stopping modes are supported:
    - ``"fixed"`` (default): run exactly ``n_iterations`` outer iterations.
      Reproducible regardless of data.
    - ``"converged"``: run at most ``n_iterations`` and stop once the
      maximum relative error is below ``tol`` (and correlation is at least
      ``min_correlation`` when given).
    """

    def __init__(
        self,
        schema: AttributeSchema,
        constraint_order: Optional[Sequence[str]] = None,
        n_iterations: int = 1,
        stopping: Literal["fixed", "converged"] = "fixed",
        tol: float = 1e-6,
        min_correlation: Optional[float] = None,
        keep_history: bool = False,
        verbose: bool = False,
    ):
        """
        Initialize the engine.

        Args:
            schema: Attribute schema shared by individuals and zones
            constraint_order: Group names in the order they are fitted.
                Defaults to the schema's group order. Later groups fit
                more precisely.
            n_iterations: Outer iterations (maximum in "converged" mode)
            stopping: "fixed" or "converged"
            tol: Max relative error for "converged" mode
            min_correlation: Optional correlation floor for "converged" mode
            keep_history: Keep a weight snapshot after every pass
            verbose: Print progress

        Raises:
            ValueError: Invalid stopping mode or iteration count
            SchemaMismatch: constraint_order names unknown or duplicate groups
        """
        if stopping not in ("fixed", "converged"):
            raise ValueError(
                f"Invalid stopping mode: {stopping}. Must be 'fixed' or 'converged'"
            )
        if n_iterations < 1:
            raise ValueError(f"n_iterations must be at least 1, got {n_iterations}")

        order = list(constraint_order) if constraint_order is not None else schema.group_names
        if len(set(order)) != len(order):
            raise SchemaMismatch(f"Duplicate groups in constraint order: {order}")
        for name in order:
            schema.group(name)

        self.schema = schema
        self.constraint_order = order
        self.n_iterations = n_iterations
        self.stopping = stopping
        self.tol = tol
        self.min_correlation = min_correlation
        self.keep_history = keep_history
        self.verbose = verbose
        self.evaluator = ConvergenceEvaluator(schema)

    def _report(self, weights, indicators, marginal_df, iteration, group=None):
        aggregates = pd.DataFrame(
            compute_aggregates(weights, indicators),
            index=marginal_df.index,
            columns=marginal_df.columns,
        )
        return aggregates, self.evaluator.evaluate(
            aggregates, marginal_df, iteration=iteration, group=group
        )

    def fit(
        self,
        individuals: pd.DataFrame,
        zones: pd.DataFrame,
        initial_weights: Optional[np.ndarray] = None,
    ) -> IPFResult:
        """
        Fit weights for every (individual, zone) pair.

        Args:
            individuals: Validated individual table indexed by id
            zones: Validated zone table indexed by zone id, zeros already
                replaced by a small epsilon
            initial_weights: Optional starting weights (individuals x zones),
                e.g. the result of an earlier fit. Defaults to all ones.

        Returns:
            IPFResult with the final weights and convergence reports
        """
        schema = self.schema
        categories = schema.categories
        indicators = schema.indicator_matrix(individuals)
        marginals = schema.marginal_matrix(zones)
        marginal_df = pd.DataFrame(marginals, index=zones.index, columns=categories)
        zone_ids = list(zones.index)

        shape = (len(individuals), len(zones))
        if initial_weights is None:
            weights = np.ones(shape, dtype=float)
        else:
            weights = np.array(initial_weights, dtype=float)
            if weights.shape != shape:
                raise SchemaMismatch(
                    f"initial_weights shape {weights.shape} != {shape}"
                )

        _, initial_report = self._report(weights, indicators, marginal_df, iteration=0)
        if self.verbose:
            print(f"IPF: {shape[0]:,} individuals x {shape[1]:,} zones, "
                  f"order: {' -> '.join(self.constraint_order)}")
            print(f"  Initial: r={initial_report.correlation:.4f}")

        reports: List[ConvergenceReport] = []
        pass_reports: List[ConvergenceReport] = []
        history: List[WeightSnapshot] = []
        converged = False
        n_passes = len(self.constraint_order)
        iteration = 0

        for iteration in range(1, self.n_iterations + 1):
            for step, name in enumerate(self.constraint_order, start=1):
                group = schema.group(name)
                weights = ipf_pass(
                    weights,
                    indicators,
                    marginals,
                    schema.category_positions(name),
                    group=name,
                    categories=group.categories,
                    zone_ids=zone_ids,
                )
                _, report = self._report(
                    weights, indicators, marginal_df, iteration, group=name
                )
                pass_reports.append(report)
                if self.keep_history:
                    history.append(WeightSnapshot(iteration, name, weights.copy()))
                if self.verbose:
                    print(f"  Pass {step}/{n_passes} ({name}): "
                          f"r={report.correlation:.4f}, "
                          f"max rel err={report.max_relative_error:.4f}")

            iteration_report = replace(pass_reports[-1], group=None)
            reports.append(iteration_report)
            converged = ConvergenceEvaluator.is_converged(
                iteration_report, self.tol, self.min_correlation
            )
            if self.verbose:
                print(f"  Iteration {iteration}: r={iteration_report.correlation:.6f}, "
                      f"max rel err={iteration_report.max_relative_error:.6f}")
            if self.stopping == "converged" and converged:
                break

        aggregates = pd.DataFrame(
            compute_aggregates(weights, indicators), index=zones.index, columns=categories
        )
        return IPFResult(
            weights=pd.DataFrame(weights, index=individuals.index, columns=zones.index),
            aggregates=aggregates,
            initial_report=initial_report,
            reports=reports,
            pass_reports=pass_reports,
            constraint_order=list(self.constraint_order),
            n_iterations=iteration,
            converged=converged,
            history=history,
        )
