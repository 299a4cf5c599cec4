"""
spatialpop: Small-area synthetic populations from surveys and zone marginals.

Reconciles an individual-level survey with zone-level marginal totals:
- IPF (Iterative Proportional Fitting) of individual x zone weights
- TRS (Truncate-Replicate-Sample) integerization per zone
- Expansion of integer counts into synthetic individual records
- Convergence diagnostics after every constraint pass
- Optional stratified pre-sampling to correct survey outcome bias

Example:
    >>> from spatialpop import PopulationSynthesizer, SynthesisConfig
    >>> synth = PopulationSynthesizer(SynthesisConfig(n_iterations=5, seed=123))
    >>> result = synth.run(individuals, zones)
    >>> result.population.head()
"""

from spatialpop.errors import (
    SynthesisError,
    SchemaMismatch,
    DegenerateMarginal,
    IntegerizationDeficit,
    NegativeOrFractionalCount,
)
from spatialpop.schema import (
    AttributeGroup,
    AttributeSchema,
    DEFAULT_EPSILON,
    health_survey_schema,
    load_schema,
)
from spatialpop.convergence import (
    ConvergenceEvaluator,
    ConvergenceReport,
    pearson_correlation,
)
from spatialpop.ipf import (
    IPFEngine,
    IPFResult,
    WeightSnapshot,
    compute_aggregates,
    ipf_pass,
)
from spatialpop.integerize import (
    Integerizer,
    draw_topups,
    integerize_trs,
    zone_totals_preserved,
)
from spatialpop.expansion import (
    expand_population,
    long_counts,
    summarize_by_zone,
    impose_outcome_rates,
)
from spatialpop.sampling import stratified_sample
from spatialpop.pipeline import (
    PopulationSynthesizer,
    SynthesisConfig,
    SynthesisResult,
    synthesize_population,
)
from spatialpop.data import create_sample_data

__version__ = "0.1.0"

__all__ = [
    # Errors
    "SynthesisError",
    "SchemaMismatch",
    "DegenerateMarginal",
    "IntegerizationDeficit",
    "NegativeOrFractionalCount",
    # Schema
    "AttributeGroup",
    "AttributeSchema",
    "DEFAULT_EPSILON",
    "health_survey_schema",
    "load_schema",
    # Convergence
    "ConvergenceEvaluator",
    "ConvergenceReport",
    "pearson_correlation",
    # IPF
    "IPFEngine",
    "IPFResult",
    "WeightSnapshot",
    "compute_aggregates",
    "ipf_pass",
    # Integerization
    "Integerizer",
    "draw_topups",
    "integerize_trs",
    "zone_totals_preserved",
    # Expansion
    "expand_population",
    "long_counts",
    "summarize_by_zone",
    "impose_outcome_rates",
    # Sampling
    "stratified_sample",
    # Pipeline
    "PopulationSynthesizer",
    "SynthesisConfig",
    "SynthesisResult",
    "synthesize_population",
    # Data
    "create_sample_data",
]
