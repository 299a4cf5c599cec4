#!/usr/bin/env python3
"""
Synthesize a small-area population from a survey and zone marginals.

Flow:
1. Load the binarized survey CSV and the zone marginal CSV
   (or generate sample tables with --sample)
2. Optionally draw an outcome-balanced stratified subsample of the survey
3. Fit individual x zone weights with IPF
4. Integerize with TRS and expand to one row per synthetic individual
5. Write weights, counts, population and per-zone summary CSVs

Example:
    python scripts/synthesize_population.py --sample --iterations 5 --seed 123
    python scripts/synthesize_population.py \\
        --individuals survey.csv --zones tracts.csv --config config.yaml
"""

import argparse
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pandas as pd
from spatialpop import (
    PopulationSynthesizer,
    SynthesisConfig,
    create_sample_data,
    stratified_sample,
)


def load_inputs(args, config: SynthesisConfig):
    """Load (individuals, zones) from CSV or build sample tables."""
    print("=" * 70)
    print("LOADING DATA")
    print("=" * 70)

    if args.sample:
        individuals, zones = create_sample_data(
            n_individuals=args.n_individuals,
            n_zones=args.n_zones,
            seed=args.seed if args.seed is not None else 42,
            schema=config.attributes,
        )
        print("Generated sample data")
    else:
        if not args.individuals or not args.zones:
            print("ERROR: --individuals and --zones are required without --sample")
            sys.exit(1)
        individuals = pd.read_csv(args.individuals)
        zones = pd.read_csv(args.zones)

    print(f"Survey individuals: {len(individuals):,}")
    print(f"Zones: {len(zones):,}")
    return individuals, zones


def main():
    parser = argparse.ArgumentParser(
        description="Synthesize a small-area population with IPF + TRS",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--individuals", type=str, help="Survey CSV")
    parser.add_argument("--zones", type=str, help="Zone marginal CSV")
    parser.add_argument("--config", type=str, help="YAML configuration file")
    parser.add_argument("--sample", action="store_true",
                        help="Use generated sample data instead of CSV inputs")
    parser.add_argument("--n-individuals", type=int, default=500,
                        help="Sample survey size (default: 500)")
    parser.add_argument("--n-zones", type=int, default=20,
                        help="Sample zone count (default: 20)")
    parser.add_argument("--iterations", type=int, default=None,
                        help="Outer IPF iterations (overrides config)")
    parser.add_argument("--seed", type=int, default=None,
                        help="Integerization seed (overrides config)")
    parser.add_argument("--stratify", type=int, default=None,
                        help="Draw a stratified subsample of this size first")
    parser.add_argument("--outcome-share", type=float, default=0.5,
                        help="Outcome share for --stratify (default: 0.5)")
    parser.add_argument("--output-dir", type=str, default="output",
                        help="Output directory (default: output/)")
    args = parser.parse_args()

    config = SynthesisConfig.from_yaml(args.config) if args.config else SynthesisConfig()
    overrides = {}
    if args.iterations is not None:
        overrides["n_iterations"] = args.iterations
    if args.seed is not None:
        overrides["seed"] = args.seed
    if overrides:
        config = SynthesisConfig.model_validate({**config.model_dump(), **overrides})

    individuals, zones = load_inputs(args, config)

    if args.stratify:
        individuals = stratified_sample(
            individuals,
            config.attributes,
            total=args.stratify,
            outcome_share=args.outcome_share,
            seed=config.seed,
        )
        print(f"Stratified subsample: {len(individuals):,} individuals")

    result = PopulationSynthesizer(config).run(individuals, zones, verbose=True)

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    result.weights.to_csv(output_dir / "weights.csv")
    result.counts.to_csv(output_dir / "counts.csv")
    result.population.to_csv(output_dir / "population.csv", index=False)
    result.zone_summary().to_csv(output_dir / "zone_summary.csv")
    result.ipf.get_convergence_history().to_csv(
        output_dir / "convergence.csv", index=False
    )
    print(f"\nSaved outputs to {output_dir}/")


if __name__ == "__main__":
    main()
