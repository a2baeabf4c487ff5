"""
PHC Budget Pipeline: Main Runner
================================
Loads the input tables from data/, runs the seven-stage budget pipeline,
and prints a human-readable summary.
"""

import logging
import os

import pandas as pd

from phc_budget.pipeline import PipelineInputs, run_pipeline
from phc_budget.policy import PolicyOverrides, PolicyParameters

# ── Configuration ────────────────────────────────────────────────────
DATA_DIR = "data"
DOWN_MAX_PERCENTAGE = 10.0        # Floor: no facility loses more than 10 %
GEOK_VARIANTS = ["old", "1", "2", "3"]
REBALANCE_VARIANT = "1"


def load_inputs(data_dir=DATA_DIR):
    def read(name):
        return pd.read_csv(os.path.join(data_dir, name))

    legacy_path = os.path.join(data_dir, "legacy_codes.csv")
    return PipelineInputs(
        current=read("demographics.csv"),
        districts=read("districts.csv"),
        transfers=read("transfers.csv"),
        budgets=read("budgets.csv"),
        legacy=pd.read_csv(legacy_path) if os.path.exists(legacy_path) else None,
    )


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )

    # 1. Load data --------------------------------------------------------
    inputs = load_inputs()
    print(f"Loaded {len(inputs.current)} demographic rows from {DATA_DIR}/\n")

    # 2. Run pipeline -----------------------------------------------------
    params = PolicyParameters(
        down_max_percentage=DOWN_MAX_PERCENTAGE,
        geok_variants=GEOK_VARIANTS,
        rebalance_variant=REBALANCE_VARIANT,
    )
    result = run_pipeline(inputs, params, PolicyOverrides())

    # 3. Summary ----------------------------------------------------------
    simulation = result.simulation
    rebalance = result.rebalance
    replication = result.replication

    print("=" * 60)
    print("  PRIMARY CARE BUDGET PIPELINE: ALLOCATION SUMMARY")
    print("=" * 60)
    print(f"  {'Stage':<24}{'Processed':>8}{'Dropped':>9}{'Anomalies':>11}")
    for report in result.reports:
        print(f"  {report.summary_line()}")
    print("-" * 60)
    print(f"  Total Budget:        {simulation.total_budget:>18,.2f}")
    for variant, rate in simulation.per_capita_rates.items():
        impact = simulation.budgets[variant]["Impact"]
        print(
            f"  geok_{variant:<4} rate {rate:>10,.2f}   "
            f"impact {impact.min():>7.1f} % .. {impact.max():>6.1f} %"
        )
    for variant, message in simulation.failures.items():
        print(f"  geok_{variant:<4} FAILED: {message}")
    print("-" * 60)
    print(f"  Rebalanced Variant:  geok_{REBALANCE_VARIANT}")
    print(f"  Floor (down max):    {rebalance.down_max_percentage:>13.2f} %")
    print(f"  Cap (up max):        {rebalance.up_max_percentage:>13.2f} %"
          + ("  (approximate)" if rebalance.approximate else ""))
    print(f"  Shortfall Funded:    {rebalance.shortfall_total:>18,.2f}")
    print(f"  Excess Recovered:    {rebalance.excess_total:>18,.2f}")
    print("-" * 60)
    for method, histogram in replication.histograms.items():
        left, right = histogram.mode_bin
        print(
            f"  Replication M{method}:     mean dev {histogram.mean:>7.3f}, "
            f"mode [{left:.2f}, {right:.2f})"
        )
    print("=" * 60)


if __name__ == "__main__":
    main()
