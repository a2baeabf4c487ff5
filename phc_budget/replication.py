"""
PHC Budget Pipeline: Budget Replication
=======================================
Rebuilds last year's primary-care budgets from the current roster with the
two historical pools, to measure how well the per-capita formula explains
real allocations.  Nothing here feeds forward allocation.

Pools
-----
- **Narrow specialists** : population (zero for the facility without narrow
  specialists) x legacy narrow-specialist geok.
- **Family medicine**    : population x legacy family-medicine geok x
  preference coefficient ``Prefk = (Insured x (ratio - 1) + People) / People``.

Methods
-------
- **Method 1** : per-capita rate from population-weighted average geoks.
- **Method 2** : rate straight from the weighted population sum.

The two methods disagree facility by facility on purpose; the gap between
them is part of the validation output.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict

import numpy as np
import pandas as pd

from phc_budget.errors import DivisionByZeroError
from phc_budget.geo_merge import weighted_mean
from phc_budget.policy import (
    BUDGET_UNIT,
    FAMILY_MEDICINE_POOL,
    INSURED_UNINSURED_RATIO,
    NARROW_SPECIALIST_POOL,
    PolicyOverrides,
)
from phc_budget.report import StageReport, require_rows

logger = logging.getLogger(__name__)

HISTOGRAM_BIN_WIDTH = 0.01
METHODS = (1, 2)


@dataclass
class DeviationHistogram:
    """Counts of deviation ratios in fixed-width bins."""

    counts: np.ndarray
    edges: np.ndarray
    mean: float
    median: float

    @property
    def mode_bin(self):
        """``(left, right)`` edges of the most populated bin."""
        if len(self.counts) == 0:
            return float("nan"), float("nan")
        i = int(np.argmax(self.counts))
        return float(self.edges[i]), float(self.edges[i + 1])


def deviation_histogram(values, bin_width=HISTOGRAM_BIN_WIDTH):
    """Bin finite ``values`` into ``bin_width`` buckets aligned on multiples of the width."""
    values = np.asarray(values, dtype=float)
    values = values[np.isfinite(values)]
    if len(values) == 0:
        return DeviationHistogram(np.zeros(0, dtype=int), np.zeros(1), float("nan"), float("nan"))

    low = np.floor(values.min() / bin_width) * bin_width
    high = np.ceil(values.max() / bin_width) * bin_width
    n_bins = max(1, int(round((high - low) / bin_width)))
    edges = low + bin_width * np.arange(n_bins + 1)
    counts, edges = np.histogram(values, bins=edges)
    return DeviationHistogram(counts, edges, float(values.mean()), float(np.median(values)))


@dataclass
class ReplicationResult:
    """Replicated prior-year budgets under both methods."""

    frame: pd.DataFrame
    rates: Dict[str, float]
    weighted_averages: Dict[str, float]
    histograms: Dict[int, DeviationHistogram]
    report: StageReport = field(default_factory=lambda: StageReport("replication"))

    def pool_totals(self, method):
        return {
            "narrow": float(self.frame[f"M{method}_Narrow"].sum()),
            "family": float(self.frame[f"M{method}_Family"].sum()),
        }


class BudgetReplicator:
    """Replicates historical budgets from the merged roster."""

    def __init__(
        self,
        narrow_specialist_pool=NARROW_SPECIALIST_POOL,
        family_medicine_pool=FAMILY_MEDICINE_POOL,
        insured_uninsured_ratio=INSURED_UNINSURED_RATIO,
    ):
        self.narrow_specialist_pool = float(narrow_specialist_pool)
        self.family_medicine_pool = float(family_medicine_pool)
        self.insured_uninsured_ratio = float(insured_uninsured_ratio)

    def run_replication(self, merged, overrides=None):
        """
        Replicate prior-year budgets with both methods.

        Parameters
        ----------
        merged : pandas.DataFrame
            ``MergeResult.frame``; needs ``People``, ``Insured``,
            ``Geok_Old_Ns``, ``Geok_Old_Gsv``, ``Total_Population`` and
            ``Primary_Care_Budget``.
        overrides : PolicyOverrides, optional

        Returns
        -------
        ReplicationResult

        Raises
        ------
        DivisionByZeroError
            If a pool's weighted population is zero.
        """
        overrides = overrides or PolicyOverrides()
        report = StageReport("replication")
        require_rows(merged, report, "merged table is empty")
        logger.info("Replicating prior-year budgets for %d facilities", len(merged))

        frame = pd.DataFrame(index=merged.index)
        frame["People"] = merged["People"].astype(float)
        frame["Insured"] = merged["Insured"].astype(float)
        frame["Geok_Old_Ns"] = merged["Geok_Old_Ns"].astype(float)
        frame["Geok_Old_Gsv"] = merged["Geok_Old_Gsv"].astype(float)
        actual = merged["Primary_Care_Budget"].astype(float) * BUDGET_UNIT

        # 1. Population served by narrow specialists ---------------------
        frame["People_NS"] = frame["People"]
        code = overrides.no_narrow_specialist_code
        if code is not None and code in frame.index:
            frame.at[code, "People_NS"] = 0.0
            report.note(f"facility {code} has no narrow-specialist population")

        # 2. Preference coefficient --------------------------------------
        empty = frame["People"] <= 0
        ratio = self.insured_uninsured_ratio
        frame["Prefk"] = (
            (frame["Insured"] * (ratio - 1) + frame["People"])
            / frame["People"].where(~empty)
        ).fillna(1.0)
        for facility in frame.index[empty]:
            logger.warning("Facility %s has zero population; Prefk set to 1.0", facility)
        report.anomalies += int(empty.sum())

        averages = {
            "geok_old_ns": weighted_mean(frame["Geok_Old_Ns"], merged["Total_Population"]),
            "geok_old_gsv": weighted_mean(frame["Geok_Old_Gsv"], merged["Total_Population"]),
            "prefk": weighted_mean(frame["Prefk"], frame["People"]),
        }
        logger.info(
            "Weighted averages: geok_old_ns=%.4f geok_old_gsv=%.4f prefk=%.4f",
            averages["geok_old_ns"],
            averages["geok_old_gsv"],
            averages["prefk"],
        )

        # 3. Method 1: rate from weighted averages -----------------------
        ns_base = frame["People_NS"].sum() * averages["geok_old_ns"]
        gsv_base = frame["People"].sum() * averages["geok_old_gsv"] * averages["prefk"]
        capita_1 = self._rate(self.narrow_specialist_pool, ns_base, "method 1 narrow-specialist")
        capita_2 = self._rate(self.family_medicine_pool, gsv_base, "method 1 family-medicine")
        frame["M1_Narrow"] = capita_1 * frame["People_NS"] * frame["Geok_Old_Ns"]
        frame["M1_Family"] = capita_2 * frame["People"] * frame["Geok_Old_Gsv"] * frame["Prefk"]

        # 4. Method 2: rate from the weighted population sum -------------
        ns_weighted = (frame["People_NS"] * frame["Geok_Old_Ns"]).sum()
        gsv_weighted = (frame["People"] * frame["Geok_Old_Gsv"] * frame["Prefk"]).sum()
        rate_1 = self._rate(self.narrow_specialist_pool, ns_weighted, "method 2 narrow-specialist")
        rate_2 = self._rate(self.family_medicine_pool, gsv_weighted, "method 2 family-medicine")
        frame["M2_Narrow"] = rate_1 * frame["People_NS"] * frame["Geok_Old_Ns"]
        frame["M2_Family"] = rate_2 * frame["People"] * frame["Geok_Old_Gsv"] * frame["Prefk"]

        # 5. Deviation from the actual budget ----------------------------
        histograms = {}
        for method in METHODS:
            total = frame[f"M{method}_Narrow"] + frame[f"M{method}_Family"]
            frame[f"M{method}_Total"] = total
            frame[f"M{method}_Deviation"] = -1 + total / actual
            histograms[method] = deviation_histogram(frame[f"M{method}_Deviation"])
            logger.info(
                "Method %d: mean deviation %.4f, median %.4f",
                method,
                histograms[method].mean,
                histograms[method].median,
            )

        report.processed = len(frame)
        report.log()
        return ReplicationResult(
            frame=frame,
            rates={
                "m1_narrow": capita_1,
                "m1_family": capita_2,
                "m2_narrow": rate_1,
                "m2_family": rate_2,
            },
            weighted_averages=averages,
            histograms=histograms,
            report=report,
        )

    @staticmethod
    def _rate(pool, base, label):
        if base == 0 or np.isnan(base):
            raise DivisionByZeroError(f"{label} weighted population is zero")
        rate = pool / base
        logger.info("Per-capita rate (%s): %.4f", label, rate)
        return float(rate)
