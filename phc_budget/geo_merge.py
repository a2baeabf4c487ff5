"""
PHC Budget Pipeline: Geographic / Organizational Merge
=======================================================
Fuses the workload table with district geography, narrow-specialist
transfer links and the prior-year budget table, in that order, and derives
the legacy geographic coefficients.

Join semantics
--------------
- **Districts** : left join on ``District_Code``; unknown districts get 0s.
- **Transfers** : left join on ``Facility_Code``; unknown facilities get no links.
- **Budgets**   : inner join on ``Facility_Code``; facilities without a
  budget row, or with a zero primary-care budget, leave the pipeline here.
"""

import logging
import warnings
from dataclasses import dataclass, field

import numpy as np
import pandas as pd

from phc_budget.demographics import to_codes
from phc_budget.errors import MissingJoinKeyError
from phc_budget.policy import LEGACY_GSV_WEIGHT, LEGACY_NS_WEIGHT
from phc_budget.report import StageReport, require_rows

logger = logging.getLogger(__name__)

DISTRICT_FIELDS = ["Altitude", "Density", "Rural", "Smalltown"]
LINK_FIELDS = ["Origin_1", "Origin_2", "Destination"]
BUDGET_FIELDS = ["Budget_Prior", "Primary_Care_Budget", "Geok_Old_Gsv", "Total_Population"]


def weighted_mean(values, weights):
    """Weighted average over rows with positive weight; NaN if there are none."""
    mask = weights > 0
    if not mask.any():
        return float("nan")
    return float(np.average(values[mask], weights=weights[mask]))


@dataclass
class MergeResult:
    """Merged per-facility table, the canonical input to simulation and replication."""

    frame: pd.DataFrame
    geok_old_ns_w_avg: float = float("nan")
    geok_old_gsv_w_avg: float = float("nan")
    report: StageReport = field(default_factory=lambda: StageReport("geo_merge"))


class GeoMerger:
    """Runs the ordered district -> transfers -> budget join."""

    def run_merge(self, workload, districts, transfers, budgets):
        """
        Merge workload results with geography, links and budgets.

        Parameters
        ----------
        workload : pandas.DataFrame
            ``WorkloadResult.frame`` indexed by ``Facility_Code``.
        districts : pandas.DataFrame
            ``District_Code`` plus ``Altitude``, ``Density``, ``Rural``,
            ``Smalltown``.
        transfers : pandas.DataFrame
            ``Facility_Code`` plus ``Origin_1``, ``Origin_2``, ``Destination``.
        budgets : pandas.DataFrame
            ``Facility_Code`` plus ``Budget_Prior``, ``Primary_Care_Budget``
            (both in thousands), ``Geok_Old_Gsv`` and ``Total_Population``.

        Returns
        -------
        MergeResult
        """
        report = StageReport("geo_merge")
        logger.info("Merging %d workload records", len(workload))

        merged = self._join_districts(workload.copy(), districts, report)
        merged = self._join_transfers(merged, transfers, report)
        merged = self._join_budgets(merged, budgets, report)
        require_rows(merged, report, "no workload facility has a usable budget row")

        # Legacy geographic coefficients -----------------------------------
        merged["Geok_Old_Ns"] = (
            merged["Altitude"] + merged["Smalltown"] + merged["Rural"] - 2
        )
        merged["Geok_Old"] = (
            merged["Geok_Old_Gsv"] * LEGACY_GSV_WEIGHT
            + merged["Geok_Old_Ns"] * LEGACY_NS_WEIGHT
        )

        ns_avg = weighted_mean(merged["Geok_Old_Ns"], merged["Total_Population"])
        gsv_avg = weighted_mean(merged["Geok_Old_Gsv"], merged["Total_Population"])
        logger.info("Weighted legacy geok (narrow specialists): %.4f", ns_avg)
        logger.info("Weighted legacy geok (family medicine): %.4f", gsv_avg)

        report.processed = len(merged)
        report.log()
        return MergeResult(
            frame=merged,
            geok_old_ns_w_avg=ns_avg,
            geok_old_gsv_w_avg=gsv_avg,
            report=report,
        )

    # -----------------------------------------------------------------
    # Join steps
    # -----------------------------------------------------------------
    @staticmethod
    def _join_districts(merged, districts, report):
        table = districts.copy()
        table["District_Code"] = to_codes(table["District_Code"])
        duplicated = table["District_Code"].duplicated()
        if duplicated.any():
            logger.warning("%d duplicate district rows ignored", int(duplicated.sum()))
            table = table[~duplicated]
        table = table.dropna(subset=["District_Code"]).set_index("District_Code")

        codes = to_codes(merged["District_Code"])
        known = codes.isin(table.index)
        for name in DISTRICT_FIELDS:
            merged[name] = codes.map(table[name]).astype(float).fillna(0.0).to_numpy()

        missing = merged.index[~known.to_numpy()]
        if len(missing):
            message = (
                f"{len(missing)} facilities have no district geography; "
                f"density fields set to 0: {list(missing)}"
            )
            logger.warning(message)
            warnings.warn(MissingJoinKeyError(message), stacklevel=3)
            report.anomalies += len(missing)
            report.note(message)
        return merged

    @staticmethod
    def _join_transfers(merged, transfers, report):
        table = transfers.copy()
        table["Facility_Code"] = table["Facility_Code"].astype(int)
        table = table.drop_duplicates("Facility_Code").set_index("Facility_Code")
        for name in LINK_FIELDS:
            # Only positive codes are links
            links = pd.to_numeric(table[name], errors="coerce")
            links = to_codes(links.where(links > 0))
            merged[name] = links.reindex(merged.index).astype("Int64")

        linked = merged[LINK_FIELDS].notna().any(axis=1).sum()
        report.note(f"{int(linked)} facilities carry transfer links")
        return merged

    @staticmethod
    def _join_budgets(merged, budgets, report):
        table = budgets.copy()
        table["Facility_Code"] = table["Facility_Code"].astype(int)
        table = table.drop_duplicates("Facility_Code").set_index("Facility_Code")
        table = table.reindex(columns=BUDGET_FIELDS)
        for name in BUDGET_FIELDS:
            table[name] = pd.to_numeric(table[name], errors="coerce")

        zero_budget = table["Primary_Care_Budget"].fillna(0) == 0
        if zero_budget.any():
            report.note(f"{int(zero_budget.sum())} budget rows without primary-care budget ignored")
        table = table[~zero_budget].copy()
        table["Geok_Old_Gsv"] = table["Geok_Old_Gsv"].fillna(0.0)
        table["Budget_Prior"] = table["Budget_Prior"].fillna(0.0)
        table["Total_Population"] = table["Total_Population"].fillna(0.0)

        before = len(merged)
        merged = merged.join(table, how="inner")
        dropped = before - len(merged)
        if dropped:
            logger.info("%d facilities without a budget leave the pipeline", dropped)
        report.dropped += dropped
        return merged
