"""
PHC Budget Pipeline: Workload Coefficients
===========================================
Applies the age-sex coefficients to each facility's population to get a
demand-weighted head count, then clamps the resulting workload
coefficient into the policy band.

- **Workload**    : sum over ages and sexes of ``population x coefficient``
- **People**      : plain population over the same cells
- **Coefficient** : ``Workload / People`` (0 and flagged when People is 0)
- **Adjusted**    : ``max(down_max, min(up_max, Coefficient))``
"""

import logging
from dataclasses import dataclass, field
from typing import Dict

import pandas as pd

from phc_budget.demographics import AGES, as_pivot, to_codes
from phc_budget.policy import (
    DEFAULT_DOWN_MAX,
    DEFAULT_UP_MAX,
    DOWN_MAX_RANGE,
    UP_MAX_RANGE,
    PolicyOverrides,
    clamp_parameter,
)
from phc_budget.report import StageReport, require_rows

logger = logging.getLogger(__name__)

WORKLOAD_COLUMNS = [
    "Workload",
    "People",
    "Workload_Coefficient",
    "Adjusted_Workload_Coefficient",
    "Up_Max",
    "Down_Max",
    "Anomalous",
]
ROSTER_COLUMNS = [
    "Region",
    "Region_Code",
    "District",
    "District_Code",
    "Legacy_Code",
    "Name",
    "Full_Name",
    "Insured",
]


def clamp_coefficient(value, down_max, up_max):
    """Bound a workload coefficient (scalar or Series) to ``[down_max, up_max]``."""
    if isinstance(value, pd.Series):
        return value.clip(lower=down_max, upper=up_max)
    return max(down_max, min(up_max, value))


@dataclass
class WorkloadResult:
    """Per-facility workload table plus clamp statistics."""

    frame: pd.DataFrame
    up_max: float
    down_max: float
    clamp_counts: Dict[str, int] = field(default_factory=dict)
    report: StageReport = field(default_factory=lambda: StageReport("workload"))

    @property
    def anomalous_codes(self):
        return list(self.frame.index[self.frame["Anomalous"]])


class WorkloadCalculator:
    """Computes raw and clamped workload coefficients per facility."""

    def __init__(self, up_max=DEFAULT_UP_MAX, down_max=DEFAULT_DOWN_MAX):
        self.up_max = clamp_parameter("up_max", up_max, UP_MAX_RANGE)
        self.down_max = clamp_parameter("down_max", down_max, DOWN_MAX_RANGE)

    # -----------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------
    def run_calculation(
        self,
        male_population,
        female_population,
        coefficients,
        roster=None,
        overrides=None,
    ):
        """
        Build the workload table.

        Parameters
        ----------
        male_population, female_population
            Age x facility population pivots.
        coefficients : AgeSexCoefficients
            Output of the age-sex stage.
        roster : pandas.DataFrame, optional
            Facility identity indexed by ``Facility_Code``.
        overrides : PolicyOverrides, optional
            Supplies hand-corrected district codes.

        Returns
        -------
        WorkloadResult
        """
        overrides = overrides or PolicyOverrides()
        report = StageReport("workload")
        logger.info(
            "Calculating workload coefficients (up_max=%s, down_max=%s)",
            self.up_max,
            self.down_max,
        )

        mpop = self._restrict(as_pivot(male_population))
        fpop = self._restrict(as_pivot(female_population))
        codes = sorted(set(mpop.columns) | set(fpop.columns))
        mpop = mpop.reindex(columns=codes, fill_value=0.0)
        fpop = fpop.reindex(columns=codes, fill_value=0.0)
        logger.info("Found %d facility codes", len(codes))

        # 1. Demand-weighted and plain head counts -------------------------
        mweights = pd.Series(coefficients.male, dtype=float).reindex(mpop.index)
        fweights = pd.Series(coefficients.female, dtype=float).reindex(fpop.index)
        # Ages without a coefficient contribute to neither sum
        mpop = mpop[mweights.notna()]
        fpop = fpop[fweights.notna()]

        workload = mpop.mul(mweights.dropna(), axis=0).sum() + fpop.mul(
            fweights.dropna(), axis=0
        ).sum()
        people = mpop.sum() + fpop.sum()

        frame = pd.DataFrame({"Workload": workload, "People": people})
        frame = frame.reindex(codes, fill_value=0.0)
        frame.index.name = "Facility_Code"

        # 2. Raw coefficient; zero population is flagged, not fatal --------
        frame["Anomalous"] = frame["People"] <= 0
        frame["Workload_Coefficient"] = (
            frame["Workload"] / frame["People"].where(~frame["Anomalous"])
        ).fillna(0.0)
        for code in frame.index[frame["Anomalous"]]:
            logger.warning("Facility %s has zero population; workload coefficient set to 0", code)
        report.anomalies = int(frame["Anomalous"].sum())

        # 3. Policy band --------------------------------------------------
        frame["Up_Max"] = self.up_max
        frame["Down_Max"] = self.down_max
        frame["Adjusted_Workload_Coefficient"] = clamp_coefficient(
            frame["Workload_Coefficient"], self.down_max, self.up_max
        )
        clamp_counts = {
            "raised": int((frame["Adjusted_Workload_Coefficient"] > frame["Workload_Coefficient"]).sum()),
            "lowered": int((frame["Adjusted_Workload_Coefficient"] < frame["Workload_Coefficient"]).sum()),
        }
        clamp_counts["unchanged"] = len(frame) - clamp_counts["raised"] - clamp_counts["lowered"]
        report.note(
            "clamped: {raised} raised, {lowered} lowered, {unchanged} unchanged".format(**clamp_counts)
        )

        # 4. Facility identity ------------------------------------------
        frame = self._attach_roster(frame[WORKLOAD_COLUMNS].copy(), roster, overrides, report)

        require_rows(frame, report, "no facility codes in the population pivots")
        report.processed = len(frame)
        report.log()

        return WorkloadResult(
            frame=frame,
            up_max=self.up_max,
            down_max=self.down_max,
            clamp_counts=clamp_counts,
            report=report,
        )

    # -----------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------
    @staticmethod
    def _restrict(pivot):
        return pivot.reindex([age for age in pivot.index if age in AGES])

    @staticmethod
    def _attach_roster(frame, roster, overrides, report):
        if roster is None:
            roster = pd.DataFrame(columns=ROSTER_COLUMNS, index=pd.Index([], dtype=int))

        identity = roster.reindex(columns=ROSTER_COLUMNS)
        identity.index = identity.index.astype(int)
        identity["District_Code"] = to_codes(identity["District_Code"])
        unnamed = frame.index.difference(identity.index)
        if len(unnamed):
            logger.warning(
                "%d facilities missing from the roster keep numbers but lack names: %s",
                len(unnamed),
                list(unnamed),
            )
            report.note(f"{len(unnamed)} facilities missing from roster")

        frame = frame.join(identity, how="left")
        frame["Insured"] = pd.to_numeric(frame["Insured"], errors="coerce").fillna(0.0)
        frame["District_Code"] = to_codes(frame["District_Code"])

        for code, (district, district_code) in overrides.district_corrections.items():
            if code in frame.index:
                frame["District"] = frame["District"].astype(object)
                frame.at[code, "District"] = district
                frame.at[code, "District_Code"] = district_code
                report.note(f"district corrected for facility {code}")
        return frame
