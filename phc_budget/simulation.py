"""
PHC Budget Pipeline: Budget Simulation Engine
=============================================
Allocates the prior-year primary-care budget across facilities with a
per-capita formula, once per candidate geographic coefficient, and moves
part of the narrow-specialist budget along transfer links.

Formula (per variant ``v``)
---------------------------
- **Rate**     : ``total_budget / sum(People x geok_v x Adjusted_Workload)``
- **Raw**      : ``People x Rate x geok_v x Adjusted_Workload``
- **Add 1/2**  : ``Raw[origin] x reassign_percentage`` per origin link
- **Subtract** : ``Raw[self] x reassign_percentage`` if a destination link exists
- **New**      : ``Raw - Subtract + Add_1 + Add_2``
- **Impact**   : ``(New / prior-year budget - 1) x 100``

Geographic coefficient variants
-------------------------------
- ``old`` : legacy blended coefficient from the merge stage
- ``1``   : ``altitude + rural - 1``
- ``2``   : ``altitude``
- ``3``   : ``1.3`` where density is below 57, else ``1.0``
"""

import logging
import warnings
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict

import numpy as np
import pandas as pd

from phc_budget.errors import DivisionByZeroError, MissingJoinKeyError
from phc_budget.geo_merge import LINK_FIELDS
from phc_budget.policy import (
    BUDGET_UNIT,
    DEFAULT_GEOK_VARIANTS,
    DENSITY_THRESHOLD,
    GEOK_VARIANTS,
    LOW_DENSITY_COEFFICIENT,
    REASSIGN_PERCENTAGE,
    PolicyOverrides,
)
from phc_budget.report import StageReport, require_rows

logger = logging.getLogger(__name__)

BUDGET_COLUMNS = ["Raw_Budget", "Add_1", "Add_2", "Subtract", "New_Budget", "Impact"]
BASE_COLUMNS = [
    "Region",
    "Name",
    "People",
    "Adjusted_Workload_Coefficient",
    "Primary_Care_Budget",
    "Altitude",
    "Rural",
    "Density",
] + LINK_FIELDS
CONSERVATION_RTOL = 1e-6


def geok_column(variant):
    """Column holding the geographic coefficient for ``variant``."""
    return f"Geok_{str(variant).capitalize()}"


@dataclass(frozen=True)
class VariantBudget:
    """Budget figures for one facility under one geographic coefficient."""

    raw_budget: float
    add_1: float
    add_2: float
    subtract: float
    new_budget: float
    impact: float


@dataclass
class SimulationResult:
    """Base table plus one budget table per successfully simulated variant."""

    frame: pd.DataFrame
    budgets: Dict[str, pd.DataFrame]
    per_capita_rates: Dict[str, float]
    total_budget: float
    failures: Dict[str, str] = field(default_factory=dict)
    report: StageReport = field(default_factory=lambda: StageReport("simulation"))

    def variant(self, name):
        """Budget table for ``name``; ``KeyError`` if it failed or was not run."""
        name = str(name)
        if name in self.failures:
            raise KeyError(f"variant {name!r} failed: {self.failures[name]}")
        if name not in self.budgets:
            raise KeyError(f"variant {name!r} was not simulated")
        return self.budgets[name]

    def by_facility(self):
        """Nested ``{facility_code: {variant: VariantBudget}}`` view."""
        nested = {int(code): {} for code in self.frame.index}
        for name, table in self.budgets.items():
            for code, row in table[BUDGET_COLUMNS].iterrows():
                nested[int(code)][name] = VariantBudget(*(float(v) for v in row))
        return nested


class BudgetSimulator:
    """Simulates per-facility budgets for several geographic coefficients."""

    def __init__(self, reassign_percentage=REASSIGN_PERCENTAGE):
        self.reassign_percentage = float(reassign_percentage)

    # -----------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------
    def run_simulation(self, merged, variants=None, overrides=None):
        """
        Simulate budgets for every requested variant.

        Parameters
        ----------
        merged : pandas.DataFrame
            ``MergeResult.frame`` indexed by ``Facility_Code``.
        variants : list of str, optional
            Geographic coefficient names; defaults to ``["old", "1"]``.
        overrides : PolicyOverrides, optional
            Supplies the facility whose workload is scaled down.

        Returns
        -------
        SimulationResult
            A variant that cannot be computed is listed in ``failures``;
            the others are unaffected.
        """
        overrides = overrides or PolicyOverrides()
        variants = [str(v) for v in (variants or DEFAULT_GEOK_VARIANTS)]
        report = StageReport("simulation")
        require_rows(merged, report, "merged table is empty")
        logger.info("Simulating budgets for %d facilities, variants %s", len(merged), variants)

        base = merged.reindex(columns=BASE_COLUMNS + ["Geok_Old"]).copy()
        base["Budget_Old"] = base["Primary_Care_Budget"] * BUDGET_UNIT

        # 1. Facility without narrow specialists -------------------------
        code = overrides.no_narrow_specialist_code
        if code is not None and code in base.index:
            base.at[code, "Adjusted_Workload_Coefficient"] *= 1 - self.reassign_percentage
            logger.info(
                "Workload of facility %s scaled to %.4f",
                code,
                base.at[code, "Adjusted_Workload_Coefficient"],
            )
            report.note(f"workload of facility {code} scaled by {1 - self.reassign_percentage}")

        # 2. Geographic coefficients --------------------------------------
        base["Geok_Old"] = base["Geok_Old"].fillna(0.0)
        base["Geok_1"] = base["Altitude"] + base["Rural"] - 1
        base["Geok_2"] = base["Altitude"]
        base["Geok_3"] = np.where(
            base["Density"] < DENSITY_THRESHOLD, LOW_DENSITY_COEFFICIENT, 1.0
        )

        report.anomalies += self._check_links(base, report)

        # 3. Variant loop -------------------------------------------------
        total_budget = float(base["Budget_Old"].sum())
        budgets, rates, failures = {}, {}, {}
        for variant in variants:
            try:
                budgets[variant], rates[variant] = self._simulate_variant(
                    base, variant, total_budget
                )
            except (DivisionByZeroError, KeyError) as exc:
                logger.error("Variant %s failed: %s", variant, exc)
                failures[variant] = str(exc)
                report.note(f"variant {variant} failed: {exc}")

        report.processed = len(base)
        report.log()
        return SimulationResult(
            frame=base,
            budgets=budgets,
            per_capita_rates=rates,
            total_budget=total_budget,
            failures=failures,
            report=report,
        )

    # -----------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------
    def _simulate_variant(self, base, variant, total_budget):
        if variant not in GEOK_VARIANTS:
            raise KeyError(f"unknown geographic coefficient variant {variant!r}")
        logger.info("Running simulation for geok_%s", variant)

        geok = base[geok_column(variant)]
        weights = base["People"] * geok * base["Adjusted_Workload_Coefficient"]
        total_weighted = float(weights.sum())
        if total_weighted == 0:
            raise DivisionByZeroError(
                f"total weighted population is zero for geok_{variant}"
            )

        rate = total_budget / total_weighted
        raw = base["People"] * rate * geok * base["Adjusted_Workload_Coefficient"]
        logger.info("Total budget: %.2f", total_budget)
        logger.info("Per-capita rate: %.2f", rate)
        if not np.isclose(raw.sum(), total_budget, rtol=CONSERVATION_RTOL):
            logger.warning(
                "Raw budgets sum to %.2f, expected %.2f", raw.sum(), total_budget
            )

        # Corrections read only this snapshot of raw budgets
        raw_lookup = MappingProxyType({int(k): float(v) for k, v in raw.items()})
        pct = self.reassign_percentage

        table = pd.DataFrame(index=base.index)
        table["Raw_Budget"] = raw
        table["Add_1"] = self._origin_shares(base["Origin_1"], raw_lookup, pct)
        table["Add_2"] = self._origin_shares(base["Origin_2"], raw_lookup, pct)
        table["Subtract"] = np.where(base["Destination"].notna(), raw * pct, 0.0)
        table["New_Budget"] = (
            table["Raw_Budget"] - table["Subtract"] + table["Add_1"] + table["Add_2"]
        )
        table["Impact"] = (table["New_Budget"] / base["Budget_Old"] - 1) * 100

        logger.info("Transfer top-up per person: %.2f", rate * pct)
        logger.info("Distributed budget: %.2f", table["New_Budget"].sum())
        return table, rate

    @staticmethod
    def _origin_shares(links, raw_lookup, pct):
        shares = pd.Series(0.0, index=links.index)
        for code, origin in links.dropna().items():
            shares.at[code] = raw_lookup.get(int(origin), 0.0) * pct
        return shares

    @staticmethod
    def _check_links(base, report):
        dangling = 0
        for name in ("Origin_1", "Origin_2"):
            links = base[name].dropna()
            unknown = links[~links.isin(base.index)]
            if len(unknown):
                message = (
                    f"{len(unknown)} {name} links point outside the merged roster "
                    f"and add nothing: {dict(unknown.astype(int))}"
                )
                logger.warning(message)
                warnings.warn(MissingJoinKeyError(message), stacklevel=4)
                report.note(message)
                dangling += len(unknown)
        return dangling
