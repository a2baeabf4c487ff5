"""
PHC Budget Pipeline: Budget-Neutral Rebalancing
===============================================
Guarantees every facility at least ``(1 - floor)`` of its prior-year budget
and pays for the top-ups by capping increases at ``(1 + up_max)``.  The cap
is the root of the neutrality function

    g(u) = sum_i max(0, new_i - (1 + u) * old_i) - shortfall_total

which is non-increasing in ``u``.  The root is bracketed on ``[0, 2 * floor]``
and refined with Brent's method; the bracket is doubled up to ten times, and
if no sign change turns up a coarse scan picks the best cap instead.
"""

import logging
import warnings
from dataclasses import dataclass, field

import numpy as np
import pandas as pd
from scipy.optimize import brentq

from phc_budget.errors import RootFindingNonconvergenceError
from phc_budget.policy import (
    DEFAULT_DOWN_MAX_PERCENTAGE,
    DEFAULT_REBALANCE_VARIANT,
    DOWN_MAX_PERCENTAGE_FALLBACK,
    DOWN_MAX_PERCENTAGE_RANGE,
    clamp_parameter,
)
from phc_budget.report import StageReport, require_rows

logger = logging.getLogger(__name__)

BRACKET_EXPANSIONS = 10
SOLVER_XTOL = 1e-12
SOLVER_MAXITER = 100
SCAN_STEP = 0.1
NEUTRALITY_ATOL = 1e-6
EMPTY_BRACKET_UPPER = 1.0


@dataclass
class RebalanceResult:
    """Solved cap plus the per-facility rebalanced budgets."""

    up_max: float
    down_max_percentage: float
    total_budget: float
    shortfall_total: float
    excess_total: float
    frame: pd.DataFrame
    approximate: bool = False
    report: StageReport = field(default_factory=lambda: StageReport("rebalancing"))

    @property
    def up_max_percentage(self):
        return self.up_max * 100

    @property
    def is_neutral(self):
        return bool(
            np.isclose(self.excess_total, self.shortfall_total, rtol=1e-9, atol=NEUTRALITY_ATOL)
        )


class BudgetRebalancer:
    """Finds the budget-neutral increase cap for one simulated variant."""

    def __init__(self, down_max_percentage=DEFAULT_DOWN_MAX_PERCENTAGE):
        self.down_max_percentage = clamp_parameter(
            "down_max_percentage",
            down_max_percentage,
            DOWN_MAX_PERCENTAGE_RANGE,
            fallback=DOWN_MAX_PERCENTAGE_FALLBACK,
        )
        self.down_max = self.down_max_percentage / 100

    # -----------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------
    def run_rebalancing(self, simulation, variant=DEFAULT_REBALANCE_VARIANT):
        """
        Rebalance the budgets of one simulated variant.

        Parameters
        ----------
        simulation : SimulationResult
            Output of :class:`~phc_budget.simulation.BudgetSimulator`.
        variant : str
            Geographic coefficient variant whose ``New_Budget`` is rebalanced.

        Returns
        -------
        RebalanceResult
        """
        budgets = simulation.variant(variant)
        frame = pd.DataFrame(
            {
                "Budget_Old": simulation.frame["Budget_Old"],
                "Budget_New": budgets["New_Budget"],
            }
        )
        logger.info("Rebalancing variant geok_%s", variant)
        return self.rebalance(frame)

    def rebalance(self, frame):
        """
        Rebalance a ``Budget_Old`` / ``Budget_New`` table (currency units).
        """
        report = StageReport("rebalancing")
        require_rows(frame, report, "no budgets to rebalance")
        table = frame[["Budget_Old", "Budget_New"]].astype(float).copy()
        old = table["Budget_Old"].to_numpy()
        new = table["Budget_New"].to_numpy()

        # 1. Floor ------------------------------------------------------
        shortfall = np.maximum(0.0, (1 - self.down_max) * old - new)
        shortfall_total = float(shortfall.sum())
        logger.info(
            "Floor %.1f%%: %d facilities short by %.2f in total",
            self.down_max_percentage,
            int((shortfall > 0).sum()),
            shortfall_total,
        )

        # 2. Cap --------------------------------------------------------
        up_max, approximate = self.solve_up_max(old, new, shortfall_total)
        if approximate:
            report.anomalies += 1
            report.note("up_max approximated by linear scan")

        # 3. Adjusted budgets -------------------------------------------
        excess = np.maximum(0.0, new - (1 + up_max) * old)
        table["Impact"] = (new / old - 1) * 100
        table["Shortfall"] = shortfall
        table["Excess"] = excess
        table["Budget_New_Adj"] = new - excess + shortfall
        table["Impact_Adj"] = (table["Budget_New_Adj"] / table["Budget_Old"] - 1) * 100

        excess_total = float(excess.sum())
        logger.info("Budget-neutral up_max: %.4f%%", up_max * 100)
        logger.info("Excess %.2f vs shortfall %.2f", excess_total, shortfall_total)
        report.processed = len(table)
        report.note(f"up_max={up_max:.6f} ({'approximate' if approximate else 'exact'})")
        report.log()

        return RebalanceResult(
            up_max=up_max,
            down_max_percentage=self.down_max_percentage,
            total_budget=float(old.sum()),
            shortfall_total=shortfall_total,
            excess_total=excess_total,
            frame=table,
            approximate=approximate,
            report=report,
        )

    def solve_up_max(self, old, new, shortfall_total):
        """
        Smallest ``u >= 0`` with ``sum(max(0, new - (1 + u) * old)) == shortfall_total``.

        Returns
        -------
        tuple of (float, bool)
            The cap and whether it is only an approximation.
        """
        old = np.asarray(old, dtype=float)
        new = np.asarray(new, dtype=float)

        if shortfall_total == 0:
            # Smallest cap that claws back nothing
            ratios = new[old > 0] / old[old > 0]
            return (max(0.0, float(ratios.max()) - 1) if len(ratios) else 0.0), False

        def neutrality(u):
            return float(np.maximum(0.0, new - (1 + u) * old).sum()) - shortfall_total

        lower = 0.0
        upper = 2 * self.down_max if self.down_max > 0 else EMPTY_BRACKET_UPPER
        g_lower = neutrality(lower)
        if g_lower == 0:
            return lower, False

        for attempt in range(BRACKET_EXPANSIONS + 1):
            g_upper = neutrality(upper)
            if g_upper == 0:
                return upper, False
            if np.sign(g_lower) != np.sign(g_upper):
                try:
                    root = brentq(
                        neutrality, lower, upper, xtol=SOLVER_XTOL, maxiter=SOLVER_MAXITER
                    )
                    return float(root), False
                except (ValueError, RuntimeError) as exc:
                    logger.warning("Brent solver failed on [%s, %s]: %s", lower, upper, exc)
                    break
            if attempt < BRACKET_EXPANSIONS:
                upper *= 2
                logger.debug("No sign change; widening bracket to [0, %s]", upper)

        return self._scan(neutrality, upper), True

    @staticmethod
    def _scan(neutrality, upper):
        grid = np.arange(0.0, upper + SCAN_STEP / 2, SCAN_STEP)
        residuals = np.abs([neutrality(u) for u in grid])
        best = float(grid[int(np.argmin(residuals))])
        message = (
            f"no sign change for the neutrality function on [0, {upper}]; "
            f"up_max approximated as {best:.1f} by linear scan "
            f"(residual {residuals.min():.2f})"
        )
        logger.warning(message)
        warnings.warn(RootFindingNonconvergenceError(message), stacklevel=4)
        return best
