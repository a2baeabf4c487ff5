"""
PHC Budget Pipeline: Age-Sex Coefficients
==========================================
Demand multipliers per age and sex, relative to the national average:

    coefficient[age, sex] = (visits[age, sex] / population[age, sex])
                            / (total_visits / total_population)

Ages with no population for a sex are left out of the result rather than
reported as 0, so missing data never reads as "no demand".
"""

import logging
from dataclasses import dataclass, field
from typing import Dict

from phc_budget.demographics import AGES, as_pivot
from phc_budget.errors import DivisionByZeroError
from phc_budget.report import StageReport

logger = logging.getLogger(__name__)


@dataclass
class AgeSexCoefficients:
    """Per-sex coefficient tables keyed by age."""

    male: Dict[int, float]
    female: Dict[int, float]
    visits_per_capita: float
    report: StageReport = field(default_factory=lambda: StageReport("age_sex"))

    @property
    def combined(self) -> Dict[int, Dict[str, float]]:
        combined = {}
        for age in AGES:
            entry = {}
            if age in self.male:
                entry["male"] = self.male[age]
            if age in self.female:
                entry["female"] = self.female[age]
            if entry:
                combined[age] = entry
        return combined

    def population_weighted_mean(self, male_population, female_population):
        """Mean coefficient weighted by population; 1.0 on the source data."""
        male_sums = as_pivot(male_population).sum(axis=1)
        female_sums = as_pivot(female_population).sum(axis=1)
        weighted = sum(male_sums.get(age, 0.0) * c for age, c in self.male.items())
        weighted += sum(female_sums.get(age, 0.0) * c for age, c in self.female.items())
        total = male_sums.sum() + female_sums.sum()
        if total == 0:
            raise DivisionByZeroError("total population is zero")
        return weighted / total


class AgeSexCoefficientCalculator:
    """Derives age-sex demand coefficients from population and visit pivots."""

    def run_calculation(
        self, male_population, female_population, male_visits, female_visits
    ):
        """
        Compute per-age, per-sex coefficients.

        Parameters
        ----------
        male_population, female_population, male_visits, female_visits
            Age x facility pivots (DataFrame or nested ``{age: {code: n}}``).

        Returns
        -------
        AgeSexCoefficients

        Raises
        ------
        DivisionByZeroError
            If the total population over both sexes is zero.
        """
        report = StageReport("age_sex")
        mpop = as_pivot(male_population)
        fpop = as_pivot(female_population)
        mvis = as_pivot(male_visits)
        fvis = as_pivot(female_visits)

        total_visits = mvis.to_numpy().sum() + fvis.to_numpy().sum()
        total_population = mpop.to_numpy().sum() + fpop.to_numpy().sum()
        if total_population == 0:
            report.note("total population is zero")
            report.log()
            raise DivisionByZeroError(
                "total population is zero; age-sex coefficients are undefined"
            )

        visits_per_capita = total_visits / total_population
        logger.info("Average visits per capita: %.4f", visits_per_capita)
        if visits_per_capita == 0:
            report.note("no visits recorded")
            report.log()
            raise DivisionByZeroError("total visits are zero; coefficients are undefined")

        male = self._coefficients(mpop, mvis, visits_per_capita)
        female = self._coefficients(fpop, fvis, visits_per_capita)

        omitted = (len(AGES) - len(male)) + (len(AGES) - len(female))
        if omitted:
            report.note(f"{omitted} age/sex cells omitted for zero population")
        report.processed = len(set(mpop.columns) | set(fpop.columns))
        report.log()
        logger.info(
            "Age-sex coefficients: %d male ages, %d female ages", len(male), len(female)
        )

        return AgeSexCoefficients(
            male=male,
            female=female,
            visits_per_capita=visits_per_capita,
            report=report,
        )

    @staticmethod
    def _coefficients(population, visits, visits_per_capita):
        pop_sums = population.sum(axis=1)
        visit_sums = visits.sum(axis=1)
        coefficients = {}
        for age in AGES:
            people = pop_sums.get(age, 0.0)
            if people > 0:
                coefficients[age] = float(visit_sums.get(age, 0.0) / people / visits_per_capita)
        return coefficients
