"""
PHC Budget Pipeline: Orchestration
==================================
Runs the seven stages in order, each consuming the previous stage's output:

1. Demographic aggregation
2. Age-sex coefficients
3. Workload coefficients
4. Geographic / organizational merge
5. Budget simulation
6. Budget-neutral rebalancing
7. Budget replication
"""

import logging
from dataclasses import dataclass
from typing import Optional

import pandas as pd

from phc_budget.age_sex import AgeSexCoefficientCalculator, AgeSexCoefficients
from phc_budget.demographics import DemographicAggregator, DemographicTables
from phc_budget.geo_merge import GeoMerger, MergeResult
from phc_budget.policy import PolicyOverrides, PolicyParameters
from phc_budget.rebalancing import BudgetRebalancer, RebalanceResult
from phc_budget.replication import BudgetReplicator, ReplicationResult
from phc_budget.simulation import BudgetSimulator, SimulationResult
from phc_budget.workload import WorkloadCalculator, WorkloadResult

logger = logging.getLogger(__name__)


@dataclass
class PipelineInputs:
    """Raw tables the pipeline consumes, already loaded into DataFrames."""

    current: pd.DataFrame
    districts: pd.DataFrame
    transfers: pd.DataFrame
    budgets: pd.DataFrame
    legacy: Optional[pd.DataFrame] = None


@dataclass
class PipelineResult:
    demographics: DemographicTables
    coefficients: AgeSexCoefficients
    workload: WorkloadResult
    merge: MergeResult
    simulation: SimulationResult
    rebalance: RebalanceResult
    replication: ReplicationResult

    @property
    def reports(self):
        return [
            self.demographics.report,
            self.coefficients.report,
            self.workload.report,
            self.merge.report,
            self.simulation.report,
            self.rebalance.report,
            self.replication.report,
        ]


def run_pipeline(inputs, params=None, overrides=None):
    """
    Run every stage and collect the results.

    Parameters
    ----------
    inputs : PipelineInputs
    params : PolicyParameters, optional
    overrides : PolicyOverrides, optional

    Returns
    -------
    PipelineResult
    """
    params = params or PolicyParameters()
    overrides = overrides or PolicyOverrides()
    logger.info("Starting budget pipeline")

    demographics = DemographicAggregator().run_aggregation(
        inputs.current, inputs.legacy, overrides
    )
    coefficients = AgeSexCoefficientCalculator().run_calculation(
        demographics.male_population,
        demographics.female_population,
        demographics.male_visits,
        demographics.female_visits,
    )
    workload = WorkloadCalculator(params.up_max, params.down_max).run_calculation(
        demographics.male_population,
        demographics.female_population,
        coefficients,
        roster=demographics.roster,
        overrides=overrides,
    )
    merge = GeoMerger().run_merge(
        workload.frame, inputs.districts, inputs.transfers, inputs.budgets
    )

    variants = list(params.geok_variants)
    if params.rebalance_variant not in variants:
        variants.append(params.rebalance_variant)
    simulation = BudgetSimulator(params.reassign_percentage).run_simulation(
        merge.frame, variants, overrides
    )
    rebalance = BudgetRebalancer(params.down_max_percentage).run_rebalancing(
        simulation, params.rebalance_variant
    )
    replication = BudgetReplicator(
        params.narrow_specialist_pool,
        params.family_medicine_pool,
        params.insured_uninsured_ratio,
    ).run_replication(merge.frame, overrides)

    logger.info("Budget pipeline finished")
    return PipelineResult(
        demographics=demographics,
        coefficients=coefficients,
        workload=workload,
        merge=merge,
        simulation=simulation,
        rebalance=rebalance,
        replication=replication,
    )
