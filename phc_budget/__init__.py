"""Primary health care budget pipeline: coefficients, simulation, rebalancing, replication."""

from phc_budget.pipeline import PipelineInputs, PipelineResult, run_pipeline
from phc_budget.policy import PolicyOverrides, PolicyParameters

__all__ = [
    "PipelineInputs",
    "PipelineResult",
    "PolicyOverrides",
    "PolicyParameters",
    "run_pipeline",
]
