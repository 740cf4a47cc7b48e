"""Incentive calculation engine."""

from incentive_engine.calculators.eligibility import (
    EligibilityResult,
    calculate_prorata_factor,
    check_eligibility,
)
from incentive_engine.calculators.engine import CalculationResult, IncentiveCalculationEngine
from incentive_engine.calculators.slabs import (
    SlabCoverageError,
    SlabEvaluation,
    evaluate_graduated,
    evaluate_marginal,
    select_graduated_slab,
)

__all__ = [
    "CalculationResult",
    "EligibilityResult",
    "IncentiveCalculationEngine",
    "SlabCoverageError",
    "SlabEvaluation",
    "calculate_prorata_factor",
    "check_eligibility",
    "evaluate_graduated",
    "evaluate_marginal",
    "select_graduated_slab",
]
