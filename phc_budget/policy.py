"""
PHC Budget Pipeline: Policy Constants & Parameters
==================================================
Fixed financing-policy constants for the per-capita primary-care budget
formula, plus the two configuration models every stage receives:

- ``PolicyParameters`` : the few bounded knobs an operator may turn
  (workload band, rebalancing floor, variants to simulate).  Values
  outside their valid band are clamped, never rejected.
- ``PolicyOverrides``  : the table of special-cased facility codes.
  Kept as data so the override set can be audited and tested on its own.
"""

import logging
import warnings
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from phc_budget.errors import ConfigurationRangeError

logger = logging.getLogger(__name__)

# Workload coefficient band
DEFAULT_UP_MAX = 1.30
DEFAULT_DOWN_MAX = 0.70
UP_MAX_RANGE = (1.0, 1.25)
DOWN_MAX_RANGE = (0.75, 1.0)

# Share of a facility's budget moved along narrow-specialist transfer links
REASSIGN_PERCENTAGE = 0.25

# Rebalancing floor, in percent of the prior-year budget
DEFAULT_DOWN_MAX_PERCENTAGE = 10.0
DOWN_MAX_PERCENTAGE_RANGE = (0.0, 100.0)
DOWN_MAX_PERCENTAGE_FALLBACK = 100.0

# Historical funding pools (currency units) used to replicate 2023 budgets
NARROW_SPECIALIST_POOL = 1_206_684_977
FAMILY_MEDICINE_POOL = 3_308_552_674
INSURED_UNINSURED_RATIO = 3.02

# Legacy geographic coefficient blend
LEGACY_GSV_WEIGHT = 0.75
LEGACY_NS_WEIGHT = 0.25

# geok_3 step function
DENSITY_THRESHOLD = 57
LOW_DENSITY_COEFFICIENT = 1.3

# Budget tables are stated in thousands of currency units
BUDGET_UNIT = 1000

GEOK_VARIANTS = ("old", "1", "2", "3")
DEFAULT_GEOK_VARIANTS = ["old", "1"]
DEFAULT_REBALANCE_VARIANT = "1"


def clamp_parameter(name, value, band, fallback=None):
    """
    Return ``value`` if it lies inside ``band``, otherwise a replacement.

    The replacement is ``fallback`` when given, else the nearest bound.
    Every replacement is logged and issued as a
    :class:`~phc_budget.errors.ConfigurationRangeError` warning.
    """
    low, high = band
    value = float(value)
    if low <= value <= high:
        return value

    if fallback is None:
        fallback = high if value > high else low
    message = (
        f"{name}={value} is outside the valid range [{low}, {high}]; "
        f"using {fallback}"
    )
    logger.warning(message)
    warnings.warn(ConfigurationRangeError(message), stacklevel=3)
    return float(fallback)


class PolicyParameters(BaseModel):
    """Bounded policy knobs for one pipeline run."""

    model_config = ConfigDict(validate_assignment=True)

    up_max: float = Field(default=DEFAULT_UP_MAX, validate_default=True)
    down_max: float = Field(default=DEFAULT_DOWN_MAX, validate_default=True)
    reassign_percentage: float = Field(default=REASSIGN_PERCENTAGE, ge=0, le=1)
    down_max_percentage: float = Field(default=DEFAULT_DOWN_MAX_PERCENTAGE)
    insured_uninsured_ratio: float = Field(default=INSURED_UNINSURED_RATIO, gt=0)
    narrow_specialist_pool: float = Field(default=NARROW_SPECIALIST_POOL, ge=0)
    family_medicine_pool: float = Field(default=FAMILY_MEDICINE_POOL, ge=0)
    geok_variants: List[str] = Field(default_factory=lambda: list(DEFAULT_GEOK_VARIANTS))
    rebalance_variant: str = DEFAULT_REBALANCE_VARIANT

    @field_validator("up_max", mode="before")
    @classmethod
    def clamp_up_max(cls, value):
        return clamp_parameter("up_max", value, UP_MAX_RANGE)

    @field_validator("down_max", mode="before")
    @classmethod
    def clamp_down_max(cls, value):
        return clamp_parameter("down_max", value, DOWN_MAX_RANGE)

    @field_validator("down_max_percentage", mode="before")
    @classmethod
    def clamp_down_max_percentage(cls, value):
        return clamp_parameter(
            "down_max_percentage",
            value,
            DOWN_MAX_PERCENTAGE_RANGE,
            fallback=DOWN_MAX_PERCENTAGE_FALLBACK,
        )


class PolicyOverrides(BaseModel):
    """
    Facility codes that the financing rules treat specially.

    Attributes
    ----------
    no_narrow_specialist_code : int or None
        Facility without narrow specialists (the railway clinic).  Its
        adjusted workload is scaled by ``1 - reassign_percentage`` before
        simulation and its narrow-specialist population is zero when
        replicating historical budgets.
    district_corrections : dict
        Facility code -> (district name, district code) applied when the
        roster is joined onto workload results.
    facility_merges : dict
        Old facility code -> surviving facility code.
    identity_overrides : dict
        Facility code -> identity fields replaced after aggregation.
    excluded_facility_codes, excluded_legacy_codes : list
        Facilities not funded by the insurance fund.
    """

    no_narrow_specialist_code: Optional[int] = 102272
    district_corrections: Dict[int, Tuple[str, int]] = Field(
        default_factory=lambda: {927181: ("город Ош", 41721000000000000)}
    )
    facility_merges: Dict[int, int] = Field(default_factory=lambda: {620391: 620371})
    identity_overrides: Dict[int, Dict[str, Any]] = Field(
        default_factory=lambda: {
            620371: {
                "Region": "Ошская область",
                "District": "Ноокатский район",
                "Region_Code": 4170600000000000,
                "District_Code": 41706242000000000,
                "Legacy_Code": 6820,
                "Name": 'ЦСМ НООКАТСКОГО РАЙОНА "МЕДИГОС"',
            }
        }
    )
    excluded_facility_codes: List[int] = Field(default_factory=lambda: [102412, 0])
    excluded_legacy_codes: List[int] = Field(default_factory=lambda: [1322])

    @classmethod
    def empty(cls):
        """Overrides table with no special cases at all."""
        return cls(
            no_narrow_specialist_code=None,
            district_corrections={},
            facility_merges={},
            identity_overrides={},
            excluded_facility_codes=[],
            excluded_legacy_codes=[],
        )
