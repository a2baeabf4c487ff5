"""Tests for policy parameters, overrides and the error taxonomy."""

import warnings

import pytest

from phc_budget.errors import (
    BudgetPipelineError,
    ConfigurationRangeError,
    DivisionByZeroError,
    MissingJoinKeyError,
    RootFindingNonconvergenceError,
)
from phc_budget.policy import (
    DOWN_MAX_RANGE,
    UP_MAX_RANGE,
    PolicyOverrides,
    PolicyParameters,
    clamp_parameter,
)


@pytest.mark.fast
class TestClampParameter:
    def test_value_inside_band_passes_through(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            assert clamp_parameter("up_max", 1.1, UP_MAX_RANGE) == 1.1

    def test_above_band_goes_to_upper_bound(self):
        with pytest.warns(ConfigurationRangeError, match="up_max=1.3"):
            assert clamp_parameter("up_max", 1.30, UP_MAX_RANGE) == 1.25

    def test_below_band_goes_to_lower_bound(self):
        with pytest.warns(ConfigurationRangeError):
            assert clamp_parameter("down_max", 0.70, DOWN_MAX_RANGE) == 0.75

    def test_fallback_replaces_nearest_bound(self):
        with pytest.warns(ConfigurationRangeError):
            assert clamp_parameter("pct", -5, (0, 100), fallback=100) == 100.0


@pytest.mark.fast
class TestPolicyParameters:
    def test_defaults_are_clamped_into_band(self):
        with pytest.warns(ConfigurationRangeError):
            params = PolicyParameters()
        assert params.up_max == 1.25
        assert params.down_max == 0.75
        assert params.reassign_percentage == 0.25
        assert params.down_max_percentage == 10.0
        assert params.geok_variants == ["old", "1"]
        assert params.rebalance_variant == "1"

    def test_down_max_percentage_out_of_range_becomes_100(self):
        with pytest.warns(ConfigurationRangeError):
            params = PolicyParameters(up_max=1.2, down_max=0.8, down_max_percentage=150)
        assert params.down_max_percentage == 100.0

    def test_assignment_is_clamped(self):
        params = PolicyParameters(up_max=1.2, down_max=0.8)
        with pytest.warns(ConfigurationRangeError):
            params.up_max = 2.0
        assert params.up_max == 1.25

    def test_reassign_percentage_must_be_a_fraction(self):
        with pytest.raises(ValueError):
            PolicyParameters(up_max=1.2, down_max=0.8, reassign_percentage=25)


@pytest.mark.fast
class TestPolicyOverrides:
    def test_default_table(self):
        overrides = PolicyOverrides()
        assert overrides.no_narrow_specialist_code == 102272
        assert overrides.district_corrections[927181] == ("город Ош", 41721000000000000)
        assert overrides.facility_merges == {620391: 620371}
        assert overrides.identity_overrides[620371]["Legacy_Code"] == 6820
        assert 102412 in overrides.excluded_facility_codes
        assert overrides.excluded_legacy_codes == [1322]

    def test_empty_table_has_no_special_cases(self):
        overrides = PolicyOverrides.empty()
        assert overrides.no_narrow_specialist_code is None
        assert not overrides.district_corrections
        assert not overrides.facility_merges
        assert not overrides.excluded_facility_codes


@pytest.mark.fast
@pytest.mark.parametrize(
    "error",
    [ConfigurationRangeError, MissingJoinKeyError, RootFindingNonconvergenceError],
)
def test_recoverable_errors_are_warning_categories(error):
    assert issubclass(error, BudgetPipelineError)
    assert issubclass(error, UserWarning)


@pytest.mark.fast
def test_division_by_zero_is_catchable_as_builtin():
    with pytest.raises(ZeroDivisionError):
        raise DivisionByZeroError("total population is zero")
