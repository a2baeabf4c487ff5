"""Tests for demographic aggregation into pivots and the facility roster."""

import pandas as pd
import pytest

from phc_budget.demographics import MAX_AGE, DemographicAggregator, as_pivot
from phc_budget.policy import PolicyOverrides


def row(code, age, men=0, women=0, visit_men=0, visit_women=0, insured=0, **identity):
    return {
        "Facility_Code": code,
        "Age": age,
        "Men": men,
        "Women": women,
        "Visit_Men": visit_men,
        "Visit_Women": visit_women,
        "Insured": insured,
        "Name": identity.get("Name", f"FMC {code}"),
        "District_Code": identity.get("District_Code", 41702000000000000),
    }


@pytest.mark.fast
class TestDemographicAggregator:
    def test_bucket_99_holds_facility_total(self, no_overrides):
        current = pd.DataFrame(
            [
                row(10, 0, men=5, women=4),
                row(10, 1, men=7, women=6),
                row(10, 120, men=3, women=2),
            ]
        )
        tables = DemographicAggregator().run_aggregation(current, overrides=no_overrides)

        men = tables.male_population[10]
        assert men.loc[0] == 5
        assert men.loc[1] == 7
        assert men.loc[MAX_AGE] == 15
        assert tables.female_population[10].loc[MAX_AGE] == 12
        assert list(tables.male_population.index) == list(range(0, 100))

    def test_duplicate_rows_are_summed_and_negatives_clipped(self, no_overrides):
        current = pd.DataFrame(
            [
                row(10, 3, men=5, visit_men=8),
                row(10, 3, men=4, visit_men=-2),
                row(11, 3, women=-1, visit_women=3),
            ]
        )
        tables = DemographicAggregator().run_aggregation(current, overrides=no_overrides)

        assert tables.male_population.loc[3, 10] == 9
        assert tables.male_visits.loc[3, 10] == 8
        assert tables.female_population.loc[3, 11] == 0
        assert tables.report.anomalies == 2

    def test_merged_facility_is_recoded_and_identity_overridden(self):
        current = pd.DataFrame(
            [
                row(620391, 0, men=3, insured=2, Name="old name"),
                row(620371, 0, men=4, insured=1, Name="old name"),
            ]
        )
        tables = DemographicAggregator().run_aggregation(current, overrides=PolicyOverrides())

        assert list(tables.male_population.columns) == [620371]
        assert tables.male_population.loc[0, 620371] == 7
        roster = tables.roster.loc[620371]
        assert roster["Legacy_Code"] == 6820
        assert roster["Name"] == 'ЦСМ НООКАТСКОГО РАЙОНА "МЕДИГОС"'
        assert roster["Insured"] == 3

    def test_excluded_codes_are_dropped(self):
        current = pd.DataFrame(
            [row(10, 0, men=1), row(102412, 0, men=1), row(12, 0, men=1)]
        )
        legacy = pd.DataFrame({"Facility_Code": [10, 12], "Legacy_Code": [5001, 1322]})
        tables = DemographicAggregator().run_aggregation(
            current, legacy=legacy, overrides=PolicyOverrides()
        )

        assert list(tables.roster.index) == [10]
        assert tables.roster.loc[10, "Legacy_Code"] == 5001
        assert tables.report.dropped == 2

    def test_missing_columns_raise(self, no_overrides):
        with pytest.raises(ValueError, match="lack columns"):
            DemographicAggregator().run_aggregation(
                pd.DataFrame({"Facility_Code": [1], "Age": [0]}), overrides=no_overrides
            )

    def test_everything_excluded_raises_with_cause(self):
        current = pd.DataFrame([row(102412, 0, men=1)])
        with pytest.raises(ValueError, match="no facilities"):
            DemographicAggregator().run_aggregation(current, overrides=PolicyOverrides())


@pytest.mark.fast
def test_as_pivot_accepts_nested_mapping_with_string_keys():
    pivot = as_pivot({"0": {"100": 5, "101": 2}, "1": {"100": 3}})

    assert pivot.loc[0, 100] == 5.0
    assert pivot.loc[1, 101] == 0.0
    assert pivot.index.name == "Age"
    assert pivot.columns.name == "Facility_Code"
