"""Tests for the ordered district / transfer / budget merge."""

import pandas as pd
import pytest

from phc_budget.errors import MissingJoinKeyError
from phc_budget.geo_merge import GeoMerger, weighted_mean

DISTRICT_A = 41702000000000000
DISTRICT_B = 41703000000000000


@pytest.fixture
def workload():
    return pd.DataFrame(
        {
            "Facility_Code": [1, 2, 3, 4],
            "District_Code": pd.array([DISTRICT_A, DISTRICT_A, DISTRICT_B, DISTRICT_A], dtype="Int64"),
            "People": [100.0, 200.0, 300.0, 50.0],
            "Insured": [60.0, 120.0, 200.0, 30.0],
            "Adjusted_Workload_Coefficient": [1.0, 1.1, 0.9, 1.0],
        }
    ).set_index("Facility_Code")


@pytest.fixture
def districts():
    return pd.DataFrame(
        {
            "District_Code": [DISTRICT_A],
            "Altitude": [1.2],
            "Density": [40.0],
            "Rural": [1.1],
            "Smalltown": [1.0],
        }
    )


@pytest.fixture
def transfers():
    return pd.DataFrame(
        {
            "Facility_Code": [1, 2],
            "Origin_1": [2, 0],
            "Origin_2": [0, 0],
            "Destination": [0, 1],
        }
    )


@pytest.fixture
def budgets():
    # Facility 3 has a zero budget and facility 4 has no row at all
    return pd.DataFrame(
        {
            "Facility_Code": [1, 2, 3, 99],
            "Budget_Prior": [150.0, 260.0, 400.0, 10.0],
            "Primary_Care_Budget": [120.0, 210.0, 0.0, 8.0],
            "Geok_Old_Gsv": [1.0, 1.4, 1.2, 1.0],
            "Total_Population": [100, 300, 300, 5],
        }
    )


@pytest.fixture
def merged(workload, districts, transfers, budgets):
    with pytest.warns(MissingJoinKeyError):
        return GeoMerger().run_merge(workload, districts, transfers, budgets)


@pytest.mark.fast
class TestGeoMerger:
    def test_only_facilities_with_budget_survive(self, merged):
        assert list(merged.frame.index) == [1, 2]
        assert 3 not in merged.frame.index
        assert 4 not in merged.frame.index
        assert 99 not in merged.frame.index
        assert merged.report.dropped == 2

    def test_missing_district_gets_zero_geography(self, workload, districts, transfers, budgets):
        budgets.loc[budgets["Facility_Code"] == 3, "Primary_Care_Budget"] = 90.0
        with pytest.warns(MissingJoinKeyError, match="no district geography"):
            result = GeoMerger().run_merge(workload, districts, transfers, budgets)

        row = result.frame.loc[3]
        assert (row[["Altitude", "Density", "Rural", "Smalltown"]] == 0).all()
        assert row["Geok_Old_Ns"] == -2
        assert result.report.anomalies == 1

    def test_transfer_links(self, merged):
        frame = merged.frame
        assert frame.loc[1, "Origin_1"] == 2
        assert pd.isna(frame.loc[1, "Origin_2"])
        assert pd.isna(frame.loc[1, "Destination"])
        assert frame.loc[2, "Destination"] == 1
        assert pd.isna(frame.loc[2, "Origin_1"])

    def test_legacy_geographic_coefficients(self, merged):
        frame = merged.frame
        assert frame.loc[1, "Geok_Old_Ns"] == pytest.approx(1.2 + 1.0 + 1.1 - 2)
        assert frame.loc[2, "Geok_Old"] == pytest.approx(1.4 * 0.75 + 1.3 * 0.25)

    def test_weighted_averages_use_total_population(self, merged):
        assert merged.geok_old_gsv_w_avg == pytest.approx((1.0 * 100 + 1.4 * 300) / 400)
        assert merged.geok_old_ns_w_avg == pytest.approx(1.3)

    def test_no_budget_rows_raises(self, workload, districts, transfers, budgets):
        budgets["Primary_Care_Budget"] = 0.0
        with pytest.warns(MissingJoinKeyError), pytest.raises(ValueError, match="budget"):
            GeoMerger().run_merge(workload, districts, transfers, budgets)


@pytest.mark.fast
def test_weighted_mean_ignores_zero_weights():
    values = pd.Series([1.0, 3.0, 100.0])
    weights = pd.Series([1.0, 1.0, 0.0])
    assert weighted_mean(values, weights) == 2.0
