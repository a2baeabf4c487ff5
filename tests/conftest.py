"""
Shared fixtures for the PHC budget pipeline tests
=================================================

Small hand-built tables whose expected results can be checked by hand.
"""

import pandas as pd
import pytest

from phc_budget.demographics import DemographicAggregator
from phc_budget.pipeline import PipelineInputs
from phc_budget.policy import PolicyOverrides


@pytest.fixture
def no_overrides():
    return PolicyOverrides.empty()


@pytest.fixture
def merged_frame():
    """Four facilities as they leave the geographic merge."""
    frame = pd.DataFrame(
        {
            "Facility_Code": [1, 2, 3, 4],
            "Region": ["North", "North", "South", "South"],
            "Name": ["FMC 1", "FMC 2", "FMC 3", "FMC 4"],
            "People": [100.0, 200.0, 300.0, 400.0],
            "Insured": [80.0, 150.0, 200.0, 350.0],
            "Adjusted_Workload_Coefficient": [1.0, 1.1, 0.9, 1.2],
            "Altitude": [1.0, 1.2, 1.0, 1.4],
            "Density": [300.0, 40.0, 80.0, 20.0],
            "Rural": [1.0, 1.1, 1.0, 1.2],
            "Smalltown": [1.0, 1.0, 1.0, 1.1],
            "Budget_Prior": [120.0, 300.0, 330.0, 600.0],
            "Primary_Care_Budget": [100.0, 250.0, 280.0, 500.0],
            "Geok_Old_Gsv": [1.0, 1.2, 1.1, 1.4],
            "Total_Population": [100.0, 200.0, 300.0, 400.0],
        }
    ).set_index("Facility_Code")
    frame["Origin_1"] = pd.array([2, None, None, None], dtype="Int64")
    frame["Origin_2"] = pd.array([None, None, None, None], dtype="Int64")
    frame["Destination"] = pd.array([None, 1, None, None], dtype="Int64")
    frame["Geok_Old_Ns"] = frame["Altitude"] + frame["Smalltown"] + frame["Rural"] - 2
    frame["Geok_Old"] = frame["Geok_Old_Gsv"] * 0.75 + frame["Geok_Old_Ns"] * 0.25
    return frame


def demographic_rows(codes, ages=range(0, 5)):
    """Current-year rows with deterministic, facility-specific counts."""
    rows = []
    for i, code in enumerate(codes):
        for age in ages:
            men = 10 + 3 * i + age
            women = 12 + 2 * i + age
            rows.append(
                {
                    "Facility_Code": code,
                    "Age": age,
                    "Region": "Chui",
                    "Region_Code": 4170800000000000,
                    "District": f"District {i % 2}",
                    "District_Code": 41708000000000000 + (i % 2) * 1000000000000,
                    "Name": f"FMC {code}",
                    "Full_Name": f"Family Medicine Centre {code}",
                    "Men": men,
                    "Women": women,
                    "Visit_Men": men * (3 if age == 0 else 1 + i % 3),
                    "Visit_Women": women * (2 if age < 2 else 1 + (i + 1) % 3),
                    "Insured": (men + women) // 2,
                }
            )
    return pd.DataFrame(rows)


@pytest.fixture
def pipeline_inputs():
    """Five facilities in two districts; facility 505 has no budget row."""
    codes = [501, 502, 503, 504, 505]
    current = demographic_rows(codes)
    districts = pd.DataFrame(
        {
            "District_Code": [41708000000000000, 41709000000000000],
            "Altitude": [1.0, 1.3],
            "Density": [120.0, 30.0],
            "Rural": [1.0, 1.2],
            "Smalltown": [1.0, 1.1],
        }
    )
    transfers = pd.DataFrame(
        {
            "Facility_Code": [501, 502],
            "Origin_1": [502, 0],
            "Origin_2": [0, 0],
            "Destination": [0, 501],
        }
    )
    budgets = pd.DataFrame(
        {
            "Facility_Code": [501, 502, 503, 504],
            "Budget_Prior": [300.0, 280.0, 350.0, 260.0],
            "Primary_Care_Budget": [250.0, 240.0, 300.0, 210.0],
            "Geok_Old_Gsv": [1.0, 1.3, 1.1, 1.2],
            "Total_Population": [150, 170, 190, 210],
        }
    )
    legacy = pd.DataFrame({"Facility_Code": codes, "Legacy_Code": [7001, 7002, 7003, 7004, 7005]})
    return PipelineInputs(
        current=current,
        districts=districts,
        transfers=transfers,
        budgets=budgets,
        legacy=legacy,
    )


@pytest.fixture
def demographic_tables(no_overrides):
    """Aggregated pivots for three facilities; no men recorded at age 7."""
    current = demographic_rows([201, 202, 203], ages=range(0, 10))
    current.loc[current["Age"] == 7, ["Men", "Visit_Men"]] = 0
    return DemographicAggregator().run_aggregation(current, overrides=no_overrides)
