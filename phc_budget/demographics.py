"""
PHC Budget Pipeline: Demographic Aggregation
=============================================
Turns raw per-facility, per-age population and visit rows into the four
age x facility pivots every later stage consumes, plus the facility roster.

Pivot layout
------------
- index   : ``Age`` 0..99 (ages above 99 fold into 99)
- columns : ``Facility_Code``
- bucket 99 is then overwritten with the facility total over buckets 0..99
"""

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from phc_budget.policy import PolicyOverrides
from phc_budget.report import StageReport, require_rows

logger = logging.getLogger(__name__)

MAX_AGE = 99
AGES = list(range(0, MAX_AGE + 1))

COUNT_COLUMNS = ["Men", "Women", "Visit_Men", "Visit_Women", "Insured"]
IDENTITY_COLUMNS = [
    "Region",
    "Region_Code",
    "District",
    "District_Code",
    "Name",
    "Full_Name",
]
REQUIRED_COLUMNS = ["Facility_Code", "Age", "Men", "Women", "Visit_Men", "Visit_Women"]

PIVOT_FIELDS = {
    "male_population": "Men",
    "female_population": "Women",
    "male_visits": "Visit_Men",
    "female_visits": "Visit_Women",
}


def as_pivot(data):
    """
    Coerce an age x facility table into a float DataFrame.

    Accepts a DataFrame already in pivot layout or a nested mapping
    ``{age: {facility_code: count}}`` (keys may be strings, as they are
    after a JSON round-trip).  Missing cells become 0.
    """
    if isinstance(data, pd.DataFrame):
        pivot = data.copy()
    else:
        pivot = pd.DataFrame.from_dict(
            {int(age): {int(code): value for code, value in row.items()}
             for age, row in data.items()},
            orient="index",
        )
    pivot.index = pivot.index.astype(int)
    pivot.columns = pivot.columns.astype(int)
    pivot.index.name = "Age"
    pivot.columns.name = "Facility_Code"
    return pivot.sort_index().fillna(0.0).astype(float)


def to_codes(series):
    """Nullable integer codes; district codes exceed float64's exact range."""
    return series.map(lambda value: int(value) if pd.notna(value) else pd.NA).astype("Int64")


@dataclass
class DemographicTables:
    """Output of :class:`DemographicAggregator`."""

    male_population: pd.DataFrame
    female_population: pd.DataFrame
    male_visits: pd.DataFrame
    female_visits: pd.DataFrame
    roster: pd.DataFrame
    report: StageReport


class DemographicAggregator:
    """Combines raw demographic datasets into pivots and a facility roster."""

    # -----------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------
    def run_aggregation(self, current, legacy=None, overrides=None):
        """
        Aggregate population and visit counts per facility and age.

        Parameters
        ----------
        current : pandas.DataFrame
            Current-year rows with ``Facility_Code``, ``Age``, ``Men``,
            ``Women``, ``Visit_Men``, ``Visit_Women`` and optionally
            ``Insured`` plus the identity columns.
        legacy : pandas.DataFrame, optional
            Prior dataset supplying ``Legacy_Code`` per ``Facility_Code``.
        overrides : PolicyOverrides, optional
            Merges, identity fixes and exclusions to apply.

        Returns
        -------
        DemographicTables
        """
        overrides = overrides or PolicyOverrides()
        report = StageReport("demographics")

        missing = [col for col in REQUIRED_COLUMNS if col not in current.columns]
        if missing:
            raise ValueError(f"demographic rows lack columns: {missing}")

        df = current.copy()
        if "Insured" not in df.columns:
            df["Insured"] = 0.0
        logger.info("Aggregating %d demographic rows", len(df))

        # 1. Facilities merged into another code --------------------------
        df["Facility_Code"] = df["Facility_Code"].astype(int)
        merged_rows = df["Facility_Code"].isin(overrides.facility_merges.keys())
        if merged_rows.any():
            df["Facility_Code"] = df["Facility_Code"].replace(overrides.facility_merges)
            report.note(f"{int(merged_rows.sum())} rows re-coded to merged facilities")

        # 2. Negative counts and overflow ages -----------------------------
        for col in COUNT_COLUMNS:
            df[col] = pd.to_numeric(df[col], errors="coerce").fillna(0.0)
            negative = df[col] < 0
            if negative.any():
                logger.warning(
                    "%d negative values in %s clipped to 0", int(negative.sum()), col
                )
                report.anomalies += int(negative.sum())
                df[col] = df[col].clip(lower=0)

        df["Age"] = df["Age"].astype(int).clip(lower=0, upper=MAX_AGE)

        # 3. Sum per (facility, age) ---------------------------------------
        identity = [col for col in IDENTITY_COLUMNS if col in df.columns]
        agg = {col: "sum" for col in COUNT_COLUMNS}
        agg.update({col: "first" for col in identity})
        grouped = df.groupby(["Facility_Code", "Age"], as_index=False).agg(agg)

        grouped["Legacy_Code"] = np.nan
        if legacy is not None and len(legacy):
            legacy_codes = self._legacy_codes(legacy, overrides)
            grouped["Legacy_Code"] = grouped["Facility_Code"].map(legacy_codes)

        for code, fields in overrides.identity_overrides.items():
            mask = grouped["Facility_Code"] == code
            if not mask.any():
                continue
            for name, value in fields.items():
                if name not in grouped.columns:
                    grouped[name] = None
                grouped[name] = grouped[name].astype(object)
                grouped.loc[mask, name] = value

        # 4. Facilities not funded by the insurance fund -------------------
        before = grouped["Facility_Code"].nunique()
        excluded = grouped["Facility_Code"].isin(overrides.excluded_facility_codes)
        excluded |= grouped["Legacy_Code"].isin(overrides.excluded_legacy_codes)
        grouped = grouped[~excluded].reset_index(drop=True)
        report.dropped = before - grouped["Facility_Code"].nunique()
        require_rows(grouped, report, "every facility was excluded or input was empty")

        # 5. Pivots --------------------------------------------------------
        codes = sorted(grouped["Facility_Code"].unique())
        pivots = {
            name: self._pivot(grouped, column, codes)
            for name, column in PIVOT_FIELDS.items()
        }

        # 6. Roster --------------------------------------------------------
        roster = self._roster(grouped, identity)

        report.processed = len(roster)
        report.log()

        return DemographicTables(roster=roster, report=report, **pivots)

    # -----------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------
    @staticmethod
    def _legacy_codes(legacy, overrides):
        legacy = legacy[["Facility_Code", "Legacy_Code"]].dropna(subset=["Facility_Code"])
        legacy = legacy.assign(
            Facility_Code=legacy["Facility_Code"].astype(int).replace(overrides.facility_merges)
        )
        return legacy.drop_duplicates("Facility_Code").set_index("Facility_Code")["Legacy_Code"]

    @staticmethod
    def _pivot(grouped, column, codes):
        pivot = grouped.pivot_table(
            index="Age",
            columns="Facility_Code",
            values=column,
            aggfunc="sum",
            fill_value=0.0,
        )
        pivot = pivot.reindex(index=AGES, columns=codes, fill_value=0.0).astype(float)
        pivot.loc[MAX_AGE] = pivot.loc[0:MAX_AGE].sum()
        pivot.index.name = "Age"
        pivot.columns.name = "Facility_Code"
        return pivot

    @staticmethod
    def _roster(grouped, identity):
        agg = {col: "first" for col in identity + ["Legacy_Code"]}
        agg["Insured"] = "sum"
        roster = grouped.groupby("Facility_Code").agg(agg)
        roster.index = roster.index.astype(int)
        return roster
