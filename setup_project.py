"""
PHC Budget Pipeline: Project Setup
==================================
Creates the data/ directory and writes a synthetic, internally consistent
input set for the budget pipeline:

- data/demographics.csv  : population and visits per facility and age
- data/legacy_codes.csv  : legacy facility codes
- data/districts.csv     : district geography
- data/transfers.csv     : narrow-specialist transfer links
- data/budgets.csv       : prior-year budgets (thousands)
"""

import csv
import os
import random

from phc_budget.policy import BUDGET_UNIT, FAMILY_MEDICINE_POOL, NARROW_SPECIALIST_POOL

# ---------------------------------------------------------------------------
# 1. Ensure project directories exist
# ---------------------------------------------------------------------------
DIRS = ["data"]

for d in DIRS:
    os.makedirs(d, exist_ok=True)
    print(f"✔  Directory ready: {d}/")

# ---------------------------------------------------------------------------
# 2. Configuration for synthetic data
# ---------------------------------------------------------------------------
random.seed(42)  # reproducibility

DISTRICTS = {
    41702000000000000: {"District": "Ленинский район", "Altitude": 1.0, "Density": 320, "Rural": 1.0, "Smalltown": 1.0},
    41703000000000000: {"District": "Нарынский район", "Altitude": 1.4, "Density": 12, "Rural": 1.2, "Smalltown": 1.1},
    41706000000000000: {"District": "Ноокатский район", "Altitude": 1.1, "Density": 85, "Rural": 1.1, "Smalltown": 1.0},
    41721000000000000: {"District": "город Ош", "Altitude": 1.0, "Density": 410, "Rural": 1.0, "Smalltown": 1.0},
}
REGION = {"Region": "Ошская область", "Region_Code": 4170600000000000}

# Facility code -> district code; 100012 has no budget row on purpose
FACILITIES = {
    100001: 41702000000000000,
    100002: 41702000000000000,
    100003: 41703000000000000,
    100004: 41703000000000000,
    100005: 41703000000000000,
    100006: 41706000000000000,
    100007: 41706000000000000,
    100008: 41721000000000000,
    100009: 41721000000000000,
    100010: 41721000000000000,
    100011: 41706000000000000,
    100012: 41702000000000000,
    102272: 41702000000000000,
}

# Facility -> (Origin_1, Origin_2, Destination)
TRANSFERS = {
    100003: (100004, 100005, 0),
    100004: (0, 0, 100003),
    100005: (0, 0, 100003),
    100008: (100009, 0, 0),
    100009: (0, 0, 100008),
}


def visit_rate(age):
    """Yearly visits per person: high for infants, dips in youth, rises with age."""
    if age < 5:
        return 3.0 - 0.3 * age
    if age < 20:
        return 0.9
    return 0.8 + 0.03 * (age - 20)


def write_csv(name, fieldnames, rows):
    path = os.path.join("data", name)
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerows(rows)
    print(f"✔  Generated {len(rows)} rows → {path}")


# ---------------------------------------------------------------------------
# 3. Generate and write the datasets
# ---------------------------------------------------------------------------
demographics = []
totals = {}
for code, district_code in FACILITIES.items():
    size = random.randint(40, 220)
    insured_share = random.uniform(0.6, 0.95)
    totals[code] = 0
    for age in range(0, 100):
        decay = max(0.05, 1 - age / 90)
        men = int(size * decay * random.uniform(0.8, 1.2))
        women = int(size * decay * random.uniform(0.85, 1.25))
        totals[code] += men + women
        demographics.append({
            "Facility_Code": code,
            "Age":           age,
            **REGION,
            "District":      DISTRICTS[district_code]["District"],
            "District_Code": district_code,
            "Name":          f"ЦСМ {code}",
            "Full_Name":     f"Центр семейной медицины {code}",
            "Men":           men,
            "Women":         women,
            "Visit_Men":     int(men * visit_rate(age) * random.uniform(0.8, 1.2)),
            "Visit_Women":   int(women * visit_rate(age) * random.uniform(0.9, 1.3)),
            "Insured":       int((men + women) * insured_share),
        })

write_csv("demographics.csv", list(demographics[0].keys()), demographics)

write_csv(
    "legacy_codes.csv",
    ["Facility_Code", "Legacy_Code"],
    [{"Facility_Code": code, "Legacy_Code": 5000 + i} for i, code in enumerate(FACILITIES)],
)

write_csv(
    "districts.csv",
    ["District_Code", "Altitude", "Density", "Rural", "Smalltown"],
    [
        {"District_Code": code, **{k: v for k, v in info.items() if k != "District"}}
        for code, info in DISTRICTS.items()
    ],
)

write_csv(
    "transfers.csv",
    ["Facility_Code", "Origin_1", "Origin_2", "Destination"],
    [
        {"Facility_Code": code, "Origin_1": o1, "Origin_2": o2, "Destination": dest}
        for code, (o1, o2, dest) in TRANSFERS.items()
    ],
)

# Prior-year primary-care budgets share out the two historical pools (in
# thousands), roughly in proportion to population x legacy geok
budgeted = [code for code in FACILITIES if code != 100012]
geok_gsv = {code: round(random.uniform(1.0, 1.6), 2) for code in budgeted}
weights = {
    code: totals[code] * geok_gsv[code] * random.uniform(0.9, 1.1)
    for code in budgeted
}
pool_thousands = (NARROW_SPECIALIST_POOL + FAMILY_MEDICINE_POOL) / BUDGET_UNIT
weight_total = sum(weights.values())

budgets = []
for code in budgeted:
    primary = round(pool_thousands * weights[code] / weight_total, 1)
    budgets.append({
        "Facility_Code":       code,
        "Budget_Prior":        round(primary * random.uniform(1.1, 1.3), 1),
        "Primary_Care_Budget": primary,
        "Geok_Old_Gsv":        geok_gsv[code],
        "Total_Population":    totals[code],
    })

write_csv("budgets.csv", list(budgets[0].keys()), budgets)

print(f"\n🎉 PHC budget pipeline: setup complete!")
