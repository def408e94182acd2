"""
Shared pytest fixtures for the hashboost test suite.

Provides:
  - ``binary_records``: the 4-row color/price/sold dataset.
  - ``larger_binary_records``: 40 rows where color drives the label.
  - ``four_class_records``: 40 rows with a 4-class ``grade`` target.
  - ``regression_records``: 30 rows with a numeric ``value`` target in [100, 300].

All datasets are built deterministically (no randomness in fixtures).
"""

from __future__ import annotations

import pytest


# ── Classification datasets ───────────────────────────────────────────────────

@pytest.fixture
def binary_records() -> list[dict]:
    """Four records: color in {red, blue}, numeric price, target sold in {yes, no}."""
    return [
        {"color": "red",  "price": 50,  "sold": "yes"},
        {"color": "blue", "price": 80,  "sold": "no"},
        {"color": "red",  "price": 55,  "sold": "yes"},
        {"color": "blue", "price": 120, "sold": "no"},
    ]


@pytest.fixture
def larger_binary_records() -> list[dict]:
    """40 records; red items sell, blue items do not."""
    rows = []
    for i in range(40):
        color = "red" if i % 2 == 0 else "blue"
        rows.append({
            "color": color,
            "size":  ["s", "m", "l"][i % 3],
            "price": 40.0 + i,
            "sold":  "yes" if color == "red" else "no",
        })
    return rows


@pytest.fixture
def four_class_records() -> list[dict]:
    """40 records; ``grade`` is fully determined by ``shape``."""
    shapes = ["circle", "square", "triangle", "hexagon"]
    grades = {"circle": "a", "square": "b", "triangle": "c", "hexagon": "d"}
    rows = []
    for i in range(40):
        shape = shapes[i % 4]
        rows.append({
            "shape": shape,
            "weight": float(i % 7),
            "grade": grades[shape],
        })
    return rows


# ── Regression dataset ────────────────────────────────────────────────────────

@pytest.fixture
def regression_records() -> list[dict]:
    """30 records; value = 100 / 200 / 300 by region, plus a numeric column."""
    base = {"north": 100.0, "south": 200.0, "east": 300.0}
    rows = []
    for i in range(30):
        region = ["north", "south", "east"][i % 3]
        rows.append({"region": region, "rooms": i % 5, "value": base[region]})
    return rows
