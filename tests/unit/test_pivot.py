"""
Unit tests -- pivot engine: grouping, aggregation, labels, drill-down.
"""
import pytest

from dashcore.cards.models import PivotSpec
from dashcore.cards.pivot import (
    aggregate,
    column_label,
    column_labels,
    drill_into,
    key_part,
    pivot,
    to_number,
)


def _spec(**overrides) -> PivotSpec:
    base = {
        "rowFields": ["region"],
        "columnFields": ["qtr"],
        "valueField": "sales",
        "aggregation": "sum",
    }
    base.update(overrides)
    return PivotSpec.model_validate(base)


_ROWS = [
    {"region": "E", "qtr": "Q1", "sales": 10},
    {"region": "E", "qtr": "Q1", "sales": 5},
    {"region": "W", "qtr": "Q1", "sales": 3},
]


_SALES = [
    {"region": "E", "rep": "ann", "year": 2024, "qtr": "Q1", "sales": 10},
    {"region": "W", "rep": "bob", "year": 2024, "qtr": "Q2", "sales": 4},
    {"region": "E", "rep": "cat", "year": 2024, "qtr": "Q2", "sales": 6},
    {"region": "E", "rep": "ann", "year": 2023, "qtr": "Q1", "sales": 2},
    {"region": "N", "rep": "dan", "year": 2024, "qtr": "Q1", "sales": "7.5"},
]


# ── Basic aggregation ───────────────────────────────────

def test_sum_aggregation():
    out = pivot(_ROWS, _spec())
    assert out == [
        {"region": "E", "qtr:Q1": 15},
        {"region": "W", "qtr:Q1": 3},
    ]


def test_empty_input_returns_empty():
    assert pivot([], _spec()) == []


@pytest.mark.parametrize("agg, expected_e", [
    ("sum", 15),
    ("avg", 7.5),
    ("count", 2),
    ("min", 5),
    ("max", 10),
])
def test_aggregations(agg, expected_e):
    out = pivot(_ROWS, _spec(aggregation=agg))
    assert out[0]["qtr:Q1"] == pytest.approx(expected_e)


def test_row_order_is_first_seen():
    out = pivot(_SALES, _spec())
    assert [r["region"] for r in out] == ["E", "W", "N"]


def test_column_set_is_global():
    out = pivot(_SALES, _spec())
    for row in out:
        assert list(row.keys()) == ["region", "qtr:Q1", "qtr:Q2"]


def test_unobserved_cell_defaults_to_zero():
    out = pivot(_SALES, _spec())
    west = next(r for r in out if r["region"] == "W")
    assert west["qtr:Q1"] == 0
    assert west["qtr:Q2"] == 4


def test_unobserved_cell_can_be_null():
    out = pivot(_SALES, _spec(emptyValue=None))
    west = next(r for r in out if r["region"] == "W")
    assert west["qtr:Q1"] is None


def test_string_values_coerced():
    out = pivot(_SALES, _spec())
    north = next(r for r in out if r["region"] == "N")
    assert north["qtr:Q1"] == pytest.approx(7.5)


# ── Labels & multi-field keys ───────────────────────────

def test_multi_column_labels():
    out = pivot(_SALES, _spec(columnFields=["year", "qtr"]))
    labels = [k for k in out[0] if k != "region"]
    assert labels == ["year:2024 qtr:Q1", "year:2024 qtr:Q2", "year:2023 qtr:Q1"]


def test_multi_row_fields_keep_order():
    out = pivot(_SALES, _spec(rowFields=["region", "rep"]))
    assert list(out[0].keys())[:2] == ["region", "rep"]
    assert [(r["region"], r["rep"]) for r in out] == [
        ("E", "ann"), ("W", "bob"), ("E", "cat"), ("N", "dan"),
    ]


def test_row_field_values_are_text():
    out = pivot(_SALES, _spec(rowFields=["year"], columnFields=[]))
    assert [r["year"] for r in out] == ["2024", "2023"]


def test_column_label_helper():
    spec = _spec(columnFields=["year", "qtr"])
    assert column_label(("2024", "Q1"), spec) == "year:2024 qtr:Q1"


# ── Degenerate axes ─────────────────────────────────────

def test_empty_row_fields_single_row():
    out = pivot(_SALES, _spec(rowFields=[]))
    assert len(out) == 1
    assert out[0] == {"qtr:Q1": pytest.approx(19.5), "qtr:Q2": 10}


def test_empty_column_fields_uses_value_field_label():
    out = pivot(_ROWS, _spec(columnFields=[]))
    assert out == [{"region": "E", "sales": 15}, {"region": "W", "sales": 3}]


def test_both_axes_empty_gives_total():
    out = pivot(_ROWS, _spec(rowFields=[], columnFields=[]))
    assert out == [{"sales": 18}]


def test_count_per_row_field_keeps_row_keys():
    rows = [{"region": "E"}, {"region": "E"}, {"region": "W"}]
    spec = _spec(columnFields=[], valueField="region", aggregation="count")
    out = pivot(rows, spec)
    assert out == [{"region": "E", "count:region": 2}, {"region": "W", "count:region": 1}]
    assert drill_into(out[1], rows, spec) == [{"region": "W"}]


# ── Label collisions ────────────────────────────────────

def test_colliding_column_labels_are_disambiguated():
    rows = [
        {"region": "E", "x": "a y:b", "y": "c", "sales": 1},
        {"region": "E", "x": "a", "y": "b y:c", "sales": 2},
    ]
    out = pivot(rows, _spec(columnFields=["x", "y"]))
    assert out == [{"region": "E", "x:a y:b y:c": 1, "x:a y:b y:c #2": 2}]


def test_column_label_never_shadows_row_field():
    spec = _spec(rowFields=["qtr:Q1"], columnFields=["qtr"])
    labels = column_labels([("Q1",), ("Q2",)], spec)
    assert labels == {("Q1",): "qtr:Q1 #2", ("Q2",): "qtr:Q2"}


# ── Value coercion ──────────────────────────────────────

def test_missing_value_field_counts_as_zero():
    rows = [{"region": "E", "qtr": "Q1"}, {"region": "E", "qtr": "Q1", "sales": 4}]
    assert pivot(rows, _spec())[0]["qtr:Q1"] == 4
    assert pivot(rows, _spec(aggregation="count"))[0]["qtr:Q1"] == 2


@pytest.mark.parametrize("raw, expected", [
    (3, 3.0),
    ("2.5", 2.5),
    (" 4 ", 4.0),
    ("abc", 0.0),
    (None, 0.0),
    (True, 0.0),
    (float("nan"), 0.0),
    ([1], 0.0),
])
def test_to_number(raw, expected):
    assert to_number(raw) == expected


@pytest.mark.parametrize("raw, expected", [
    (None, ""),
    (True, "true"),
    (2024.0, "2024"),
    (2.5, "2.5"),
    ("EU", "EU"),
])
def test_key_part(raw, expected):
    assert key_part(raw) == expected


def test_input_rows_not_mutated():
    rows = [dict(r) for r in _SALES]
    pivot(rows, _spec())
    assert rows == _SALES


def test_unknown_aggregation_raises():
    with pytest.raises(ValueError):
        aggregate([1.0], "median")


# ── Drill-down ──────────────────────────────────────────

def test_drill_into_returns_matching_rows():
    spec = _spec()
    out = pivot(_SALES, spec)
    east = drill_into(out[0], _SALES, spec)
    assert east == [r for r in _SALES if r["region"] == "E"]


def test_drill_into_is_repeatable_and_pure():
    spec = _spec()
    out = pivot(_SALES, spec)
    snapshot = [dict(r) for r in _SALES]
    first = drill_into(out[1], _SALES, spec)
    second = drill_into(out[1], _SALES, spec)
    assert first == second
    assert _SALES == snapshot


def test_drill_into_partitions_raw_rows():
    spec = _spec(rowFields=["region", "year"])
    out = pivot(_SALES, spec)
    parts = [drill_into(r, _SALES, spec) for r in out]
    flattened = [row for part in parts for row in part]
    assert len(flattened) == len(_SALES)
    for raw in _SALES:
        assert sum(raw in part for part in parts) == 1


def test_drill_into_matches_numeric_row_fields():
    spec = _spec(rowFields=["year"], columnFields=["qtr"])
    out = pivot(_SALES, spec)
    rows_2023 = drill_into(next(r for r in out if r["year"] == "2023"), _SALES, spec)
    assert rows_2023 == [_SALES[3]]


def test_drill_into_with_no_row_fields_returns_everything():
    spec = _spec(rowFields=[])
    out = pivot(_SALES, spec)
    assert drill_into(out[0], _SALES, spec) == _SALES
