"""
Pivot engine -- cross-tabulates a flat rowset.

Given rows, ``rowFields`` (output row grouping), ``columnFields`` (output
column grouping), a ``valueField`` and an aggregation, produces one output
row per distinct row key (first-seen order):

    [{"region": "E", "qtr": "Q1", "sales": 10},
     {"region": "E", "qtr": "Q1", "sales": 5},
     {"region": "W", "qtr": "Q2", "sales": 3}]
    rowFields=[region] columnFields=[qtr] valueField=sales aggregation=sum
    ->
    [{"region": "E", "qtr:Q1": 15.0, "qtr:Q2": 0},
     {"region": "W", "qtr:Q1": 0,    "qtr:Q2": 3.0}]

The column set is global: every output row carries every observed column.
A combination with no source rows gets ``spec.empty_value`` (0 by default,
None for a sparse result).  Column labels are unique within a result and
never reuse a row-field name, so no cell overwrites a row key.

``drill_into`` reverses a single output row back to the flat rows that
produced it.
"""
from __future__ import annotations

import math
from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping

from dashcore.cards.models import PivotSpec
from dashcore.core.logging import get_logger

logger = get_logger(__name__)

FlatRow = Mapping[str, Any]


# ── Coercion helpers ────────────────────────────────────


def key_part(value: Any) -> str:
    """Text form of a grouping value, used for keys and drill-down matching."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def to_number(value: Any) -> float:
    """Coerce a cell to float; anything non-numeric counts as 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float, Decimal)):
        num = float(value)
    elif isinstance(value, str):
        try:
            num = float(value.strip())
        except ValueError:
            return 0.0
    else:
        return 0.0
    return num if math.isfinite(num) else 0.0


def group_key(row: FlatRow, fields: list[str]) -> tuple[str, ...]:
    """Grouping key of *row* over *fields*; tuples avoid separator collisions."""
    return tuple(key_part(row.get(f)) for f in fields)


def column_label(col_key: tuple[str, ...], spec: PivotSpec) -> str:
    """``("2024", "Q1")`` with fields [year, quarter] -> ``year:2024 quarter:Q1``.

    With no column fields the single value column is named after the value
    field, or ``<aggregation>:<value field>`` when that name is also a row
    field (``count:region`` for a per-region row count).
    """
    if not spec.column_fields:
        if spec.value_field in spec.row_fields:
            return f"{spec.aggregation}:{spec.value_field}"
        return spec.value_field
    return " ".join(f"{name}:{val}" for name, val in zip(spec.column_fields, col_key))


def column_labels(
    col_keys: Iterable[tuple[str, ...]], spec: PivotSpec,
) -> dict[tuple[str, ...], str]:
    """Label every column key; labels never repeat or shadow a row field.

    Values containing spaces or colons can render two keys to the same text
    (``x:a y:b y:c``); later keys get a ``#2``, ``#3`` ... suffix.
    """
    taken = set(spec.row_fields)
    labels: dict[tuple[str, ...], str] = {}
    for ck in col_keys:
        label = base = column_label(ck, spec)
        n = 1
        while label in taken:
            n += 1
            label = f"{base} #{n}"
        taken.add(label)
        labels[ck] = label
    return labels


# ── Aggregations ────────────────────────────────────────

_AGGREGATORS: dict[str, Callable[[list[float]], float]] = {
    "sum": lambda vals: sum(vals),
    "avg": lambda vals: sum(vals) / len(vals),
    "count": lambda vals: len(vals),
    "min": min,
    "max": max,
}


def aggregate(values: list[float], aggregation: str) -> float:
    """Aggregate a non-empty list of numbers."""
    try:
        fn = _AGGREGATORS[aggregation]
    except KeyError:
        raise ValueError(f"Unknown aggregation '{aggregation}'") from None
    return fn(values)


# ── Public API ──────────────────────────────────────────


def pivot(rows: Iterable[FlatRow], spec: PivotSpec) -> list[dict[str, Any]]:
    """Cross-tabulate *rows* according to *spec*.

    Parameters
    ----------
    rows : iterable of mappings
        Flat rows as returned by the executor.  Not mutated.
    spec : PivotSpec
        Grouping fields, value field and aggregation.

    Returns
    -------
    list[dict]
        One dict per distinct row key.  Row-field values are strings; the
        remaining keys are column labels mapped to aggregated numbers.
    """
    # row key -> col key -> contributing numbers; dicts keep first-seen order
    cells: dict[tuple[str, ...], dict[tuple[str, ...], list[float]]] = {}
    col_keys: dict[tuple[str, ...], None] = {}

    for row in rows:
        rk = group_key(row, spec.row_fields)
        ck = group_key(row, spec.column_fields)
        col_keys.setdefault(ck, None)
        cells.setdefault(rk, {}).setdefault(ck, []).append(to_number(row.get(spec.value_field)))

    if not cells:
        return []

    labels = column_labels(col_keys, spec)
    out: list[dict[str, Any]] = []
    for rk, by_col in cells.items():
        record: dict[str, Any] = dict(zip(spec.row_fields, rk))
        for ck, label in labels.items():
            values = by_col.get(ck)
            record[label] = aggregate(values, spec.aggregation) if values else spec.empty_value
        out.append(record)

    logger.debug(
        "Pivoted %d row keys x %d column keys (%s of %s)",
        len(out), len(labels), spec.aggregation, spec.value_field,
    )
    return out


def drill_into(
    pivoted_row: Mapping[str, Any],
    raw_rows: Iterable[FlatRow],
    spec: PivotSpec,
) -> list[FlatRow]:
    """Return the raw rows whose ``rowFields`` values match *pivoted_row*.

    A pure filter: inputs are not mutated and repeated calls give the same
    result.  Matching uses the same text coercion as the pivot keys, so the
    results over all pivoted rows partition *raw_rows*.
    """
    wanted = [(f, key_part(pivoted_row.get(f))) for f in spec.row_fields]
    return [
        row for row in raw_rows
        if all(key_part(row.get(f)) == val for f, val in wanted)
    ]
