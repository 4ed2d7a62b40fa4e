"""
Parameter binder -- turns a card's named-parameter SQL template into a
positional query plus its ordered value list.

    SELECT * FROM sales WHERE region = :region AND rep LIKE :rep
      + {"region": "EU"}
    -> SELECT * FROM sales WHERE region = $1 AND rep LIKE '%'
       values = ("EU",)

Rules:
  1. Placeholders are ``:identifier`` (identifier = [a-zA-Z_][a-zA-Z0-9_]*).
     A ``::`` cast (``amount::numeric``) is not a placeholder.
  2. Each distinct identifier is bound once, in order of first appearance;
     every occurrence of it shares the same ``$N``.
  3. A filter that is missing, None or "" becomes the literal ``'%'`` and
     consumes no index.  Only meaningful for LIKE predicates -- an equality
     or numeric comparison against ``'%'`` is valid SQL but matches nothing
     useful.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping

from dashcore.core.errors import ValidationError

_PLACEHOLDER_RE = re.compile(r"(?<!:):([a-zA-Z_][a-zA-Z0-9_]*)")

WILDCARD_LITERAL = "'%'"

_SCALAR_TYPES = (str, int, float, bool, type(None))


@dataclass(frozen=True)
class BoundQuery:
    """A positional query ready for the executor."""
    sql: str
    values: tuple[Any, ...] = ()


def placeholder_names(template: str) -> list[str]:
    """Distinct placeholder identifiers in order of first appearance."""
    seen: dict[str, None] = {}
    for match in _PLACEHOLDER_RE.finditer(template):
        seen.setdefault(match.group(1), None)
    return list(seen)


def is_blank(value: Any) -> bool:
    """True when a filter value means "not supplied"."""
    return value is None or value == ""


def bind_parameters(template: str, filters: Mapping[str, Any] | None = None) -> BoundQuery:
    """Rewrite *template* into ``$N`` form against *filters*.

    Deterministic: the result depends only on the template text and the
    filter values, never on mapping iteration order.
    """
    filters = filters or {}

    # identifier -> replacement text, built left-to-right
    replacements: dict[str, str] = {}
    values: list[Any] = []
    for name in placeholder_names(template):
        value = filters.get(name)
        if is_blank(value):
            replacements[name] = WILDCARD_LITERAL
        else:
            values.append(value)
            replacements[name] = f"${len(values)}"

    if not replacements:
        return BoundQuery(sql=template)

    # Single pass: the regex only matches whole identifiers, so ``:id``
    # can never eat the prefix of ``:identifier``.
    sql = _PLACEHOLDER_RE.sub(lambda m: replacements[m.group(1)], template)
    return BoundQuery(sql=sql, values=tuple(values))


def validate_filters(raw: Any) -> dict[str, Any]:
    """Validate a client ``filters`` payload and return it as a plain dict.

    Accepts scalars (str, int, float, bool, None) and flat lists of scalars.
    """
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ValidationError(f"Filters must be an object, got {type(raw).__name__}")

    errors: list[str] = []
    cleaned: dict[str, Any] = {}
    for key, value in raw.items():
        if not isinstance(key, str) or not key:
            errors.append(f"Filter name {key!r} must be a non-empty string.")
            continue
        if isinstance(value, (list, tuple)):
            bad = [v for v in value if not isinstance(v, _SCALAR_TYPES)]
            if bad:
                errors.append(f"Filter '{key}' list contains non-scalar values.")
                continue
            cleaned[key] = list(value)
        elif isinstance(value, _SCALAR_TYPES):
            cleaned[key] = value
        else:
            errors.append(f"Filter '{key}' has unsupported value type {type(value).__name__}.")

    if errors:
        raise ValidationError(" ".join(errors))
    return cleaned
