"""
Card lookup -- reads card definitions from the admin-owned tables.

Tables (created and migrated by the admin subsystem, read-only here):

  dashboard_cards    id, tenant_id, title, sql_query, visualization_type,
                     pivot_enabled, pivot_config (JSON), drilldown_enabled,
                     drilldown_query, is_active
  dashboard_filters  id, tenant_id, sql_parameter, is_active, ...
  card_filters       card_id, filter_id, is_required
"""
from __future__ import annotations

import json
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from dashcore.cards.models import CardDefinition, parse_pivot_spec
from dashcore.core.errors import ConfigurationError, ExecutionError
from dashcore.core.logging import get_logger
from dashcore.db.connection import readonly_connection

logger = get_logger(__name__)

_CARD_SQL = text("""
    SELECT id, tenant_id, title, sql_query, visualization_type,
           pivot_enabled, pivot_config, drilldown_enabled, drilldown_query,
           is_active
    FROM dashboard_cards
    WHERE id = :card_id AND tenant_id = :tenant_id
""")

_REQUIRED_FILTERS_SQL = text("""
    SELECT df.sql_parameter
    FROM dashboard_filters df
    JOIN card_filters cf ON df.id = cf.filter_id
    WHERE cf.card_id = :card_id
      AND df.tenant_id = :tenant_id
      AND df.is_active = :active
      AND cf.is_required = :required
    ORDER BY df.sql_parameter
""")


def _load_json(raw: Any) -> Any:
    if raw is None or isinstance(raw, (dict, list)):
        return raw
    return json.loads(raw)


def _card_from_row(row: dict[str, Any], required: list[str]) -> CardDefinition:
    card_id = str(row["id"])
    pivot_enabled = bool(row.get("pivot_enabled"))
    drilldown_query = row.get("drilldown_query")
    pivot_config = None
    # a stale config left behind after pivot was switched off is ignored
    if pivot_enabled:
        raw = _load_json(row.get("pivot_config"))
        if raw is not None:
            pivot_config = parse_pivot_spec(raw, card_id=card_id)
    return CardDefinition(
        id=card_id,
        tenant_id=row["tenant_id"],
        title=row.get("title") or "",
        sql_template=row["sql_query"],
        visualization_type=row.get("visualization_type") or "table",
        pivot_enabled=pivot_enabled,
        pivot_config=pivot_config,
        drilldown_enabled=bool(row.get("drilldown_enabled")) and bool(drilldown_query),
        drilldown_query=drilldown_query,
        is_active=bool(row.get("is_active", True)),
        required_filters=required,
    )


def get_card_by_id(
    tenant_id: str,
    card_id: str,
    engine: Engine | None = None,
) -> CardDefinition | None:
    """Return the tenant's card, or ``None`` when it does not exist.

    Raises
    ------
    ConfigurationError
        If the stored card cannot be parsed (e.g. pivot JSON that does not
        decode).
    ValidationError
        If the stored pivot config decodes but is not a valid pivot
        (e.g. no ``valueField``).
    ExecutionError
        If the lookup query itself fails.
    """
    params = {"card_id": card_id, "tenant_id": tenant_id}
    try:
        with readonly_connection(engine) as conn:
            row = conn.execute(_CARD_SQL, params).mappings().first()
            if row is None:
                return None
            required = [
                r[0] for r in conn.execute(
                    _REQUIRED_FILTERS_SQL, {**params, "active": True, "required": True},
                )
                if r[0]
            ]
    except SQLAlchemyError as exc:
        logger.exception("Card lookup failed  tenant=%s  card=%s", tenant_id, card_id)
        raise ExecutionError("Card lookup failed", card_id=card_id) from exc

    try:
        return _card_from_row(dict(row), required)
    except (PydanticValidationError, json.JSONDecodeError) as exc:
        logger.warning("Card %s has an invalid definition: %s", card_id, exc)
        raise ConfigurationError(f"Card '{card_id}' has an invalid definition.", card_id=card_id) from exc
