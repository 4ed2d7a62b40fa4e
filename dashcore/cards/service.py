"""
Card data service -- orchestrates lookup -> bind -> guard -> execute -> pivot.

One card request issues at most one query.  The service holds no
request-scoped state: collaborators are injected once and every call works
on its own locals, so concurrent requests are independent.

    service = CardDataService()                      # DB-backed defaults
    result = service.fetch_card_data("acme", "7", {"region": "EU"})
    result.to_payload()   # rows, or {"data", "rawData", "pivotConfig"}
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence

from dashcore.cards.binder import bind_parameters, is_blank, validate_filters
from dashcore.cards.models import CardDefinition, PivotSpec, PivotedCardData
from dashcore.cards.pivot import pivot
from dashcore.core.errors import ConfigurationError, NotFoundError, ValidationError
from dashcore.core.logging import get_logger, fields
from dashcore.db.card_store import get_card_by_id
from dashcore.db.executor import execute_readonly
from dashcore.governance.query_guard import GuardConfig, validate_and_bound

logger = get_logger(__name__)

CardLookup = Callable[[str, str], CardDefinition | None]
Executor = Callable[[str, Sequence[Any]], list[dict[str, Any]]]


@dataclass
class CardDataResult:
    """Outcome of one card data request."""
    card_id: str
    rows: list[dict[str, Any]]
    pivoted: list[dict[str, Any]] | None = None
    pivot_spec: PivotSpec | None = None
    sql: str = ""
    values: tuple[Any, ...] = field(default_factory=tuple)
    latency_ms: int = 0

    @property
    def is_pivoted(self) -> bool:
        return self.pivot_spec is not None

    def to_payload(self) -> list[dict[str, Any]] | dict[str, Any]:
        """The client response body: flat rows, or the pivot envelope."""
        if not self.is_pivoted:
            return self.rows
        return PivotedCardData(
            data=self.pivoted or [],
            raw_data=self.rows,
            pivot_config=self.pivot_spec.to_payload(),
        ).model_dump(by_alias=True)


class CardDataService:
    """Runs card queries under the guard.

    Parameters
    ----------
    card_lookup : callable, optional
        ``(tenant_id, card_id) -> CardDefinition | None``.  Defaults to the
        ``dashboard_cards`` table.
    executor : callable, optional
        ``(sql, positional_values) -> rows``.  Defaults to the read-only
        Postgres executor.  Must raise ``ExecutionError`` on failure.
    guard_config : GuardConfig, optional
        Row cap and allowlist.  Defaults to the environment settings.
    """

    def __init__(
        self,
        card_lookup: CardLookup | None = None,
        executor: Executor | None = None,
        guard_config: GuardConfig | None = None,
    ):
        self._lookup = card_lookup or get_card_by_id
        self._execute = executor or execute_readonly
        self._guard_config = guard_config or GuardConfig.from_settings()

    @property
    def guard_config(self) -> GuardConfig:
        return self._guard_config

    # ── Public API ──────────────────────────────────────

    def get_card(self, tenant_id: str, card_id: str) -> CardDefinition:
        """Look up an active card or raise ``NotFoundError``."""
        card = self._lookup(tenant_id, str(card_id))
        if card is None or not card.is_active:
            raise NotFoundError(f"Card '{card_id}' not found", card_id=str(card_id))
        return card

    def fetch_card_data(
        self,
        tenant_id: str,
        card_id: str,
        filters: Mapping[str, Any] | None = None,
    ) -> CardDataResult:
        """Run the card's query with *filters*; pivot when the card asks for it."""
        t0 = time.perf_counter()
        card = self.get_card(tenant_id, card_id)
        clean = validate_filters(filters)
        self._check_required(card, clean)

        rows, sql, values = self._run(card.id, card.sql_template, clean)

        pivoted = None
        if card.pivot_enabled and card.pivot_config is not None:
            pivoted = pivot(rows, card.pivot_config)

        latency = int((time.perf_counter() - t0) * 1000)
        logger.info("card.data | %s", fields(
            tenant=tenant_id, card=card.id, rows=len(rows),
            pivoted=pivoted is not None, latency_ms=latency,
        ))
        return CardDataResult(
            card_id=card.id,
            rows=rows,
            pivoted=pivoted,
            pivot_spec=card.pivot_config if pivoted is not None else None,
            sql=sql,
            values=values,
            latency_ms=latency,
        )

    def fetch_drilldown(
        self,
        tenant_id: str,
        card_id: str,
        filters: Mapping[str, Any] | None = None,
    ) -> CardDataResult:
        """Run the card's drill-down query (detail rows behind a summary row).

        *filters* usually carries the clicked row's values keyed by the
        drill-down query's placeholder names.
        """
        t0 = time.perf_counter()
        card = self.get_card(tenant_id, card_id)
        if not card.drilldown_enabled or not card.drilldown_query:
            raise ValidationError(f"Card '{card.id}' has no drill-down query", card_id=card.id)
        clean = validate_filters(filters)

        rows, sql, values = self._run(card.id, card.drilldown_query, clean)

        latency = int((time.perf_counter() - t0) * 1000)
        logger.info("card.drilldown | %s", fields(
            tenant=tenant_id, card=card.id, rows=len(rows), latency_ms=latency,
        ))
        return CardDataResult(
            card_id=card.id, rows=rows, sql=sql, values=values, latency_ms=latency,
        )

    # ── Internals ───────────────────────────────────────

    @staticmethod
    def _check_required(card: CardDefinition, filters: Mapping[str, Any]) -> None:
        missing = [name for name in card.required_filters if is_blank(filters.get(name))]
        if missing:
            raise ValidationError(
                f"Missing required filter(s): {', '.join(missing)}", card_id=card.id,
            )

    def _run(
        self,
        card_id: str,
        template: str,
        filters: Mapping[str, Any],
    ) -> tuple[list[dict[str, Any]], str, tuple[Any, ...]]:
        bound = bind_parameters(template, filters)
        guarded = validate_and_bound(bound.sql, card_id, self._guard_config)
        if not guarded.accepted:
            raise ConfigurationError(guarded.reason or "Query rejected", card_id=card_id)
        rows = self._execute(guarded.sql, list(bound.values))
        return rows, guarded.sql, bound.values
