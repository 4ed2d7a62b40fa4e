"""
Query guard -- the last gate before a card's SQL reaches the database.

Operates on the already parameter-bound SQL text.  Checks performed:
  1. Card allowlist (when enabled): the card id must be in the allowed set
  2. Trim, then strip exactly one trailing ';'
  3. Statement must start with SELECT
  4. No ';', no DML/DDL/DCL keywords, no SQL comments (-- or /*)
  5. Wrap as ``SELECT * FROM (<stmt>) AS subquery LIMIT <max_rows>``

This is a regex denylist, not a parser.  It also rejects legitimate SELECTs
that mention a denylisted word inside a string literal or identifier
(``WHERE action = 'delete'``).  The database connection is opened READ ONLY
as a second line of defence (see ``dashcore.db.connection``).
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

from dashcore.core.config import Settings, get_settings
from dashcore.core.logging import get_logger, fields

logger = get_logger(__name__)

DEFAULT_MAX_ROWS = 1000

# ── Compiled patterns ────────────────────────────────────

_SELECT_PREFIX = re.compile(r"^\s*select\b", re.IGNORECASE)

_DANGEROUS_KW = re.compile(
    r"\b(INSERT|UPDATE|DELETE|DROP|ALTER|CREATE|TRUNCATE|GRANT|REVOKE)\b",
    re.IGNORECASE,
)

_SEMICOLON = re.compile(r";")
_COMMENT_INLINE = re.compile(r"--")
_COMMENT_BLOCK = re.compile(r"/\*")


# ── Configuration & result types ─────────────────────────


@dataclass(frozen=True)
class GuardConfig:
    """Per-deployment guard settings."""
    max_rows: int = DEFAULT_MAX_ROWS
    allowlist_enabled: bool = False
    allowed_ids: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self):
        if isinstance(self.max_rows, bool) or not isinstance(self.max_rows, int) or self.max_rows < 1:
            raise ValueError(f"max_rows must be a positive integer, got {self.max_rows!r}")
        # accept any iterable of ids (list from JSON, set from settings ...)
        object.__setattr__(self, "allowed_ids", frozenset(str(i) for i in self.allowed_ids))

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "GuardConfig":
        settings = settings or get_settings()
        return cls(
            max_rows=settings.query_max_rows,
            allowlist_enabled=settings.query_allowlist_enabled,
            allowed_ids=settings.allowed_card_ids,
        )


class GuardOutcome(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    NOT_PERMITTED = "not_permitted"


@dataclass(frozen=True)
class QueryGuardResult:
    """Outcome of ``validate_and_bound``.  ``sql`` is set only when accepted."""
    outcome: GuardOutcome
    sql: str | None = None
    reason: str | None = None

    @property
    def accepted(self) -> bool:
        return self.outcome is GuardOutcome.ACCEPTED

    @classmethod
    def accept(cls, sql: str) -> "QueryGuardResult":
        return cls(outcome=GuardOutcome.ACCEPTED, sql=sql)

    @classmethod
    def reject(cls, reasons: Iterable[str]) -> "QueryGuardResult":
        return cls(outcome=GuardOutcome.REJECTED, reason=" ".join(reasons))

    @classmethod
    def not_permitted(cls, card_id: str) -> "QueryGuardResult":
        return cls(
            outcome=GuardOutcome.NOT_PERMITTED,
            reason=f"Card '{card_id}' is not permitted to execute queries in this deployment.",
        )


# ── Checks ───────────────────────────────────────────────


def normalise_statement(sql: str) -> str:
    """Trim whitespace and drop exactly one trailing semicolon."""
    stmt = sql.strip()
    if stmt.endswith(";"):
        stmt = stmt[:-1].rstrip()
    return stmt


def check_statement(stmt: str) -> list[str]:
    """Return SQL-shape violations for a normalised statement (empty = safe)."""
    errors: list[str] = []

    if not stmt:
        errors.append("SQL is empty.")
        return errors

    # ── 1. Must start with SELECT ────────────────────
    if not _SELECT_PREFIX.match(stmt):
        errors.append("Only SELECT statements are allowed.")

    # ── 2. No statement separators ───────────────────
    if _SEMICOLON.search(stmt):
        errors.append("Multiple statements are not allowed (found ';').")

    # ── 3. No dangerous keywords ─────────────────────
    m = _DANGEROUS_KW.search(stmt)
    if m:
        errors.append(f"Dangerous keyword detected: '{m.group(1).upper()}'.")

    # ── 4. No SQL comments ───────────────────────────
    if _COMMENT_INLINE.search(stmt):
        errors.append("Inline comments (--) are not allowed.")
    if _COMMENT_BLOCK.search(stmt):
        errors.append("Block comments (/* */) are not allowed.")

    return errors


def wrap_with_limit(stmt: str, max_rows: int) -> str:
    return f"SELECT * FROM ({stmt}) AS subquery LIMIT {int(max_rows)}"


def validate_and_bound(
    sql: str,
    card_id: str | int,
    config: GuardConfig | None = None,
) -> QueryGuardResult:
    """Validate *sql* for card *card_id* and cap its row count.

    Parameters
    ----------
    sql : str
        Parameter-bound SQL (``$N`` placeholders already substituted).
    card_id : str | int
        The card the statement belongs to; checked against the allowlist.
    config : GuardConfig, optional
        If None, built from the environment settings.
    """
    if config is None:
        config = GuardConfig.from_settings()
    card_id = str(card_id)

    if config.allowlist_enabled and card_id not in config.allowed_ids:
        result = QueryGuardResult.not_permitted(card_id)
        logger.warning("Query guard: %s", fields(card=card_id, outcome=result.outcome.value))
        return result

    stmt = normalise_statement(sql or "")
    errors = check_statement(stmt)
    if errors:
        logger.warning("Query guard violations: %s", fields(card=card_id, errors=errors))
        return QueryGuardResult.reject(errors)

    return QueryGuardResult.accept(wrap_with_limit(stmt, config.max_rows))
