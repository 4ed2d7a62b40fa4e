"""
Error taxonomy for card data requests.

Every failure of the query pipeline is one of four kinds.  The HTTP layer
maps ``status_code`` straight onto the response; the core never formats
responses itself.

  ConfigurationError  stored card SQL fails the query guard   (400)
  ValidationError     bad filter payload or pivot config      (422)
  NotFoundError       card id unknown for the tenant          (404)
  ExecutionError      the database rejected / failed the query (500)
"""
from __future__ import annotations


class CardQueryError(Exception):
    """Base class for all card pipeline failures."""

    status_code: int = 500
    kind: str = "error"

    def __init__(self, message: str, *, card_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.card_id = card_id

    def to_dict(self) -> dict[str, str]:
        return {"error": self.message, "kind": self.kind}


class ConfigurationError(CardQueryError):
    status_code = 400
    kind = "configuration"


class ValidationError(CardQueryError):
    status_code = 422
    kind = "validation"


class NotFoundError(CardQueryError):
    status_code = 404
    kind = "not_found"


class ExecutionError(CardQueryError):
    status_code = 500
    kind = "execution"
