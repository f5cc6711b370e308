"""Exceptions raised by the Cardwise core."""

from pydantic import ValidationError


class CardwiseError(Exception):
    """Base class for Cardwise errors."""


class CardNotFoundError(CardwiseError):
    """Raised when an operation requires a card the tenant does not own."""

    def __init__(self, card_id: int):
        self.card_id = card_id
        super().__init__(f"Card {card_id} not found")


class InvalidInputError(CardwiseError, ValueError):
    """Raised when arguments are rejected before storage is touched."""


def error_message(exc: Exception) -> str:
    """One-line description of ``exc`` for a batch failure entry.

    Validation errors are flattened to ``field: message`` pairs.
    """
    if isinstance(exc, ValidationError):
        return "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'item'}: {err['msg']}"
            for err in exc.errors()
        )
    return str(exc)
