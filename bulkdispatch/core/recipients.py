# bulkdispatch/core/recipients.py
from __future__ import annotations

import re

from bulkdispatch.core.domain import RecipientSource, StartCommand
from bulkdispatch.core.errors import ValidationError
from bulkdispatch.core.number_generator import NumberGenerator

# Any run of whitespace, commas or semicolons separates two entries
_SEPARATORS = re.compile(r"[\s,;]+")


def parse_number_list(text: str | None) -> list[str]:
    """Split free-form pasted/uploaded text into recipient tokens (order kept)."""
    if not text:
        return []
    return [token for token in _SEPARATORS.split(text) if token]


def resolve_recipients(
    command: StartCommand,
    generator: NumberGenerator,
    *,
    max_quantity: int | None = None,
) -> list[str]:
    """
    Resolve the recipient set for a start command.

    Raises:
        ValidationError: invalid quantity, or the resolved set is empty
    """
    if command.source is RecipientSource.RANDOM:
        quantity = command.quantity or 0
        if quantity <= 0:
            raise ValidationError("Quantity must be a positive number for random generation")
        if max_quantity is not None and quantity > max_quantity:
            raise ValidationError(f"Quantity {quantity} exceeds the limit of {max_quantity}")
        try:
            identifiers = sorted(generator.generate(quantity))
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
    else:
        # repeats are kept; the store collapses them and reports the count
        identifiers = parse_number_list(command.number_list)

    if not identifiers:
        raise ValidationError("No valid numbers to process")

    return identifiers
