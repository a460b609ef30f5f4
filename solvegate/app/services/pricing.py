"""Cost calculation for provider calls."""

from decimal import ROUND_CEILING, Decimal

from solvegate.app.core.config import settings


def calculate_cost_cents(tokens: int, cents_per_1k_tokens: float | None = None) -> int:
    """Convert a billed token count into whole cents, rounding up.

    Any call that consumed tokens costs at least one cent; a zero-token
    call costs nothing.

    Args:
        tokens: Tokens billed by the provider
        cents_per_1k_tokens: Rate override. Defaults to settings.cost_cents_per_1k_tokens.

    Returns:
        Integer cost in cents

    Examples:
        >>> calculate_cost_cents(0)
        0
        >>> calculate_cost_cents(412)
        1
        >>> calculate_cost_cents(200_000, cents_per_1k_tokens=0.015)
        3
    """
    if tokens < 0:
        raise ValueError("tokens must not be negative")

    rate = Decimal(str(
        cents_per_1k_tokens if cents_per_1k_tokens is not None else settings.cost_cents_per_1k_tokens
    ))
    cost = Decimal(tokens) * rate / Decimal(1000)
    return int(cost.to_integral_value(rounding=ROUND_CEILING))
