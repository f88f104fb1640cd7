"""Token pricing and cost estimation for extraction calls.

Costs are tracked in integer cents. Every estimate is rounded up so that the
accumulated budget never under-reports what the provider will bill.
"""

from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal

_ONE_MILLION = Decimal(1_000_000)


@dataclass(frozen=True)
class TokenRates:
    """Price per million tokens, in cents."""

    input_cents_per_million: Decimal
    output_cents_per_million: Decimal


DEFAULT_RATES = TokenRates(
    input_cents_per_million=Decimal("300"),
    output_cents_per_million=Decimal("1500"),
)

# Fixed table. Unknown models are billed at DEFAULT_RATES.
MODEL_RATES: dict[str, TokenRates] = {
    "claude-sonnet-4-20250514": DEFAULT_RATES,
    "gpt-4o": TokenRates(
        input_cents_per_million=Decimal("250"),
        output_cents_per_million=Decimal("1000"),
    ),
    "gpt-4o-mini": TokenRates(
        input_cents_per_million=Decimal("15"),
        output_cents_per_million=Decimal("60"),
    ),
}


def get_rates(model: str | None) -> TokenRates:
    """Look up rates for a model, falling back to the default table entry."""
    if model is None:
        return DEFAULT_RATES
    return MODEL_RATES.get(model, DEFAULT_RATES)


def estimate_cost_cents(
    tokens_input: int,
    tokens_output: int,
    rates: TokenRates = DEFAULT_RATES,
) -> int:
    """Estimate the cost of one call in whole cents, rounded up.

    Args:
        tokens_input: Billed input tokens
        tokens_output: Billed output tokens
        rates: Per-million-token prices

    Returns:
        Cost in cents; 0 only when both token counts are 0

    Raises:
        ValueError: If a token count is negative
    """
    if tokens_input < 0 or tokens_output < 0:
        raise ValueError("Token counts must be non-negative")

    cost = (
        Decimal(tokens_input) * rates.input_cents_per_million
        + Decimal(tokens_output) * rates.output_cents_per_million
    ) / _ONE_MILLION
    return int(cost.to_integral_value(rounding=ROUND_CEILING))
