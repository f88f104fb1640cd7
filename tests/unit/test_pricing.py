"""Unit tests for extraction cost estimation."""

from decimal import Decimal

import pytest

from invoice_ingest.extraction.pricing import (
    DEFAULT_RATES,
    TokenRates,
    estimate_cost_cents,
    get_rates,
)


def test_zero_tokens_cost_nothing() -> None:
    assert estimate_cost_cents(0, 0) == 0


def test_any_usage_costs_at_least_one_cent() -> None:
    assert estimate_cost_cents(1, 0) == 1
    assert estimate_cost_cents(0, 1) == 1


def test_exact_million_tokens() -> None:
    # $3 per million input, $15 per million output
    assert estimate_cost_cents(1_000_000, 0) == 300
    assert estimate_cost_cents(0, 1_000_000) == 1500
    assert estimate_cost_cents(1_000_000, 1_000_000) == 1800


def test_typical_invoice_call_rounds_up() -> None:
    # 1500 * 300 / 1e6 = 0.45, 120 * 1500 / 1e6 = 0.18 -> 0.63 -> 1
    assert estimate_cost_cents(1500, 120) == 1
    # 10000 * 300 / 1e6 = 3.0, 500 * 1500 / 1e6 = 0.75 -> 3.75 -> 4
    assert estimate_cost_cents(10_000, 500) == 4


def test_monotonic_in_both_arguments() -> None:
    previous = 0
    for tokens in range(0, 200_000, 7_919):
        cost = estimate_cost_cents(tokens, tokens // 10)
        assert cost >= previous
        previous = cost
    assert estimate_cost_cents(5000, 400) <= estimate_cost_cents(5001, 400)
    assert estimate_cost_cents(5000, 400) <= estimate_cost_cents(5000, 401)


def test_negative_tokens_rejected() -> None:
    with pytest.raises(ValueError):
        estimate_cost_cents(-1, 0)


def test_custom_rates() -> None:
    rates = TokenRates(
        input_cents_per_million=Decimal("15"), output_cents_per_million=Decimal("60")
    )
    assert estimate_cost_cents(1_000_000, 1_000_000, rates) == 75


def test_rate_lookup() -> None:
    assert get_rates("claude-sonnet-4-20250514") == DEFAULT_RATES
    assert get_rates("gpt-4o-mini").input_cents_per_million == Decimal("15")
    assert get_rates("some-future-model") == DEFAULT_RATES
    assert get_rates(None) == DEFAULT_RATES
