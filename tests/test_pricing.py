"""Tests for token cost calculation."""

import pytest

from solvegate.app.services.pricing import calculate_cost_cents


@pytest.mark.parametrize(
    ("tokens", "expected"),
    [
        (0, 0),
        (1, 1),
        (412, 1),
        (66_666, 1),
        (66_667, 2),
        (200_000, 3),
    ],
)
def test_cost_rounds_up_to_whole_cents(tokens, expected):
    assert calculate_cost_cents(tokens, cents_per_1k_tokens=0.015) == expected


def test_rate_override():
    assert calculate_cost_cents(1000, cents_per_1k_tokens=2.5) == 3


def test_negative_tokens_rejected():
    with pytest.raises(ValueError):
        calculate_cost_cents(-1)
