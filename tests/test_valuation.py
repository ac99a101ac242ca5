"""Tests for portfolio valuation."""

import numpy as np
import pytest

from portfolio_paths.engine.valuation import NOTIONAL_BASE, compute_value
from portfolio_paths.models import PriceMatrix

from fakes import make_matrix


def test_compute_value_first_element_is_notional_times_weight_sum():
    """Every normalized series starts at 1.0, so the first value is base * sum(w)."""
    prices = make_matrix(4, 6)

    for weights in ([0.25] * 4, [0.5, 0.3, 0.1, 0.1], [0.2, 0.2, 0.2, 0.1]):
        values = compute_value(prices, weights)
        assert len(values) == 6
        assert values[0] == pytest.approx(NOTIONAL_BASE * sum(weights))


def test_compute_value_normalizes_each_series():
    """Assets at different price scales contribute by relative change only."""
    prices = PriceMatrix(rows=[[10.0, 20.0, 15.0], [1000.0, 1000.0, 500.0]])

    values = compute_value(prices, [0.5, 0.5])

    # asset 0 relative: 1.0, 2.0, 1.5; asset 1 relative: 1.0, 1.0, 0.5
    np.testing.assert_allclose(values, [1_000_000.0, 1_500_000.0, 1_000_000.0])


def test_compute_value_is_linear_in_weights():
    """Value is linear in the weight vector."""
    prices = make_matrix(3, 10, drift=0.02)
    w1 = np.array([0.6, 0.3, 0.1])
    w2 = np.array([0.1, 0.1, 0.8])
    a, b = 0.3, 1.7

    combined = compute_value(prices, list(a * w1 + b * w2))
    expected = a * np.array(compute_value(prices, list(w1))) + b * np.array(
        compute_value(prices, list(w2))
    )

    np.testing.assert_allclose(combined, expected, rtol=1e-9)


def test_compute_value_is_deterministic():
    """Identical inputs give identical output."""
    prices = make_matrix(5, 8)
    weights = [0.2] * 5

    assert compute_value(prices, weights) == compute_value(prices, weights)


def test_compute_value_empty_inputs_return_empty():
    """Empty matrix or empty weights yield an empty trajectory."""
    assert compute_value(PriceMatrix(), [0.5, 0.5]) == []
    assert compute_value(PriceMatrix(rows=[[], []]), [0.5, 0.5]) == []
    assert compute_value(make_matrix(2, 3), []) == []


def test_compute_value_weight_length_mismatch_raises():
    """A weight per asset is required."""
    with pytest.raises(ValueError, match="3 weights for 2 assets"):
        compute_value(make_matrix(2, 3), [0.3, 0.3, 0.4])


def test_compute_value_zero_start_raises():
    """A series starting at zero cannot be normalized."""
    prices = PriceMatrix(rows=[[0.0, 1.0], [1.0, 1.0]])

    with pytest.raises(ValueError, match="non-zero"):
        compute_value(prices, [0.5, 0.5])
