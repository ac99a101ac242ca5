"""Portfolio valuation.

Maps a price matrix and a weight vector to the value over time of a fixed
initial investment. Pure: no I/O and no shared state, so any number of
registered paths can be re-derived in one batch.
"""

from typing import Sequence

import numpy as np

from portfolio_paths.models import PriceMatrix

NOTIONAL_BASE = 1_000_000.0


def compute_value(
    prices: PriceMatrix,
    weights: Sequence[float],
) -> list[float]:
    """Compute the value trajectory of a weighted portfolio.

    Every series is divided by its first value so all assets start at 1.0,
    the normalized series are combined with ``weights`` per time step and
    scaled by the notional base.

    Args:
        prices: Price matrix, one row per asset
        weights: One weight per asset (sum is not enforced)

    Returns:
        Portfolio value per time step; empty if either input is empty

    Raises:
        ValueError: If the number of weights differs from the number of
            assets, or a series starts at zero
    """
    if prices.is_empty or len(weights) == 0:
        return []

    if len(weights) != prices.n_assets:
        raise ValueError(
            f"Got {len(weights)} weights for {prices.n_assets} assets"
        )

    matrix = prices.to_numpy()
    first = matrix[:, 0]
    if np.any(first == 0):
        raise ValueError("Every price series must start at a non-zero value")

    normalized = matrix / first[:, np.newaxis]
    values = np.asarray(weights, dtype=float) @ normalized

    return (values * NOTIONAL_BASE).tolist()
