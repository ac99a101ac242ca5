"""Summary metrics computation.

Computes headline statistics (return, range, drawdown) from a portfolio
value trajectory.
"""

from typing import Sequence

import numpy as np


def compute_trajectory_metrics(trajectory: Sequence[float]) -> dict[str, float]:
    """Compute summary statistics for one value trajectory.

    Args:
        trajectory: Portfolio values per time step

    Returns:
        Dictionary with keys:
            - initial: First value
            - final: Last value
            - total_return: final / initial - 1
            - min: Lowest value
            - max: Highest value
            - max_drawdown: Largest peak-to-trough fall as a fraction of the peak
        Empty if the trajectory is empty.
    """
    values = np.asarray(trajectory, dtype=float)
    if values.size == 0:
        return {}

    running_peak = np.maximum.accumulate(values)
    with np.errstate(divide="ignore", invalid="ignore"):
        drawdowns = np.where(running_peak > 0, 1.0 - values / running_peak, 0.0)

    initial = float(values[0])
    final = float(values[-1])
    return {
        "initial": initial,
        "final": final,
        "total_return": final / initial - 1.0 if initial else 0.0,
        "min": float(np.min(values)),
        "max": float(np.max(values)),
        "max_drawdown": float(np.max(drawdowns)),
    }
