"""Display color assignment for portfolio paths."""

import random
from typing import Iterable, Optional


class ColorPicker:
    """Pseudo-random HSL colors in the chart's saturation and lightness.

    Hues already in use are avoided while a free one can be drawn quickly;
    collisions are possible but rare.
    """

    MAX_DRAWS = 16

    def __init__(self, seed: Optional[int] = None):
        self._rng = random.Random(seed)

    def next_color(self, in_use: Iterable[str] = ()) -> str:
        taken = set(in_use)
        color = self._draw()
        for _ in range(self.MAX_DRAWS):
            if color not in taken:
                break
            color = self._draw()
        return color

    def _draw(self) -> str:
        hue = self._rng.randrange(360)
        return f"hsl({hue}, 70%, 50%)"
