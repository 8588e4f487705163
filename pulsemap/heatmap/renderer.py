from __future__ import annotations

from typing import Tuple

import numpy as np
from PIL import Image

from ..config import settings
from .aggregator import DensityGrid

# blue -> cyan -> green -> yellow -> red
STOPS = (
    (0.00, (0, 0, 255)),
    (0.25, (0, 255, 255)),
    (0.50, (0, 255, 0)),
    (0.75, (255, 255, 0)),
    (1.00, (255, 0, 0)),
)


def heat_color(intensity: float) -> Tuple[int, int, int]:
    """Piecewise-linear colour for an intensity in [0, 1]; channels are floored."""
    v = min(max(float(intensity), 0.0), 1.0)
    for (lo, c0), (hi, c1) in zip(STOPS, STOPS[1:]):
        if v < hi or hi == 1.0:
            t = (v - lo) / (hi - lo)
            return tuple(int(np.floor(a + (b - a) * t)) for a, b in zip(c0, c1))
    return STOPS[-1][1]


def color_map(cells: np.ndarray) -> np.ndarray:
    """Vectorised ``heat_color`` over a grid, returns uint8 [..., 3]."""
    v = np.clip(cells, 0.0, 1.0)
    out = np.zeros(v.shape + (3,), dtype=np.uint8)
    for (lo, c0), (hi, c1) in zip(STOPS, STOPS[1:]):
        mask = (v >= lo) & ((v < hi) if hi < 1.0 else (v <= hi))
        t = (v[mask] - lo) / (hi - lo)
        for ch in range(3):
            out[..., ch][mask] = np.floor(c0[ch] + (c1[ch] - c0[ch]) * t).astype(np.uint8)
    return out


class HeatmapRenderer:
    """
    Paints a density grid as an RGBA overlay.

    Opacity and visibility are view state only: hiding the overlay or changing its
    opacity never touches the grid it was given.
    """

    def __init__(self, opacity: float = settings.heatmap_default_opacity,
                 threshold: float = settings.heatmap_visibility_threshold):
        self.opacity = opacity
        self.threshold = threshold
        self.visible = True

    @property
    def opacity(self) -> float:
        return self._opacity

    @opacity.setter
    def opacity(self, value: float) -> None:
        if not 0.0 <= value <= 1.0:
            raise ValueError("opacity must be within [0, 1]")
        self._opacity = float(value)

    def toggle(self) -> bool:
        self.visible = not self.visible
        return self.visible

    def show(self):
        self.visible = True

    def hide(self):
        self.visible = False

    def paint_cells(self, grid: DensityGrid) -> np.ndarray:
        """RGBA per grid cell, shape (grid_size, grid_size, 4)."""
        cells = grid.cells
        rgba = np.zeros(cells.shape + (4,), dtype=np.uint8)
        if not self.visible or grid.is_empty:
            return rgba
        painted = cells >= self.threshold
        rgba[..., :3] = color_map(cells)
        rgba[..., 3] = np.where(painted, int(round(self.opacity * 255)), 0)
        rgba[~painted, :3] = 0
        return rgba

    def render(self, grid: DensityGrid, width: int, height: int) -> np.ndarray:
        """Overlay of ``width x height`` pixels; each grid cell becomes a block of pixels."""
        if width <= 0 or height <= 0:
            raise ValueError("target surface must have positive size")
        per_cell = self.paint_cells(grid)
        n = grid.grid_size
        # pixel -> cell index, cells[y, x]
        rows = np.minimum((np.arange(height) * n) // height, n - 1)
        cols = np.minimum((np.arange(width) * n) // width, n - 1)
        return per_cell[rows[:, None], cols[None, :]]

    def to_image(self, grid: DensityGrid, width: int, height: int) -> Image.Image:
        return Image.fromarray(self.render(grid, width, height))
