"""
Click density aggregation.

Points are accumulated into a ``grid_size x grid_size`` matrix, smoothed with a box blur
(a windowed mean standing in for a Gaussian) and normalized so the hottest cell is 1.0.
Cells are indexed ``cells[y, x]``.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Sequence, Union

import numpy as np

from ..config import settings
from ..events import HeatmapPoint

PointLike = Union[HeatmapPoint, dict, Sequence[float]]


@dataclass(frozen=True)
class DensityGrid:
    cells: np.ndarray
    device_type: str = "all"
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @property
    def grid_size(self) -> int:
        return int(self.cells.shape[0])

    @property
    def is_empty(self) -> bool:
        return not self.cells.any()

    @property
    def max_value(self) -> float:
        return float(self.cells.max()) if self.cells.size else 0.0


def _as_arrays(points: Iterable[PointLike]):
    xs, ys, ws = [], [], []
    for p in points:
        if isinstance(p, HeatmapPoint):
            x, y, w = p.x, p.y, p.intensity
        elif isinstance(p, dict):
            x, y, w = p["x"], p["y"], p.get("intensity", 1.0)
        else:
            x, y, w = (tuple(p) + (1.0,))[:3]
        xs.append(x)
        ys.append(y)
        ws.append(w)
    return (np.asarray(xs, dtype=float), np.asarray(ys, dtype=float),
            np.asarray(ws, dtype=float))


def accumulate(points: Iterable[PointLike], grid_size: int) -> np.ndarray:
    """Sum intensities per truncated (x, y) cell; out-of-range points are dropped."""
    grid = np.zeros((grid_size, grid_size), dtype=float)
    xs, ys, ws = _as_arrays(points)
    if xs.size == 0:
        return grid
    keep = (np.isfinite(xs) & np.isfinite(ys) & np.isfinite(ws) & (ws > 0)
            & (xs >= 0) & (xs < grid_size) & (ys >= 0) & (ys < grid_size))
    gx = np.trunc(xs[keep]).astype(int)
    gy = np.trunc(ys[keep]).astype(int)
    w = ws[keep]
    # fixed summation order per cell, whatever order the points arrived in
    order = np.lexsort((w, gx, gy))
    np.add.at(grid, (gy[order], gx[order]), w[order])
    return grid


def _window_sum(a: np.ndarray, radius: int, axis: int) -> np.ndarray:
    out = np.zeros_like(a)
    n = a.shape[axis]
    for d in range(-radius, radius + 1):
        if abs(d) >= n:
            continue
        src = [slice(None)] * a.ndim
        dst = [slice(None)] * a.ndim
        if d >= 0:
            src[axis], dst[axis] = slice(d, n), slice(0, n - d)
        else:
            src[axis], dst[axis] = slice(0, n + d), slice(-d, n)
        out[tuple(dst)] += a[tuple(src)]
    return out


def box_blur(grid: np.ndarray, radius: int) -> np.ndarray:
    """
    Mean over the Chebyshev neighbourhood of each cell. Neighbours outside the grid are
    left out of both the sum and the count, so edges are not darkened by zero padding.
    """
    if radius <= 0:
        return grid.astype(float, copy=True)
    sums = _window_sum(_window_sum(grid, radius, 0), radius, 1)
    ones = np.ones_like(grid, dtype=float)
    counts = _window_sum(_window_sum(ones, radius, 0), radius, 1)
    return sums / counts


def normalize(grid: np.ndarray) -> np.ndarray:
    peak = grid.max() if grid.size else 0.0
    if peak <= 0:
        return np.zeros_like(grid)
    return np.clip(grid / peak, 0.0, 1.0)


def aggregate(points: Iterable[PointLike], grid_size: int = settings.heatmap_grid_size,
              radius: int = settings.heatmap_radius, device_type: str = "all",
              start_date: Optional[datetime] = None,
              end_date: Optional[datetime] = None) -> DensityGrid:
    """
    Build a normalized density grid. Pure and deterministic: same points (in any order),
    grid size and radius always give the same cells. No in-bounds points gives an
    all-zero grid, which is a valid "no data" result.
    """
    if grid_size <= 0:
        raise ValueError("grid_size must be positive")
    if radius < 0:
        raise ValueError("radius must be >= 0")
    raw = accumulate(points, grid_size)
    blurred = box_blur(raw, radius)
    return DensityGrid(normalize(blurred), device_type, start_date, end_date)
