from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import List, Optional

import numpy as np
from pydantic import ValidationError

from ..config import settings
from ..events import HeatmapPoint, HeatmapResponse
from ..client.platform import DeliveryError
from .aggregator import DensityGrid, aggregate
from .renderer import HeatmapRenderer

logger = logging.getLogger(__name__)

HEATMAP_PATH = "/api/analytics/heatmap"
DEVICE_FILTERS = ("all", "mobile", "tablet", "desktop")


class ViewState(str, Enum):
    LOADING = "loading"
    ERROR = "error"
    EMPTY = "empty"
    READY = "ready"


class HeatmapViewer:
    """
    Fetches points for one page, aggregates them and keeps the result for rendering.

    Exactly one of four states is shown: loading, error (fetch failed, ``load`` may be
    retried), empty (fetch worked, nothing to draw) and ready.
    """

    def __init__(self, transport, page_path: str, device_type: str = "all",
                 start_date: Optional[datetime] = None, end_date: Optional[datetime] = None,
                 grid_size: int = settings.heatmap_grid_size,
                 radius: int = settings.heatmap_radius,
                 renderer: Optional[HeatmapRenderer] = None):
        if device_type not in DEVICE_FILTERS:
            raise ValueError(f"device_type must be one of {DEVICE_FILTERS}")
        self.transport = transport
        self.page_path = page_path
        self.device_type = device_type
        self.start_date = start_date
        self.end_date = end_date
        self.grid_size = grid_size
        self.radius = radius
        self.renderer = renderer or HeatmapRenderer()
        self.state = ViewState.LOADING
        self.error: Optional[str] = None
        self.points: List[HeatmapPoint] = []
        self.grid: Optional[DensityGrid] = None

    def query_params(self):
        params = {"page_path": self.page_path, "device_type": self.device_type}
        if self.start_date:
            params["start_date"] = self.start_date.isoformat()
        if self.end_date:
            params["end_date"] = self.end_date.isoformat()
        return params

    def load(self) -> ViewState:
        self.state = ViewState.LOADING
        self.error = None
        try:
            body = self.transport.get_json(HEATMAP_PATH, params=self.query_params())
            self.points = HeatmapResponse.model_validate(
                {"page_path": self.page_path, **body}).points
        except (DeliveryError, ValidationError, TypeError) as e:
            logger.warning("[viewer] heatmap fetch failed for %s: %s", self.page_path, e)
            self.error = f"Failed to load heatmap data: {e}"
            self.state = ViewState.ERROR
            return self.state

        self.grid = aggregate(self.points, self.grid_size, self.radius, self.device_type,
                              self.start_date, self.end_date)
        self.state = ViewState.EMPTY if self.grid.is_empty else ViewState.READY
        return self.state

    def overlay(self, width: int, height: int) -> Optional[np.ndarray]:
        """The painted overlay, or None when there is nothing to show in this state."""
        if self.state is not ViewState.READY:
            return None
        return self.renderer.render(self.grid, width, height)
