"""
Parquet-backed event store.

Queued envelopes are flattened to one row each (``type``, ``queued_at`` and every field of
``data``) and written to ``<data_dir>/parquet/events_<stamp>.parquet``. Reads concatenate
every file in that directory.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from .config import settings

logger = logging.getLogger(__name__)

# weight of each interaction kind in a heatmap cell
INTERACTION_WEIGHTS = {"click": 1.0, "move": 0.3, "scroll": 0.1}
MAX_POINTS = 10000


def flatten(envelope: Dict) -> Dict:
    row = {"type": envelope.get("type"), "queued_at": envelope.get("timestamp")}
    row.update(envelope.get("data") or {})
    return row


def write_batch(batch: List[Dict], outdir: Optional[Path] = None) -> Optional[Path]:
    if not batch:
        return None
    outdir = Path(outdir or settings.parquet_dir)
    outdir.mkdir(parents=True, exist_ok=True)
    df = pd.DataFrame([flatten(ev) for ev in batch])
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
    path = outdir / f"events_{stamp}.parquet"
    df.to_parquet(path, engine="pyarrow", index=False)
    logger.info("[store] wrote %d rows -> %s", len(df), path)
    return path


def load_events(indir: Optional[Path] = None) -> pd.DataFrame:
    files = sorted(Path(indir or settings.parquet_dir).glob("events_*.parquet"))
    if not files:
        return pd.DataFrame(columns=["type", "queued_at"])
    return pd.concat([pd.read_parquet(f) for f in files], ignore_index=True)


def _device_of(width: pd.Series) -> pd.Series:
    w = pd.to_numeric(width, errors="coerce")
    return pd.Series(np.select([w < 768, w < 1024], ["mobile", "tablet"], "desktop"),
                     index=w.index).where(w.notna())


def _utc(value) -> pd.Timestamp:
    t = pd.Timestamp(value)
    return t.tz_localize("UTC") if t.tzinfo is None else t.tz_convert("UTC")


def heatmap_points(df: pd.DataFrame, page_path: str, device_type: str = "all",
                   start: Optional[datetime] = None, end: Optional[datetime] = None,
                   grid_size: int = settings.heatmap_grid_size) -> List[Dict[str, float]]:
    """Bucket stored interactions for one page into weighted grid points."""
    needed = {"type", "pagePath", "eventType", "xPosition", "yPosition",
              "viewportWidth", "viewportHeight"}
    if df.empty or not needed.issubset(df.columns):
        return []
    ev = df[(df["type"] == "interaction") & (df["pagePath"] == page_path)].copy()
    if device_type != "all":
        ev = ev[_device_of(ev["viewportWidth"]) == device_type]
    if (start or end) and "timestamp" in ev.columns:
        ts = pd.to_datetime(ev["timestamp"], utc=True, errors="coerce", format="ISO8601")
        mask = pd.Series(True, index=ev.index)
        if start:
            mask &= ts >= _utc(start)
        if end:
            until = _utc(end)
            if until == until.normalize():
                # a bare date bound covers the whole end day
                mask &= ts < until + pd.Timedelta(days=1)
            else:
                mask &= ts <= until
        ev = ev[mask]
    if ev.empty:
        return []

    for c in ["xPosition", "yPosition", "viewportWidth", "viewportHeight"]:
        ev[c] = pd.to_numeric(ev[c], errors="coerce")
    ev = ev.dropna(subset=["xPosition", "yPosition", "viewportWidth", "viewportHeight"])
    ev = ev[(ev["viewportWidth"] > 0) & (ev["viewportHeight"] > 0)]
    ev["w"] = ev["eventType"].map(INTERACTION_WEIGHTS).fillna(0.0)
    ev = ev[ev["w"] > 0]
    if ev.empty:
        return []

    ev["gx"] = np.floor(ev["xPosition"] / ev["viewportWidth"] * grid_size).astype(int)
    ev["gy"] = np.floor(ev["yPosition"] / ev["viewportHeight"] * grid_size).astype(int)
    cells = (ev.groupby(["gx", "gy"], sort=True)["w"].sum()
               .reset_index()
               .sort_values(["w", "gy", "gx"], ascending=[False, True, True], kind="mergesort")
               .head(MAX_POINTS))
    return [{"x": int(r.gx), "y": int(r.gy), "intensity": float(r.w)}
            for r in cells.itertuples(index=False)]
