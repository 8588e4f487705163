import json
import logging
import time
from datetime import datetime
from typing import Optional

import pandas as pd
import redis
from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .config import settings
from .events import EventEnvelope, PageExit
from .geo import GeoLookup, client_ip, hash_ip, is_mobile_agent
from .store import heatmap_points, load_events

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

DEVICE_FILTERS = ("all", "mobile", "tablet", "desktop")

app = FastAPI(title="pulsemap collector", version="0.1.0")

# CORS so instrumented pages on other origins can POST
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

_redis = None


def get_queue():
    """Redis connection shared by all requests, opened on first use."""
    global _redis
    if _redis is None:
        _redis = redis.Redis.from_url(settings.redis_url, decode_responses=False)
    return _redis


def get_geo():
    return GeoLookup()


def get_events_frame() -> pd.DataFrame:
    return load_events()


async def _json_body(request: Request):
    # beacons arrive as text/plain, so parse the raw body ourselves
    raw = await request.body()
    try:
        return json.loads(raw or b"null")
    except ValueError:
        return None


@app.get("/health")
def health(queue=Depends(get_queue)):
    redis_ok = False
    try:
        queue.ping()
        redis_ok = True
    except redis.RedisError as e:
        logger.warning("[health] redis ping failed: %s", e)
    return {"ok": True, "service": "pulsemap-api", "redis": redis_ok}


@app.post("/api/analytics/batch")
async def ingest_batch(request: Request, queue=Depends(get_queue)):
    """
    Accept ``{"events": [{type, data, timestamp}, ...]}``.
    Each envelope is validated on its own and pushed to the Redis list; bad ones are counted.
    """
    payload = await _json_body(request)
    events = payload.get("events") if isinstance(payload, dict) else None
    if not isinstance(events, list) or not events:
        return JSONResponse(status_code=400, content={"error": "Invalid events data"})

    successful = failed = 0
    try:
        for raw in events:
            try:
                env = EventEnvelope.model_validate(raw)
                record = env.record()
            except (ValidationError, TypeError) as e:
                logger.warning("[ingest] rejected %s event: %s",
                               raw.get("type") if isinstance(raw, dict) else type(raw).__name__, e)
                failed += 1
                continue
            env = env.model_copy(update={"data": record.wire()})
            queue.rpush(settings.queue_name, env.model_dump_json())
            successful += 1
    except redis.RedisError as e:
        logger.error("[ingest] queue unavailable: %s", e)
        return JSONResponse(status_code=500, content={"error": str(e)})

    return {"success": True, "processed": len(events), "successful": successful, "failed": failed}


@app.post("/api/analytics/track")
async def track_exit(request: Request, queue=Depends(get_queue)):
    payload = await _json_body(request)
    try:
        exit_ = PageExit.model_validate(payload)
    except ValidationError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    env = {"type": "pageExit", "data": exit_.wire(), "timestamp": time.time() * 1000}
    try:
        queue.rpush(settings.queue_name, json.dumps(env))
    except redis.RedisError as e:
        return JSONResponse(status_code=500, content={"error": str(e)})
    return {"success": True}


@app.get("/api/analytics/location")
def location(request: Request, geo: GeoLookup = Depends(get_geo)):
    ip = client_ip(request.headers, request.client.host if request.client else None)
    data = geo.lookup(ip)
    return {
        "ipAddressHash": hash_ip(ip),
        "isMobile": is_mobile_agent(request.headers.get("user-agent", "")),
        **data,
    }


@app.get("/api/analytics/heatmap")
def heatmap(
    page_path: Optional[str] = Query(None),
    device_type: str = Query("all"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    frame: pd.DataFrame = Depends(get_events_frame),
):
    if not page_path:
        return JSONResponse(status_code=400, content={"error": "page_path parameter is required"})
    if device_type not in DEVICE_FILTERS:
        return JSONResponse(status_code=400, content={"error": f"device_type must be one of {DEVICE_FILTERS}"})

    points = heatmap_points(frame, page_path, device_type, start_date, end_date,
                            settings.heatmap_grid_size)
    return {
        "page_path": page_path,
        "device_type": device_type,
        "points": points,
        "total_points": len(points),
        "date_range": {
            "start": start_date.isoformat() if start_date else None,
            "end": end_date.isoformat() if end_date else None,
        },
    }
