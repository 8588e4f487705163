import json
import logging

import redis

from ..config import settings
from ..store import write_batch

logger = logging.getLogger(__name__)


def drain(r=None, outdir=None):
    """Pop everything currently queued and write it as one parquet file."""
    r = r or redis.Redis.from_url(settings.redis_url, decode_responses=False)
    batch = []
    while True:
        raw = r.lpop(settings.queue_name)
        if raw is None:
            break
        try:
            batch.append(json.loads(raw))
        except ValueError as e:
            logger.warning("[drain] skip bad json: %s", e)

    if not batch:
        logger.info("[drain] queue empty, nothing to write.")
        return None
    return write_batch(batch, outdir)


def main():
    logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
    drain()


if __name__ == "__main__":
    main()
