import json
import logging
import time

import redis

from ..config import settings
from ..store import write_batch

logger = logging.getLogger(__name__)


def run(r=None, max_loops=None):
    """
    Block on the Redis list and write parquet every ``writer_batch_size`` envelopes
    or every ``writer_flush_seconds``, whichever comes first.
    """
    r = r or redis.Redis.from_url(settings.redis_url, decode_responses=False)
    logger.info("[writer] watching Redis list '%s'", settings.queue_name)
    buf = []
    last = time.time()
    loops = 0

    while max_loops is None or loops < max_loops:
        loops += 1
        # blocking pop with timeout so we can time-flush
        item = r.blpop(settings.queue_name, timeout=1)
        if item:
            _, raw = item
            try:
                buf.append(json.loads(raw))
            except ValueError as e:
                logger.warning("[writer] JSON decode error: %r", e)

        if buf and (len(buf) >= settings.writer_batch_size
                    or (time.time() - last) >= settings.writer_flush_seconds):
            write_batch(buf)
            buf.clear()
            last = time.time()

    if buf:
        write_batch(buf)


def main():
    logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
    run()


if __name__ == "__main__":
    main()
