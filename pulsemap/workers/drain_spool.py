"""
Deliver beacons that the tracker spooled at page teardown.

Run periodically (cron, systemd timer) next to a host that uses ``HttpTransport``:
    python -m pulsemap.workers.drain_spool
"""
import logging

import requests

from ..client.platform import Spool
from ..config import settings

logger = logging.getLogger(__name__)


def drain(spool=None, session=None, base_url=None, timeout=None):
    spool = spool or Spool(settings.spool_path)
    http = session or requests.Session()
    base_url = (base_url or settings.api_base_url).rstrip("/")
    timeout = timeout or settings.http_timeout_seconds

    entries = spool.take()
    if not entries:
        logger.info("[spool] nothing to send")
        return 0, 0

    failed = []
    for entry in entries:
        try:
            resp = http.post(base_url + entry["url"], json=entry["body"], timeout=timeout)
            ok = resp.ok
        except requests.RequestException as e:
            logger.warning("[spool] send to %s failed: %s", entry.get("url"), e)
            ok = False
        if not ok:
            failed.append(entry)

    spool.requeue(failed)
    sent = len(entries) - len(failed)
    logger.info("[spool] sent %d, kept %d for retry", sent, len(failed))
    return sent, len(failed)


def main():
    logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
    drain()


if __name__ == "__main__":
    main()
