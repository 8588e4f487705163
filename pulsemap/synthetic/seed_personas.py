import logging

import requests

from ..config import settings
from .personas import form_lost, rager, reader, skimmer

logger = logging.getLogger(__name__)

CHUNK = 500


def post_batch(evlist, base_url=None, session=None):
    # send as list to save round-trips
    http = session or requests
    url = (base_url or settings.api_base_url).rstrip("/") + "/api/analytics/batch"
    resp = http.post(url, json={"events": evlist}, timeout=settings.http_timeout_seconds)
    resp.raise_for_status()
    return resp.json()


def main():
    logging.basicConfig(level=logging.INFO)
    envelopes = []
    envelopes += reader()
    envelopes += skimmer()
    envelopes += rager()
    envelopes += form_lost()
    for i in range(0, len(envelopes), CHUNK):
        post_batch(envelopes[i:i + CHUNK])
    logger.info("Seeded %d events across 4 personas.", len(envelopes))


if __name__ == "__main__":
    main()
