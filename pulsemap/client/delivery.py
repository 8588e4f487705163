from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional

from ..config import settings
from .platform import DeliveryError

logger = logging.getLogger(__name__)

BATCH_PATH = "/api/analytics/batch"


class DeliveryQueue:
    """
    Buffers event envelopes and ships them as one JSON batch.

    A flush happens on whichever comes first: the interval timer, the buffer reaching
    ``batch_size``, or page unload. A failed normal flush puts the batch back at the front
    of the buffer in its original order, so the next tick retries it (at-least-once, with
    possible duplicates). The unload flush goes through ``send_beacon`` and is never retried.

    The buffer is capped at ``max_buffered``; on overflow the oldest envelopes are dropped.
    """

    def __init__(
        self,
        transport,
        events=None,
        batch_size: int = settings.batch_size,
        interval: float = settings.flush_interval_seconds,
        max_buffered: int = settings.max_buffered_events,
        path: str = BATCH_PATH,
    ):
        self.transport = transport
        self.events = events
        self.batch_size = batch_size
        self.interval = interval
        self.max_buffered = max(max_buffered, batch_size)
        self.path = path
        self.buffer: List[Dict[str, Any]] = []
        self.dropped = 0
        self.flushes = 0
        self._flush_lock = threading.Lock()
        # guards every read-modify-write of self.buffer; timers may run on another thread
        self._buffer_lock = threading.Lock()
        self._timer = None

    def __len__(self):
        return len(self.buffer)

    def start(self) -> None:
        if self.events is not None and self._timer is None:
            self._timer = self.events.set_interval(self.interval, self._tick)

    def stop(self) -> None:
        if self._timer is not None:
            self.events.clear_interval(self._timer)
            self._timer = None

    def _tick(self):
        if self.buffer:
            self.flush()

    def enqueue(self, envelope: Dict[str, Any]) -> None:
        with self._buffer_lock:
            self.buffer.append(envelope)
            self._enforce_cap()
            full = len(self.buffer) >= self.batch_size
        if full:
            self.flush()

    def _enforce_cap(self):
        over = len(self.buffer) - self.max_buffered
        if over > 0:
            del self.buffer[:over]
            self.dropped += over
            logger.warning("[delivery] buffer full, dropped %d oldest events", over)

    def _take(self) -> List[Dict[str, Any]]:
        with self._buffer_lock:
            batch, self.buffer = self.buffer, []
        return batch

    def flush(self) -> bool:
        """Send everything buffered. Returns False if nothing was delivered."""
        if not self.buffer or not self._flush_lock.acquire(blocking=False):
            return False
        try:
            batch = self._take()
            if not batch:
                return False
            self.flushes += 1
            try:
                self.transport.post_json(self.path, {"events": batch})
            except DeliveryError as e:
                logger.warning("[delivery] flush of %d events failed, re-queued: %s", len(batch), e)
                with self._buffer_lock:
                    self.buffer[:0] = batch
                    self._enforce_cap()
                return False
        finally:
            self._flush_lock.release()
        logger.debug("[delivery] flushed %d events", len(batch))
        return True

    def flush_on_unload(self) -> Optional[bool]:
        """
        Hand the whole buffer to the beacon transport. Lost if the beacon is refused.
        The timer keeps running: a hidden page can come back. Call ``stop`` on teardown.
        """
        batch = self._take()
        if not batch:
            return None
        ok = self.transport.send_beacon(self.path, {"events": batch})
        if not ok:
            logger.warning("[delivery] unload beacon refused, %d events lost", len(batch))
        return ok
