"""
Host capabilities the tracker depends on.

The tracker never touches a browser or the network directly. It talks to three small
interfaces instead:

  PlatformEvents    - signal listeners (scroll/click/hidden/unload), interval timers, deferred work
  PlatformStorage   - tab-scoped key/value storage
  PlatformTransport - JSON POST/GET plus a teardown-safe ``send_beacon``

``ManualEvents`` and ``MemoryStorage`` are deterministic in-process adapters (tests, simulations);
``ThreadedEvents`` and ``HttpTransport`` run the tracker inside a long-lived Python host.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol
from urllib.parse import parse_qs, urlparse

import requests

logger = logging.getLogger(__name__)

SCROLL = "scroll"
CLICK = "click"
HIDDEN = "visibilityhidden"
UNLOAD = "unload"


class StorageUnavailable(RuntimeError):
    pass


class DeliveryError(RuntimeError):
    """Network failure or non-2xx response on a normal (non-beacon) send."""


@dataclass(frozen=True)
class PageInfo:
    url: str
    title: str = ""
    referrer: str = ""
    user_agent: str = ""
    viewport_width: int = 1280
    viewport_height: int = 800

    @property
    def path(self) -> str:
        return urlparse(self.url).path or "/"

    @property
    def host(self) -> str:
        return urlparse(self.url).hostname or ""

    @property
    def query_params(self) -> Dict[str, str]:
        # first value wins, like URLSearchParams.get
        return {k: v[0] for k, v in parse_qs(urlparse(self.url).query).items()}


@dataclass(frozen=True)
class ElementInfo:
    tag_name: str = ""
    id: str = ""
    class_name: str = ""
    text: str = ""


@dataclass(frozen=True)
class ClickSample:
    x: int
    y: int
    element: ElementInfo = field(default_factory=ElementInfo)


@dataclass(frozen=True)
class ScrollSample:
    scroll_top: float
    document_height: float
    window_height: float


class PlatformEvents(Protocol):
    def on(self, signal: str, handler: Callable[[Any], None]) -> None: ...
    def set_interval(self, seconds: float, fn: Callable[[], None]) -> Any: ...
    def clear_interval(self, handle: Any) -> None: ...
    def defer(self, fn: Callable[[], None]) -> None: ...
    def now(self) -> float: ...


class PlatformStorage(Protocol):
    def get_item(self, key: str) -> Optional[str]: ...
    def set_item(self, key: str, value: str) -> None: ...


class PlatformTransport(Protocol):
    def post_json(self, path: str, body: Any) -> None: ...
    def get_json(self, path: str, params: Optional[Dict[str, str]] = None) -> Any: ...
    def send_beacon(self, path: str, body: Any) -> bool: ...


# ---------- In-process adapters ----------

class MemoryStorage:
    def __init__(self):
        self._items: Dict[str, str] = {}

    def get_item(self, key):
        return self._items.get(key)

    def set_item(self, key, value):
        self._items[key] = value


class ManualEvents:
    """
    Single-threaded event source driven by the caller.

    Signals are delivered synchronously by ``emit``; timers fire only when ``advance`` moves
    the clock past them; deferred callables run on ``run_pending``. This mirrors a browser main
    thread: nothing runs concurrently with a handler.
    """

    def __init__(self, start: float = 0.0):
        self._clock = start
        self._handlers: Dict[str, List[Callable]] = {}
        self._timers: Dict[int, List] = {}
        self._next_handle = 1
        self._pending: List[Callable[[], None]] = []

    def on(self, signal, handler):
        self._handlers.setdefault(signal, []).append(handler)

    def emit(self, signal, payload=None):
        for handler in list(self._handlers.get(signal, [])):
            handler(payload)

    def set_interval(self, seconds, fn):
        handle = self._next_handle
        self._next_handle += 1
        self._timers[handle] = [self._clock + seconds, seconds, fn]
        return handle

    def clear_interval(self, handle):
        self._timers.pop(handle, None)

    def defer(self, fn):
        self._pending.append(fn)

    def now(self):
        return self._clock

    def run_pending(self):
        while self._pending:
            self._pending.pop(0)()

    def advance(self, seconds: float):
        target = self._clock + seconds
        while True:
            due = [(t[0], h) for h, t in self._timers.items() if t[0] <= target]
            if not due:
                break
            when, handle = min(due)
            self._clock = when
            timer = self._timers[handle]
            timer[0] = when + timer[1]
            timer[2]()
        self._clock = target


class ThreadedEvents:
    """Timers on daemon threads, deferred work on one background worker."""

    def __init__(self):
        self._handlers: Dict[str, List[Callable]] = {}
        self._lock = threading.Lock()
        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pulsemap")

    def on(self, signal, handler):
        with self._lock:
            self._handlers.setdefault(signal, []).append(handler)

    def emit(self, signal, payload=None):
        with self._lock:
            handlers = list(self._handlers.get(signal, []))
        for handler in handlers:
            handler(payload)

    def set_interval(self, seconds, fn):
        stop = threading.Event()

        def loop():
            while not stop.wait(seconds):
                try:
                    fn()
                except Exception:
                    logger.exception("[events] interval callback failed")

        threading.Thread(target=loop, daemon=True, name="pulsemap-interval").start()
        return stop

    def clear_interval(self, handle):
        handle.set()

    def defer(self, fn):
        self._worker.submit(fn)

    def now(self):
        return time.time()

    def shutdown(self):
        self._worker.shutdown(wait=False)


class Spool:
    """Append-only JSON-lines file standing in for the browser's send-on-unload queue."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def append(self, url: str, body: Any) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps({"url": url, "body": body, "queued_at": time.time()})
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line + "\n")
            f.flush()

    def read(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        entries = []
        with open(self.path, encoding="utf-8") as f:
            for raw in f:
                raw = raw.strip()
                if not raw:
                    continue
                try:
                    entries.append(json.loads(raw))
                except ValueError as e:
                    logger.warning("[spool] skip bad line: %s", e)
        return entries

    def take(self) -> List[Dict[str, Any]]:
        """Atomically move the spool aside and return its entries."""
        if not self.path.exists():
            return []
        taken = self.path.with_suffix(self.path.suffix + ".draining")
        self.path.replace(taken)
        entries = Spool(taken).read()
        taken.unlink()
        return entries

    def requeue(self, entries: List[Dict[str, Any]]) -> None:
        if not entries:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            for entry in entries:
                f.write(json.dumps(entry) + "\n")


class HttpTransport:
    """requests-backed transport; beacons go to a local spool drained by a worker."""

    def __init__(self, base_url: str, spool: Spool, timeout: float = 5.0, session=None):
        self.base_url = base_url.rstrip("/")
        self.spool = spool
        self.timeout = timeout
        self.http = session or requests.Session()

    def post_json(self, path, body):
        try:
            resp = self.http.post(self.base_url + path, json=body, timeout=self.timeout)
        except requests.RequestException as e:
            raise DeliveryError(str(e)) from e
        if not resp.ok:
            raise DeliveryError(f"POST {path} -> {resp.status_code}")

    def get_json(self, path, params=None):
        try:
            resp = self.http.get(self.base_url + path, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise DeliveryError(str(e)) from e
        if not resp.ok:
            raise DeliveryError(f"GET {path} -> {resp.status_code}")
        try:
            return resp.json()
        except ValueError as e:
            raise DeliveryError(f"GET {path} returned invalid JSON") from e

    def send_beacon(self, path, body):
        try:
            self.spool.append(path, body)
        except OSError as e:
            logger.warning("[beacon] spool write failed: %s", e)
            return False
        return True
