"""
Page-level capture and the tracker service that wires it to delivery.

A ``Tracker`` is built explicitly by the host's bootstrap code with the three platform
capabilities; it owns its session identity, queue and timers. Nothing here is global.
"""
from __future__ import annotations

import logging
from typing import Optional

from ..config import settings
from ..events import EventEnvelope, InteractionEvent, LocationSignal, PageExit, PageView, Record, utcnow
from .delivery import DeliveryQueue
from .enrichment import EnrichmentResolver
from .platform import CLICK, HIDDEN, SCROLL, UNLOAD, ClickSample, ElementInfo, PageInfo, ScrollSample
from .session import SessionIdentity

logger = logging.getLogger(__name__)

TRACK_PATH = "/api/analytics/track"
MAX_ELEMENT_TEXT = 100

# checked in this order; Chrome UAs also contain "Safari", Edge UAs also contain "Chrome"
BROWSERS = ("Firefox", "Chrome", "Safari", "Edge")


def device_type(width: int) -> str:
    if width < 768:
        return "mobile"
    if width < 1024:
        return "tablet"
    return "desktop"


def browser_name(user_agent: str) -> str:
    for name in BROWSERS:
        if name in (user_agent or ""):
            return name
    return "Other"


def element_selector(el: ElementInfo) -> str:
    if el.id:
        return f"#{el.id}"
    classes = [c for c in (el.class_name or "").split() if c][:2]
    if classes:
        return "." + ".".join(classes)
    return el.tag_name.lower() if el.tag_name else "unknown"


def scroll_depth(sample: ScrollSample) -> int:
    scrollable = sample.document_height - sample.window_height
    if scrollable <= 0:
        return 100
    pct = round(sample.scroll_top / scrollable * 100)
    return int(min(max(pct, 0), 100))


class EventCapture:
    """Lifecycle of one PageView plus the click records produced while it is open."""

    def __init__(self, session_id: str, page: PageInfo, load_time: float):
        self.session_id = session_id
        self.page = page
        self.load_time = load_time
        self.max_scroll_depth = 0
        self.finalized = False
        self.page_view = PageView(
            session_id=session_id,
            page_path=page.path,
            page_title=page.title,
            device_type=device_type(page.viewport_width),
            browser=browser_name(page.user_agent),
            viewport_width=page.viewport_width,
            viewport_height=page.viewport_height,
        )

    def on_scroll(self, sample: ScrollSample) -> int:
        if not self.finalized:
            self.max_scroll_depth = max(self.max_scroll_depth, scroll_depth(sample))
        return self.max_scroll_depth

    def on_click(self, sample: ClickSample) -> InteractionEvent:
        # coordinates are read only; the click itself is never intercepted
        return InteractionEvent(
            session_id=self.session_id,
            event_type="click",
            element_selector=element_selector(sample.element),
            element_text=(sample.element.text or "")[:MAX_ELEMENT_TEXT],
            x_position=int(sample.x),
            y_position=int(sample.y),
            viewport_width=self.page.viewport_width,
            viewport_height=self.page.viewport_height,
            page_path=self.page.path,
        )

    def finalize(self, now: float, exit_page: bool = True) -> PageView:
        if not self.finalized:
            self.page_view = self.page_view.model_copy(update={
                "duration_seconds": max(int(round(now - self.load_time)), 0),
                "scroll_depth_percent": self.max_scroll_depth,
                "exit_page": exit_page,
            })
            self.finalized = True
        return self.page_view

    def exit_payload(self) -> PageExit:
        pv = self.page_view
        return PageExit(
            session_id=pv.session_id,
            page_path=pv.page_path,
            duration_seconds=pv.duration_seconds,
            scroll_depth_percent=pv.scroll_depth_percent,
            exit_page=pv.exit_page,
        )


class Tracker:
    def __init__(self, events, storage, transport, queue: Optional[DeliveryQueue] = None,
                 batch_size: int = settings.batch_size,
                 interval: float = settings.flush_interval_seconds):
        self.events = events
        self.transport = transport
        self.identity = SessionIdentity(storage, now=events.now)
        self.queue = queue or DeliveryQueue(transport, events, batch_size=batch_size, interval=interval)
        self.enrichment = EnrichmentResolver(transport, events)
        self.session = None
        self.capture: Optional[EventCapture] = None
        self._listening = False

    @property
    def session_id(self) -> str:
        return self.identity.get_or_create_session_id()

    def _queue(self, kind: str, record: Record) -> None:
        envelope = EventEnvelope(type=kind, data=record.wire(), timestamp=self.events.now() * 1000)
        self.queue.enqueue(envelope.model_dump())

    def start(self, page: PageInfo) -> None:
        self.session = self.identity.start(page)
        self._open_page(page)
        if self.identity.created:
            # once per session, on its first page load
            source = self.enrichment.classify_source(
                page.referrer, page.query_params, self.session.session_id, page.path, page.host)
            self._queue("trafficSource", source)
            self.enrichment.request_location(self.session.session_id, self._on_location)
        if not self._listening:
            self.events.on(SCROLL, self._on_scroll)
            self.events.on(CLICK, self._on_click)
            self.events.on(HIDDEN, self._on_hidden)
            self.events.on(UNLOAD, self._on_unload)
            self._listening = True
        self.queue.start()

    def _open_page(self, page: PageInfo) -> None:
        self.capture = EventCapture(self.session.session_id, page, self.events.now())
        self._queue("pageView", self.capture.page_view)

    def navigate(self, page: PageInfo) -> None:
        """In-tab route change: close the current page view and open the next one."""
        if self.capture is not None and not self.capture.finalized:
            self._queue("pageView", self.capture.finalize(self.events.now(), exit_page=False))
        self._open_page(page)
        self.queue.start()

    def _on_scroll(self, sample: ScrollSample) -> None:
        if self.capture is not None:
            self.capture.on_scroll(sample)

    def _on_click(self, sample: ClickSample) -> None:
        # clicks keep counting after the page view is frozen by a hidden tab
        if self.capture is not None:
            self._queue("interaction", self.capture.on_click(sample))

    def _on_location(self, signal: LocationSignal) -> None:
        self._queue("location", signal)

    def _on_hidden(self, _payload=None) -> None:
        self._leave()

    def _on_unload(self, _payload=None) -> None:
        self._leave()
        self.queue.stop()

    def _leave(self) -> None:
        """Freeze the page view once; beacon whatever is buffered on every leave signal."""
        if self.capture is None:
            return
        first = not self.capture.finalized
        if first:
            self.capture.finalize(self.events.now(), exit_page=True)
            self.session = self.session.model_copy(update={"ended_at": utcnow()})
            self.identity.save(self.session)
        self.queue.flush_on_unload()
        if first and not self.transport.send_beacon(TRACK_PATH, self.capture.exit_payload().wire()):
            logger.warning("[capture] exit beacon refused for %s", self.capture.page.path)
