"""
Synthetic visitors. Each persona drives a real ``Tracker`` on a manual clock and returns
the envelopes it would have shipped, ready to post to the batch endpoint.
"""
from __future__ import annotations

import random
from typing import Dict, List

from ..client.capture import Tracker
from ..client.platform import (CLICK, SCROLL, UNLOAD, ClickSample, ElementInfo, ManualEvents,
                               MemoryStorage, PageInfo, ScrollSample)

SITE = "https://example.test"


class CollectingTransport:
    """Keeps every batch and beacon instead of sending it."""

    def __init__(self, location=None):
        self.envelopes: List[Dict] = []
        self.beacons: List[Dict] = []
        self.location = location or {"countryCode": "VN", "countryName": "Vietnam", "city": "Hanoi"}

    def post_json(self, path, body):
        self.envelopes.extend(body["events"])

    def get_json(self, path, params=None):
        return dict(self.location)

    def send_beacon(self, path, body):
        if "events" in body:
            self.envelopes.extend(body["events"])
        else:
            self.beacons.append(body)
        return True


def _visit(pages, referrer, width, height, steps, rng, click_at, ua):
    events = ManualEvents(start=1_700_000_000.0 + rng.random() * 1e5)
    transport = CollectingTransport()
    tracker = Tracker(events, MemoryStorage(), transport)
    tracker.start(PageInfo(url=SITE + pages[0], title=pages[0], referrer=referrer, user_agent=ua,
                           viewport_width=width, viewport_height=height))
    events.run_pending()
    doc_height = height * 6
    top = 0
    for page in pages:
        if page != pages[0]:
            tracker.navigate(PageInfo(url=SITE + page, title=page, user_agent=ua,
                                      viewport_width=width, viewport_height=height))
            top = 0
        for i in range(steps):
            events.advance(rng.uniform(0.5, 2.0))
            top = min(top + rng.randint(40, 240), doc_height - height)
            events.emit(SCROLL, ScrollSample(top, doc_height, height))
            hit = click_at(i, rng)
            if hit:
                x, y, el = hit
                events.emit(CLICK, ClickSample(x, y, el))
    events.emit(UNLOAD)
    return transport.envelopes


CHROME = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0 Safari/537.36"
IPHONE = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"


def reader(rng=None) -> List[Dict]:
    """Steady scroll from organic search, few clicks on the next link."""
    rng = rng or random.Random()
    def click(i, r):
        if i % 15 == 10:
            return 600 + r.randint(-5, 5), 400 + r.randint(-5, 5), ElementInfo("a", "next", "", "Next")
    return _visit(["/", "/solutions/solar"], "https://www.google.com/search?q=solar",
                  1440, 900, 30, rng, click, CHROME)


def skimmer(rng=None) -> List[Dict]:
    """Fast scroll bursts on mobile, one CTA tap."""
    rng = rng or random.Random()
    def click(i, r):
        if i == 5:
            return 180 + r.randint(-20, 20), 600 + r.randint(-20, 20), ElementInfo("button", "cta", "btn primary", "Get a quote")
    return _visit(["/"], "https://www.facebook.com/", 390, 844, 12, rng, click, IPHONE)


def rager(rng=None) -> List[Dict]:
    """Rage-click clusters on a dead element."""
    rng = rng or random.Random()
    def click(i, r):
        if i % 4 in (1, 2, 3):
            return 300 + r.randint(-3, 3), 600 + r.randint(-3, 3), ElementInfo("div", "", "card disabled", "Coming soon")
    return _visit(["/projects"], "", 1280, 800, 20, rng, click, CHROME)


def form_lost(rng=None) -> List[Dict]:
    """Dead clicks on form labels, arrived from a newsletter."""
    rng = rng or random.Random()
    def click(i, r):
        if i % 6 == 3:
            return 705 + r.randint(-3, 3), 425 + r.randint(-3, 3), ElementInfo("label", "name", "", "Your name")
    return _visit(["/contact?utm_medium=email&utm_campaign=spring"], "https://mail.google.com/",
                  1024, 768, 18, rng, click, CHROME)
