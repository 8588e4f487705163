import threading

import pytest
import requests

from pulsemap.client.platform import (DeliveryError, HttpTransport, ManualEvents, PageInfo, Spool,
                                      ThreadedEvents)


def test_page_info_parts():
    p = PageInfo(url="https://shop.test/cart?utm_source=a&utm_source=b&gclid=1")
    assert p.path == "/cart"
    assert p.host == "shop.test"
    assert p.query_params == {"utm_source": "a", "gclid": "1"}
    assert PageInfo(url="https://shop.test").path == "/"


def test_manual_events_timers_and_deferred():
    ev = ManualEvents()
    ticks, later = [], []
    handle = ev.set_interval(10, lambda: ticks.append(ev.now()))
    ev.defer(lambda: later.append("ran"))
    ev.advance(25)
    assert ticks == [10, 20]
    assert later == []
    ev.run_pending()
    assert later == ["ran"]
    ev.clear_interval(handle)
    ev.advance(100)
    assert ticks == [10, 20]


def test_threaded_events_signals_and_deferred():
    ev = ThreadedEvents()
    seen = []
    ev.on("click", seen.append)
    ev.emit("click", "a")
    ev.emit("scroll", "ignored")
    assert seen == ["a"]
    ran = threading.Event()
    ev.defer(ran.set)
    try:
        assert ran.wait(5)
    finally:
        ev.shutdown()


class Resp:
    def __init__(self, status, body=None):
        self.status_code = status
        self.ok = 200 <= status < 300
        self._body = body

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


class Session:
    def __init__(self, resp=None, exc=None):
        self.resp, self.exc = resp, exc
        self.calls = []

    def post(self, url, json=None, timeout=None):
        self.calls.append(("POST", url, json))
        if self.exc:
            raise self.exc
        return self.resp

    def get(self, url, params=None, timeout=None):
        self.calls.append(("GET", url, params))
        if self.exc:
            raise self.exc
        return self.resp


def transport(tmp_path, **kw):
    return HttpTransport("http://collector.test/", Spool(tmp_path / "s.jsonl"), session=Session(**kw))


def test_post_ok(tmp_path):
    t = transport(tmp_path, resp=Resp(202))
    t.post_json("/api/analytics/batch", {"events": [1]})
    assert t.http.calls == [("POST", "http://collector.test/api/analytics/batch", {"events": [1]})]


@pytest.mark.parametrize("kw", [{"resp": Resp(503)}, {"exc": requests.ConnectionError("down")}])
def test_post_failures_raise_delivery_error(tmp_path, kw):
    with pytest.raises(DeliveryError):
        transport(tmp_path, **kw).post_json("/x", {})


def test_get_json(tmp_path):
    assert transport(tmp_path, resp=Resp(200, {"a": 1})).get_json("/loc") == {"a": 1}
    with pytest.raises(DeliveryError):
        transport(tmp_path, resp=Resp(200)).get_json("/loc")


def test_beacon_goes_to_spool(tmp_path):
    t = transport(tmp_path, exc=AssertionError("beacons must not touch the network"))
    assert t.send_beacon("/api/analytics/track", {"sessionId": "s1"}) is True
    [entry] = t.spool.read()
    assert entry["url"] == "/api/analytics/track"
    assert entry["body"] == {"sessionId": "s1"}


def test_beacon_refused_when_spool_unwritable(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    t = HttpTransport("http://c", Spool(blocker / "sub" / "s.jsonl"), session=Session())
    assert t.send_beacon("/x", {}) is False
