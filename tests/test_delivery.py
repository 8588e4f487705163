import threading
import time

from pulsemap.client.delivery import BATCH_PATH, DeliveryQueue
from pulsemap.client.platform import ThreadedEvents


def envelope(i):
    return {"type": "interaction", "data": {"n": i}, "timestamp": float(i)}


def make_queue(transport, events, **kw):
    kw.setdefault("batch_size", 10)
    kw.setdefault("interval", 30.0)
    q = DeliveryQueue(transport, events, **kw)
    q.start()
    return q


def test_tenth_enqueue_flushes_without_timer(transport, events):
    q = make_queue(transport, events)
    for i in range(10):
        q.enqueue(envelope(i))
    assert len(transport.posts) == 1
    path, body = transport.posts[0]
    assert path == BATCH_PATH
    assert [e["data"]["n"] for e in body["events"]] == list(range(10))
    assert len(q) == 0


def test_nine_enqueues_wait_for_the_timer(transport, events):
    q = make_queue(transport, events)
    for i in range(9):
        q.enqueue(envelope(i))
    events.advance(29.9)
    assert transport.posts == []
    events.advance(0.1)
    assert len(transport.posts) == 1
    assert len(transport.posts[0][1]["events"]) == 9


def test_timer_skips_empty_buffer(transport, events):
    make_queue(transport, events)
    events.advance(95)
    assert transport.posts == []


def test_failed_flush_requeues_batch_in_order_at_front(transport, events):
    q = make_queue(transport, events)
    transport.fail_posts = True
    for i in range(10):
        q.enqueue(envelope(i))
    assert len(transport.posts) == 1
    assert [e["data"]["n"] for e in q.buffer] == list(range(10))

    transport.fail_posts = False
    q.enqueue(envelope(10))
    assert len(transport.posts) == 2
    assert [e["data"]["n"] for e in transport.posts[1][1]["events"]] == list(range(11))
    assert len(q) == 0


def test_retry_on_next_tick(transport, events):
    q = make_queue(transport, events, batch_size=50)
    q.enqueue(envelope(0))
    transport.fail_posts = True
    events.advance(30)
    assert len(q) == 1
    transport.fail_posts = False
    events.advance(30)
    assert len(transport.posts) == 2
    assert len(q) == 0


def test_flush_is_not_reentered(transport, events):
    q = make_queue(transport, events, batch_size=2)

    def trigger_more():
        # events arriving while a flush is in flight only accumulate
        if len(transport.posts) == 1:
            q.enqueue(envelope(100))
            q.enqueue(envelope(101))
            q.enqueue(envelope(102))

    transport.on_post = trigger_more
    q.enqueue(envelope(0))
    q.enqueue(envelope(1))
    assert len(transport.posts) == 1
    assert [e["data"]["n"] for e in q.buffer] == [100, 101, 102]


def test_failed_flush_keeps_events_that_arrived_during_it(transport, events):
    q = make_queue(transport, events, batch_size=2)
    transport.fail_posts = True
    transport.on_post = lambda: q.buffer.append(envelope(99)) if len(transport.posts) == 1 else None
    q.enqueue(envelope(0))
    q.enqueue(envelope(1))
    assert [e["data"]["n"] for e in q.buffer] == [0, 1, 99]


def test_buffer_cap_drops_oldest(transport, events):
    q = make_queue(transport, events, max_buffered=12)
    transport.fail_posts = True
    for i in range(15):
        q.enqueue(envelope(i))
    assert q.dropped == 3
    assert [e["data"]["n"] for e in q.buffer] == list(range(3, 15))


def test_unload_flush_uses_beacon_and_keeps_timer(transport, events):
    q = make_queue(transport, events)
    for i in range(3):
        q.enqueue(envelope(i))
    assert q.flush_on_unload() is True
    assert transport.posts == []
    path, body = transport.beacons[0]
    assert path == BATCH_PATH
    assert [e["data"]["n"] for e in body["events"]] == [0, 1, 2]
    q.enqueue(envelope(3))
    events.advance(30)
    assert [e["data"]["n"] for e in transport.posts[0][1]["events"]] == [3]
    q.stop()
    q.enqueue(envelope(4))
    events.advance(120)
    assert len(transport.posts) == 1


def test_refused_unload_beacon_is_not_retried(transport, events):
    q = make_queue(transport, events)
    transport.beacon_ok = False
    q.enqueue(envelope(0))
    assert q.flush_on_unload() is False
    assert len(q) == 0
    assert len(transport.beacons) == 1


def test_unload_with_empty_buffer_sends_nothing(transport, events):
    q = make_queue(transport, events)
    assert q.flush_on_unload() is None
    assert transport.beacons == []


def test_threaded_timer_flushes_in_background(transport):
    events = ThreadedEvents()
    done = threading.Event()
    transport.on_post = done.set
    q = make_queue(transport, events, interval=0.02)
    try:
        q.enqueue(envelope(0))
        assert done.wait(5)
    finally:
        q.stop()
        events.shutdown()
    assert transport.posts[0][1]["events"] == [envelope(0)]


def test_concurrent_enqueue_loses_nothing(transport):
    events = ThreadedEvents()
    q = make_queue(transport, events, batch_size=7, interval=0.001, max_buffered=100_000)

    def producer(base):
        for i in range(250):
            q.enqueue(envelope(base + i))

    threads = [threading.Thread(target=producer, args=(k * 1000,)) for k in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    q.stop()

    def sent():
        return [e["data"]["n"] for _, body in list(transport.posts) for e in body["events"]]

    # a timer flush may still be in flight on its own thread
    deadline = time.time() + 5
    while len(sent()) < 1000 and time.time() < deadline:
        q.flush()
        time.sleep(0.005)
    events.shutdown()

    assert sorted(sent()) == sorted(k * 1000 + i for k in range(4) for i in range(250))
    assert q.dropped == 0
