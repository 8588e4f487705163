import copy

import pytest

from pulsemap.client.platform import DeliveryError, ManualEvents, MemoryStorage


class FakeTransport:
    def __init__(self):
        self.posts = []
        self.gets = []
        self.beacons = []
        self.fail_posts = False
        self.beacon_ok = True
        self.responses = {}
        self.on_post = None

    def post_json(self, path, body):
        self.posts.append((path, copy.deepcopy(body)))
        if self.on_post:
            self.on_post()
        if self.fail_posts:
            raise DeliveryError("connection refused")

    def get_json(self, path, params=None):
        self.gets.append((path, params))
        resp = self.responses.get(path)
        if isinstance(resp, Exception):
            raise resp
        if resp is None:
            raise DeliveryError(f"GET {path} -> 404")
        return copy.deepcopy(resp)

    def send_beacon(self, path, body):
        self.beacons.append((path, copy.deepcopy(body)))
        return self.beacon_ok


class BrokenStorage:
    def get_item(self, key):
        raise OSError("storage disabled")

    def set_item(self, key, value):
        raise OSError("storage disabled")


@pytest.fixture
def events():
    return ManualEvents(start=1_000.0)


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def broken_storage():
    return BrokenStorage()
