from fnmatch import fnmatch

import redis

from fisioflow import gamification
from fisioflow.cache import Cache
from fisioflow.gamification import award_points, leaderboard
from fisioflow.patients import create_patient


class FakeRedis:
    def __init__(self):
        self.store = {}
        self.ttls = {}

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, ex=None):
        self.store[key] = value
        self.ttls[key] = ex

    def delete(self, *keys):
        for key in keys:
            self.store.pop(key, None)

    def scan_iter(self, match="*"):
        return [k for k in list(self.store) if fnmatch(k, match)]


class DownRedis:
    def get(self, key):
        raise redis.ConnectionError("down")

    def set(self, key, value, ex=None):
        raise redis.ConnectionError("down")

    def scan_iter(self, match="*"):
        raise redis.ConnectionError("down")


def test_disabled_cache_is_pass_through():
    c = Cache(None)
    calls = []
    assert c.remember("k", lambda: calls.append(1) or "v") == "v"
    assert c.remember("k", lambda: calls.append(1) or "v") == "v"
    assert len(calls) == 2
    assert c.invalidate("*") == 0
    assert c.enabled is False


def test_remember_and_invalidate():
    client = FakeRedis()
    c = Cache(client, default_ttl=60)

    assert c.remember("patients:all:0", lambda: [{"id": "a"}]) == [{"id": "a"}]
    assert c.remember("patients:all:0", lambda: []) == [{"id": "a"}]
    assert client.ttls["patients:all:0"] == 60

    c.set("dashboard:2030-01-01", {"x": 1}, ttl=120)
    assert client.ttls["dashboard:2030-01-01"] == 120

    assert c.invalidate("patients:*") == 1
    assert c.get("patients:all:0") is None
    assert c.get("dashboard:2030-01-01") == {"x": 1}


def test_redis_errors_behave_like_a_miss():
    c = Cache(DownRedis())
    assert c.get("k") is None
    assert c.set("k", 1) is False
    assert c.invalidate("k*") == 0
    assert c.remember("k", lambda: 42) == 42


def test_awarding_points_refreshes_cached_leaderboard(monkeypatch):
    monkeypatch.setattr(gamification, "cache", Cache(FakeRedis()))
    pid = create_patient("Alice")

    assert leaderboard()[0]["points"] == 0
    award_points(pid, 100)
    assert leaderboard()[0]["points"] == 100
