import pytest

pytest.importorskip("fastapi")
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.auth import security
from app.services import rate_limit
from app.services.rate_limit import ActionThrottle, rate_limited


class Ticker:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_window_limits_and_recovers():
    ticker = Ticker()
    throttle = ActionThrottle({"letter_send": (2, 60)}, clock=ticker)

    assert throttle.check("letter_send", "u1").remaining == 1
    assert throttle.check("letter_send", "u1").allowed
    blocked = throttle.check("letter_send", "u1")
    assert not blocked.allowed
    assert blocked.retry_after_seconds == 60
    assert throttle.check("letter_send", "u2").allowed

    ticker.now += 61
    assert throttle.check("letter_send", "u1").allowed


def test_actions_are_counted_separately():
    throttle = ActionThrottle({"coupon": (1, 60), "report": (1, 3600)}, clock=Ticker())
    assert throttle.check("coupon", "u1").allowed
    assert throttle.check("report", "u1").allowed
    assert not throttle.check("coupon", "u1").allowed


def test_unknown_action_is_rejected():
    throttle = ActionThrottle({"coupon": (1, 60)}, clock=Ticker())
    with pytest.raises(ValueError):
        throttle.check("poke", "u1")
    with pytest.raises(ValueError):
        rate_limited("poke")


def test_idle_buckets_are_swept():
    ticker = Ticker()
    throttle = ActionThrottle({"message_send": (5, 60)}, clock=ticker)
    for i in range(50):
        throttle.check("message_send", f"user-{i}")
    assert throttle.tracked_buckets() == 50

    ticker.now += 30
    throttle.check("message_send", "late")
    throttle.sweep()
    assert throttle.tracked_buckets() == 51

    ticker.now += 31
    throttle.sweep()
    assert throttle.tracked_buckets() == 1


def test_periodic_sweep_keeps_bucket_count_bounded(monkeypatch):
    monkeypatch.setattr(rate_limit, "SWEEP_EVERY", 10)
    ticker = Ticker()
    throttle = ActionThrottle({"message_send": (5, 60)}, clock=ticker)
    for i in range(100):
        ticker.now += 61
        throttle.check("message_send", f"user-{i}")
    assert throttle.tracked_buckets() <= 10


def test_dependency_buckets_by_signed_in_user(monkeypatch):
    monkeypatch.setattr(security, "JWT_SECRET", "rate-limit-secret")
    monkeypatch.setattr(security, "JWT_AUDIENCE", "")
    monkeypatch.setattr(rate_limit, "throttle", ActionThrottle({"coupon": (1, 60)}))
    app = FastAPI()

    @app.post("/redeem", dependencies=[rate_limited("coupon")])
    def redeem():
        return {"ok": True}

    client = TestClient(app)
    alice = {"Authorization": f"Bearer {security.create_access_token('alice', 'alice@example.com')}"}
    alice_again = {"Authorization": f"Bearer {security.create_access_token('alice', 'alice@example.com')}"}
    bob = {"Authorization": f"Bearer {security.create_access_token('bob', 'bob@example.com')}"}

    assert client.post("/redeem").status_code == 401
    assert client.post("/redeem", headers=alice).status_code == 200
    limited = client.post("/redeem", headers=alice_again)
    assert limited.status_code == 429
    assert "Retry-After" in limited.headers
    assert client.post("/redeem", headers=bob).status_code == 200
