from starlette.requests import Request

from rate_limit import FixedWindowRateLimiter, get_client_identifier


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def make_request(headers):
    raw = [(k.lower().encode(), v.encode()) for k, v in headers.items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw})


def test_denies_after_limit_with_retry_after():
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(clock=clock)

    for _ in range(5):
        assert limiter.check("login:1.2.3.4", 5, 900).allowed

    result = limiter.check("login:1.2.3.4", 5, 900)
    assert not result.allowed
    assert result.retry_after == 900

    clock.now += 600
    result = limiter.check("login:1.2.3.4", 5, 900)
    assert not result.allowed
    assert result.retry_after == 300


def test_window_resets_after_expiry():
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(clock=clock)
    for _ in range(3):
        limiter.check("k", 3, 60)
    assert not limiter.check("k", 3, 60).allowed

    clock.now += 61
    assert limiter.check("k", 3, 60).allowed
    assert limiter.bucket("k").count == 1


def test_retry_after_is_at_least_one_second():
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(clock=clock)
    limiter.check("k", 1, 10)
    clock.now += 9.9
    assert limiter.check("k", 1, 10).retry_after == 1


def test_keys_are_independent():
    limiter = FixedWindowRateLimiter(clock=FakeClock())
    limiter.check("a", 1, 60)
    assert not limiter.check("a", 1, 60).allowed
    assert limiter.check("b", 1, 60).allowed


def test_reset_clears_buckets():
    limiter = FixedWindowRateLimiter(clock=FakeClock())
    limiter.check("a", 1, 60)
    limiter.reset()
    assert limiter.bucket("a") is None
    assert limiter.check("a", 1, 60).allowed


def test_client_identifier_prefers_first_forwarded_address():
    req = make_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1", "X-Real-IP": "10.0.0.2"})
    assert get_client_identifier(req) == "203.0.113.7"


def test_client_identifier_fallbacks():
    assert get_client_identifier(make_request({"X-Real-IP": "10.0.0.2"})) == "10.0.0.2"
    assert get_client_identifier(make_request({"CF-Connecting-IP": "198.51.100.1"})) == "198.51.100.1"
    assert get_client_identifier(make_request({})) == "unknown"
