from portal import rate_limiter
from portal.rate_limiter import check_rate_limit
from tests.conftest import auth


def test_fixed_window_counts_and_blocks(fake_redis):
    assert check_rate_limit("rl:test", 2, 60, fake_redis) == (True, 1, 60)
    allowed, count, ttl = check_rate_limit("rl:test", 2, 60, fake_redis)
    assert (allowed, count) == (True, 2)
    allowed, count, ttl = check_rate_limit("rl:test", 2, 60, fake_redis)
    assert (allowed, count, ttl) == (False, 2, 60)


def test_key_without_expiry_restarts_window(fake_redis):
    fake_redis.store["rl:stale"] = "5"
    allowed, count, ttl = check_rate_limit("rl:stale", 10, 30, fake_redis)
    assert allowed
    assert count == 6
    assert ttl == 30
    assert fake_redis.expiry["rl:stale"] == 30


def test_webhook_limit_returns_429_with_headers(client, fake_redis):
    fake_redis.set("rate_limit:webhook:global", 100, ex=42)
    r = client.post("/webhooks/acuity", content=b"action=changed&id=1")
    assert r.status_code == 429
    assert r.json()["code"] == "RATE_LIMIT_EXCEEDED"
    assert r.headers["Retry-After"] == "42"
    assert r.headers["X-RateLimit-Remaining"] == "0"


def test_successful_requests_carry_rate_limit_headers(client, seed):
    r = client.get(f"/api/documents/booking/{seed.booking_id}", headers=auth("referrer-token"))
    assert r.status_code == 200
    assert "X-RateLimit-Limit" not in r.headers

    r = client.post("/webhooks/acuity", content=b"action=changed")
    assert r.headers["X-RateLimit-Limit"] == "100"
    assert r.headers["X-RateLimit-Remaining"] == "99"


def test_limiter_fails_open_when_redis_is_down(client, monkeypatch):
    def unavailable():
        raise ConnectionError("redis down")

    monkeypatch.setattr(rate_limiter, "get_redis_client", unavailable)
    r = client.post("/webhooks/acuity", content=b"action=unknown")
    assert r.status_code == 200
    assert r.json()["success"] is True


def test_admin_downloads_skip_the_limit(client, seed, fake_redis):
    r = client.get("/api/documents/00000000-0000-0000-0000-000000000000", headers=auth("admin-token"))
    assert r.status_code == 404
    assert not any(key.startswith("rate_limit:document_download") for key in fake_redis.store)
