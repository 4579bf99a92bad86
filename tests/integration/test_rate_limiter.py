"""
Integration tests for the per-client rate limiter
"""

from fastapi.testclient import TestClient

from orchestrator.rate_limiter import RateLimiter


class TestTokenBucket:
    """Token bucket admission"""

    def test_fresh_identifier_gets_full_capacity(self, clock):
        """Test that exactly `capacity` requests pass back to back"""
        limiter = RateLimiter(capacity=100, refill_rate=10, clock=clock)

        admitted = [limiter.allow("1.2.3.4") for _ in range(101)]

        assert admitted[:100] == [True] * 100
        assert admitted[100] is False

    def test_tokens_regenerate_at_refill_rate(self, clock):
        """Test that an empty bucket admits refill_rate requests per second"""
        limiter = RateLimiter(capacity=100, refill_rate=10, clock=clock)
        for _ in range(100):
            limiter.allow("1.2.3.4")
        assert limiter.allow("1.2.3.4") is False

        clock.advance(0.5)
        admitted = sum(limiter.allow("1.2.3.4") for _ in range(10))

        assert admitted == 5

    def test_refill_is_capped_at_capacity(self, clock):
        limiter = RateLimiter(capacity=3, refill_rate=10, clock=clock)
        limiter.allow("a")

        clock.advance(3600)

        assert [limiter.allow("a") for _ in range(4)] == [True, True, True, False]
        assert limiter.bucket("a").tokens == 0

    def test_buckets_are_per_identifier(self, clock):
        """Test that one client exhausting its bucket does not affect another"""
        limiter = RateLimiter(capacity=2, refill_rate=1, clock=clock)
        limiter.allow("a")
        limiter.allow("a")

        assert limiter.allow("a") is False
        assert limiter.allow("b") is True

    def test_buckets_are_created_lazily(self, clock):
        limiter = RateLimiter(clock=clock)

        assert limiter.bucket("never-seen") is None
        limiter.allow("seen")
        assert limiter.bucket("seen").tokens == 99


class TestRateLimitMiddleware:
    """Rate limiting at the HTTP boundary"""

    def test_101st_rapid_request_is_rejected(self, make_app):
        """Test that a fresh client gets 100 requests and then a 429"""
        client = TestClient(make_app())

        statuses = [client.get("/health").status_code for _ in range(100)]
        rejected = client.get("/health")

        assert statuses == [200] * 100
        assert rejected.status_code == 429
        assert rejected.json() == {"detail": "Rate limit exceeded"}
        assert rejected.headers["X-Edge-Region"] == "IAD"

    def test_client_identified_by_edge_header(self, make_app):
        """Test that CF-Connecting-IP separates clients behind the same socket"""
        client = TestClient(make_app())
        for _ in range(100):
            client.get("/health", headers={"CF-Connecting-IP": "10.0.0.1"})

        assert client.get("/health", headers={"CF-Connecting-IP": "10.0.0.1"}).status_code == 429
        assert client.get("/health", headers={"CF-Connecting-IP": "10.0.0.2"}).status_code == 200

    def test_limit_applies_before_authentication(self, make_app):
        """Test that unauthenticated requests still spend tokens"""
        client = TestClient(make_app())
        for _ in range(100):
            assert client.get("/api/tasks").status_code == 401

        assert client.get("/api/tasks").status_code == 429

    def test_rejection_carries_cors_headers(self, make_app):
        """Test that a browser client can read the 429 body"""
        client = TestClient(make_app())
        origin = {"Origin": "https://app.example.com"}
        for _ in range(100):
            client.get("/health", headers=origin)

        rejected = client.get("/health", headers=origin)

        assert rejected.status_code == 429
        assert rejected.headers["access-control-allow-origin"] in ("*", "https://app.example.com")
