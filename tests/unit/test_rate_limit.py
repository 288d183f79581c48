"""
Unit tests for the moving-window rate limiter.
"""
import inspect
import time

import pytest
from limits.storage import MemoryStorage
from starlette.requests import Request

from dealforge.exceptions import RateLimitExceededError
from dealforge.middleware.rate_limit import (
    RATE_LIMITS,
    RateLimitRegistry,
    get_rate_limit_identifier,
    get_rate_limiter,
    rate_limit,
    reset_rate_limiter,
)


def make_request(headers=None, client=None) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    scope = {"type": "http", "method": "POST", "path": "/api/v1/deals", "headers": raw}
    if client:
        scope["client"] = client
    return Request(scope)


@pytest.fixture
def limiter():
    return RateLimitRegistry(limits={"write": "3/minute", "heavy": "1/minute"})


class TestMovingWindow:
    """Tests for admission decisions."""

    def test_admits_up_to_limit(self, limiter):
        """Test requests within the budget are admitted."""
        results = [limiter.check("10.0.0.1", "write") for _ in range(3)]

        assert all(r.success for r in results)
        assert [r.remaining for r in results] == [2, 1, 0]
        assert all(r.limit == 3 for r in results)

    def test_rejects_over_limit(self, limiter):
        """Test the request past the budget is rejected until the window resets."""
        for _ in range(3):
            limiter.check("10.0.0.1", "write")

        result = limiter.check("10.0.0.1", "write")

        assert result.success is False
        assert result.remaining == 0
        assert time.time() < result.reset_at <= time.time() + 61

    def test_window_moves(self):
        """Test old admissions fall out of the window."""
        limiter = RateLimitRegistry(limits={"write": "2/second"})
        limiter.check("10.0.0.1", "write")
        limiter.check("10.0.0.1", "write")
        assert limiter.check("10.0.0.1", "write").success is False

        time.sleep(1.1)

        assert limiter.check("10.0.0.1", "write").success is True

    def test_identifiers_are_independent(self, limiter):
        """Test one caller's budget does not affect another."""
        for _ in range(3):
            limiter.check("10.0.0.1", "write")

        assert limiter.check("10.0.0.2", "write").success is True

    def test_limit_types_are_independent(self, limiter):
        """Test each operation class has its own window."""
        for _ in range(3):
            limiter.check("10.0.0.1", "write")

        assert limiter.check("10.0.0.1", "heavy").success is True
        assert limiter.check("10.0.0.1", "heavy").success is False

    def test_unknown_limit_type(self, limiter):
        """Test an unconfigured limit type raises KeyError."""
        with pytest.raises(KeyError):
            limiter.check("10.0.0.1", "nope")


class TestStorage:
    """Tests for the counter storage."""

    def test_default_configuration(self):
        """Test every operation class is configured per minute."""
        registry = RateLimitRegistry()

        assert registry.limit_types == set(RATE_LIMITS)
        assert registry.check("a", "pipeline").limit == 5

    def test_injected_storage_is_used(self):
        """Test registries sharing a storage share windows."""
        storage = MemoryStorage()
        first = RateLimitRegistry(limits={"write": "1/minute"}, storage=storage)
        second = RateLimitRegistry(limits={"write": "1/minute"}, storage=storage)

        assert first.check("a", "write").success is True
        assert second.check("a", "write").success is False

    def test_clear_forgets_one_window(self, limiter):
        """Test clearing a caller reopens only that caller's window."""
        limiter.check("a", "heavy")
        limiter.check("b", "heavy")

        limiter.clear("a", "heavy")

        assert limiter.check("a", "heavy").success is True
        assert limiter.check("b", "heavy").success is False

    def test_reset_drops_everything(self, limiter):
        """Test reset empties the storage."""
        limiter.check("a", "heavy")

        limiter.reset()

        assert limiter.check("a", "heavy").success is True


class TestIdentifier:
    """Tests for caller identification."""

    def test_forwarded_for_first_hop(self):
        """Test the first X-Forwarded-For hop wins."""
        request = make_request({"X-Forwarded-For": "1.2.3.4, 5.6.7.8", "X-Real-IP": "9.9.9.9"})

        assert get_rate_limit_identifier(request) == "1.2.3.4"

    def test_real_ip_fallback(self):
        """Test X-Real-IP is used without X-Forwarded-For."""
        assert get_rate_limit_identifier(make_request({"X-Real-IP": " 9.9.9.9 "})) == "9.9.9.9"

    def test_peer_address_fallback(self):
        """Test callers without proxy headers are keyed by socket peer."""
        request = make_request(client=("203.0.113.5", 40000))

        assert get_rate_limit_identifier(request) == "203.0.113.5"


class TestDependency:
    """Tests for the FastAPI dependency."""

    def test_unknown_type_rejected_at_build(self):
        """Test building a dependency for an unknown type fails fast."""
        with pytest.raises(ValueError):
            rate_limit("bogus")

    def test_dependency_raises_when_exhausted(self):
        """Test the dependency raises RateLimitExceededError."""
        reset_rate_limiter(RateLimitRegistry(limits={"pipeline": "1/minute"}))
        check = rate_limit("pipeline")
        request = make_request({"X-Real-IP": "7.7.7.7"})

        check(request)
        with pytest.raises(RateLimitExceededError) as exc_info:
            check(request)

        assert exc_info.value.limit == 1
        assert exc_info.value.remaining == 0
        assert exc_info.value.retry_after >= 1

    def test_get_rate_limiter_is_singleton(self):
        """Test the process-wide registry is reused."""
        assert get_rate_limiter() is get_rate_limiter()

    def test_package_keeps_submodule(self):
        """Test the middleware package does not shadow the rate_limit submodule."""
        import dealforge.middleware as middleware

        assert inspect.ismodule(middleware.rate_limit)
        assert middleware.rate_limit.reset_rate_limiter is reset_rate_limiter
