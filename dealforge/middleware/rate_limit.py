"""
Rate limiting for API protection.

Moving-window admission control keyed by caller identity and operation
class, built on the ``limits`` strategies that slowapi uses. Each
operation class has an independent window. Counters live in a
``limits`` storage: in-process memory by default, where entries expire
with their window, or a shared Redis backend when
``RATE_LIMIT_STORAGE_URI`` points at one.
"""
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import structlog
from fastapi import Request
from limits import RateLimitItem, parse
from limits.storage import Storage, storage_from_string
from limits.strategies import MovingWindowRateLimiter
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from dealforge.config import get_settings
from dealforge.exceptions import RateLimitExceededError

logger = structlog.get_logger(__name__)


# Rate limit configurations per operation class
RATE_LIMITS: Dict[str, str] = {
    "general": "200/minute",    # reads
    "write": "60/minute",       # mutations
    "heavy": "10/minute",       # regeneration
    "pipeline": "5/minute",     # pipeline triggers
    "webhook": "500/minute",
}


@dataclass
class RateLimitResult:
    """Outcome of a single admission check."""
    success: bool
    remaining: int
    reset_at: float  # epoch seconds
    limit: int


class RateLimitRegistry:
    """
    Process-scoped owner of the rate limit windows.

    Rejected requests are not recorded by the moving-window strategy, so a
    caller hammering a closed window does not extend its own lockout.
    """

    def __init__(
        self,
        limits: Optional[Dict[str, str]] = None,
        storage: Optional[Storage] = None,
        storage_uri: str = "memory://",
    ):
        self._items: Dict[str, RateLimitItem] = {
            name: parse(value) for name, value in (limits or RATE_LIMITS).items()
        }
        self._storage = storage or storage_from_string(storage_uri)
        self._strategy = MovingWindowRateLimiter(self._storage)

    @property
    def limit_types(self):
        return set(self._items)

    def check(self, identifier: str, limit_type: str = "general") -> RateLimitResult:
        """
        Admit or reject one request.

        Raises:
            KeyError: if limit_type is not configured.
        """
        item = self._items[limit_type]
        admitted = self._strategy.hit(item, limit_type, identifier)
        stats = self._strategy.get_window_stats(item, limit_type, identifier)
        return RateLimitResult(
            success=admitted,
            remaining=stats.remaining,
            reset_at=float(stats.reset_time),
            limit=item.amount,
        )

    def clear(self, identifier: str, limit_type: str) -> None:
        """Forget one caller's window for one operation class."""
        self._strategy.clear(self._items[limit_type], limit_type, identifier)

    def reset(self) -> None:
        """Drop every window held by the storage."""
        self._storage.reset()


_rate_limiter: Optional[RateLimitRegistry] = None
_rate_limiter_lock = threading.Lock()


def get_rate_limiter() -> RateLimitRegistry:
    """Get the process-wide registry, creating it on first use."""
    global _rate_limiter
    if _rate_limiter is None:
        with _rate_limiter_lock:
            if _rate_limiter is None:
                settings = get_settings()
                _rate_limiter = RateLimitRegistry(storage_uri=settings.rate_limit_storage_uri)
                logger.info("rate_limiter_created", storage=settings.rate_limit_storage_uri.split(":")[0])
    return _rate_limiter


def reset_rate_limiter(limiter: Optional[RateLimitRegistry] = None) -> None:
    """Replace (or clear) the process-wide registry."""
    global _rate_limiter
    _rate_limiter = limiter


def get_rate_limit_identifier(request: Request) -> str:
    """
    Get client identifier for rate limiting.

    First X-Forwarded-For hop, then X-Real-IP, then the socket peer.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("X-Real-IP")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return get_remote_address(request)


def rate_limit(limit_type: str) -> Callable[[Request], None]:
    """
    Build a FastAPI dependency enforcing the given operation class.

    Usage:
        @router.post("/x", dependencies=[Depends(rate_limit("write"))])
    """
    if limit_type not in RATE_LIMITS:
        raise ValueError(f"Unknown rate limit type: {limit_type}")

    def dependency(request: Request) -> None:
        identifier = get_rate_limit_identifier(request)
        result = get_rate_limiter().check(identifier, limit_type)
        if not result.success:
            retry_after = max(1, int(round(result.reset_at - time.time())))
            logger.warning(
                "rate_limit_exceeded",
                client=identifier,
                path=request.url.path,
                limit_type=limit_type,
            )
            raise RateLimitExceededError(
                limit_type=limit_type,
                limit=result.limit,
                reset_at=result.reset_at,
                retry_after=retry_after,
                remaining=result.remaining,
            )

    return dependency


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    """
    Render a rate limit rejection with retry information.
    """
    return JSONResponse(
        status_code=exc.http_status,
        content=exc.to_dict(),
        headers={
            "Retry-After": str(exc.retry_after),
            "X-RateLimit-Limit": str(exc.limit),
            "X-RateLimit-Remaining": str(exc.remaining),
            "X-RateLimit-Reset": str(int(exc.reset_at)),
        },
    )
