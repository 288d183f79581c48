"""
Middleware module initialization.

The ``rate_limit`` dependency factory is imported from its submodule
directly; re-exporting it here would shadow ``dealforge.middleware.rate_limit``.
"""
from dealforge.middleware.logging import (
    CorrelationIdMiddleware,
    RequestLoggingMiddleware,
    bind_deal_context,
    clear_deal_context,
    configure_logging,
    get_correlation_id,
    mask_identifier,
    redact_sensitive_data,
)
from dealforge.middleware.rate_limit import (
    RATE_LIMITS,
    RateLimitRegistry,
    get_rate_limiter,
    get_rate_limit_identifier,
    rate_limit_exceeded_handler,
    reset_rate_limiter,
)

__all__ = [
    "CorrelationIdMiddleware",
    "RequestLoggingMiddleware",
    "bind_deal_context",
    "clear_deal_context",
    "configure_logging",
    "get_correlation_id",
    "mask_identifier",
    "redact_sensitive_data",
    "RATE_LIMITS",
    "RateLimitRegistry",
    "get_rate_limiter",
    "get_rate_limit_identifier",
    "rate_limit_exceeded_handler",
    "reset_rate_limiter",
]
