"""
Rate limiting package for the Vault service.

Holds the fixed-window limiter that enforces per-identity request budgets
and reports remaining quota and retry-after for response headers.
"""

from .fixed_window import FixedWindowRateLimiter, RateLimitDecision, RateWindow

__all__ = ["FixedWindowRateLimiter", "RateLimitDecision", "RateWindow"]
