"""
Rate Limiting Services

Token bucket admission control for the Cache Store.
"""

from .rate_limiter import TokenBucketRateLimiter

__all__ = ["TokenBucketRateLimiter"]
