"""Ping-Admin API access: rate limiting, HTTP transport, typed client."""

from apatit.upstream.client import PingAdminClient
from apatit.upstream.http_client import UpstreamHttpClient
from apatit.upstream.rate_limiter import RateLimiter

__all__ = ["PingAdminClient", "RateLimiter", "UpstreamHttpClient"]
