"""Middleware components for request processing chains."""

from edgeroute.middleware.access_log import RequestLoggingMiddleware
from edgeroute.middleware.proxy import ProxyMiddleware, UpstreamTransport, forward

__all__ = [
    "ProxyMiddleware",
    "RequestLoggingMiddleware",
    "UpstreamTransport",
    "forward",
]
