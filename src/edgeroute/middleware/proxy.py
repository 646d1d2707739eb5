"""Proxy middleware for forwarding rewritten requests to origins.

This module implements the upstream side of the edge router:
- Delivery of a rewritten EdgeRequest over a pooled aiohttp client session
- Hop-by-hop header handling in both directions
- The terminal link that rewrites a request from its context and forwards it

Transport errors are logged and re-raised unchanged; mapping them to gateway
error responses is the host's job.
"""

import asyncio
import logging
import time
from typing import Dict, Optional, Protocol

import aiohttp
from aiohttp import hdrs, web
from multidict import CIMultiDict

from edgeroute.core.config import UpstreamConfig
from edgeroute.core.logging import EdgeLogger
from edgeroute.core.metrics import EdgeMetrics
from edgeroute.core.middleware import Handler, Middleware, RequestContext
from edgeroute.core.request import EdgeRequest
from edgeroute.core.rewrite import rewrite

logger = logging.getLogger(__name__)

# Managed by the client session / response object, never copied through
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-connection",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
        "content-length",
    }
)


class Transport(Protocol):
    """Anything that can deliver a request and return the origin's response."""

    async def send(
        self, request: EdgeRequest, correlation_id: Optional[str] = None
    ) -> web.StreamResponse: ...


class UpstreamTransport:
    """HTTP client for delivering rewritten requests to origins.

    Manages connection pooling and timeouts.
    """

    def __init__(
        self,
        config: Optional[UpstreamConfig] = None,
        metrics: Optional[EdgeMetrics] = None,
        correlation_id_header: str = "X-Request-ID",
        structured_logger: Optional[EdgeLogger] = None,
    ):
        """Initialize the upstream transport.

        Args:
            config: Upstream settings
            metrics: Optional metrics collector
            correlation_id_header: Header carrying the correlation ID upstream
            structured_logger: Optional structured logger for upstream events
        """
        self.config = config or UpstreamConfig()
        self.metrics = metrics
        self.correlation_id_header = correlation_id_header
        self.structured_logger = structured_logger
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp client session.

        Returns:
            Configured aiohttp ClientSession
        """
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self.config.pool_size,
                limit_per_host=self.config.pool_size,
            )

            timeout = aiohttp.ClientTimeout(
                total=self.config.request_timeout,
                connect=self.config.connection_timeout,
            )

            # Bodies are passed through encoded
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=timeout,
                auto_decompress=False,
            )

            logger.info(
                "Upstream transport session created",
                extra={
                    "pool_size": self.config.pool_size,
                    "connection_timeout": self.config.connection_timeout,
                    "request_timeout": self.config.request_timeout,
                },
            )

        return self._session

    async def close(self) -> None:
        """Close the client session and clean up connections."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.info("Upstream transport session closed")

    def _prepare_upstream_headers(
        self, request: EdgeRequest, correlation_id: Optional[str] = None
    ) -> CIMultiDict[str]:
        """Prepare headers for the upstream request.

        Copies the rewritten request's headers except hop-by-hop ones and points
        Host at the rewritten authority.

        Args:
            request: Rewritten request
            correlation_id: Request correlation ID

        Returns:
            Headers for the upstream request
        """
        headers: CIMultiDict[str] = CIMultiDict()
        for key, value in request.headers.items():
            if key.lower() not in HOP_BY_HOP_HEADERS and key.lower() != "host":
                headers.add(key, value)

        headers[hdrs.HOST] = request.authority

        if correlation_id and self.config.forward_correlation_id:
            headers.setdefault(self.correlation_id_header, correlation_id)

        return headers

    def _prepare_response_headers(self, upstream_headers: CIMultiDict[str]) -> CIMultiDict[str]:
        """Prepare client response headers from the origin's response.

        Args:
            upstream_headers: Headers from the upstream response

        Returns:
            Headers for the client response
        """
        headers: CIMultiDict[str] = CIMultiDict()
        for key, value in upstream_headers.items():
            if key.lower() not in HOP_BY_HOP_HEADERS:
                headers.add(key, value)
        return headers

    async def send(
        self, request: EdgeRequest, correlation_id: Optional[str] = None
    ) -> web.Response:
        """Deliver a request to its origin.

        Args:
            request: Rewritten request
            correlation_id: Request correlation ID for logging

        Returns:
            web.Response carrying the origin's status, headers and body

        Raises:
            aiohttp.ClientError: On connection or request errors
            asyncio.TimeoutError: On timeout
        """
        session = await self._get_session()
        headers = self._prepare_upstream_headers(request, correlation_id)
        upstream = request.authority
        start = time.monotonic()

        logger.debug(
            f"Forwarding {request.method} request to upstream",
            extra={
                "correlation_id": correlation_id,
                "method": request.method,
                "upstream_url": str(request.url),
            },
        )

        try:
            async with session.request(
                method=request.method,
                url=request.url,
                headers=headers,
                data=request.body,
                allow_redirects=False,  # Pass redirects through
            ) as upstream_response:
                body = await upstream_response.read()
                response = web.Response(
                    status=upstream_response.status,
                    reason=upstream_response.reason,
                    headers=self._prepare_response_headers(upstream_response.headers),
                    body=body,
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            elapsed = time.monotonic() - start
            if self.metrics:
                self.metrics.record_upstream_request(
                    upstream, 0, elapsed, error_type=type(e).__name__
                )
            if self.structured_logger:
                self.structured_logger.log_upstream_event(
                    request, correlation_id, latency_ms=elapsed * 1000, error=repr(e)
                )
            else:
                logger.error(
                    f"Upstream request failed: {e!r}",
                    extra={
                        "correlation_id": correlation_id,
                        "method": request.method,
                        "upstream_url": str(request.url),
                        "error": repr(e),
                    },
                )
            raise

        elapsed = time.monotonic() - start
        if self.metrics:
            self.metrics.record_upstream_request(upstream, response.status, elapsed)

        if self.structured_logger:
            self.structured_logger.log_upstream_event(
                request, correlation_id, status_code=response.status, latency_ms=elapsed * 1000
            )
        else:
            logger.debug(
                f"Received response from upstream: {response.status}",
                extra={
                    "correlation_id": correlation_id,
                    "status": response.status,
                    "upstream_url": str(request.url),
                },
            )

        return response


class ProxyMiddleware(Middleware):
    """Terminal link that rewrites a request and forwards it.

    The rewrite uses the target override and parameters accumulated in the
    context by the routers that matched the request.
    """

    def __init__(self, transport: Transport):
        """Initialize the proxy middleware.

        Args:
            transport: Transport that delivers rewritten requests
        """
        self.transport = transport

    async def handle(self, request: EdgeRequest, context: RequestContext) -> web.StreamResponse:
        """Rewrite and forward a request (handler form).

        Args:
            request: Inbound request
            context: Context carrying target and params

        Returns:
            Response from the origin
        """
        outbound = await rewrite(request, context.target, context.params)
        return await self.transport.send(outbound, correlation_id=context.correlation_id)

    async def process(
        self, request: EdgeRequest, context: RequestContext, next_handler: Handler
    ) -> web.StreamResponse:
        """Process request by forwarding it; the rest of the chain is not called.

        Args:
            request: Inbound request
            context: Request context
            next_handler: Next handler (not used - proxy is last)

        Returns:
            Response from the origin
        """
        return await self.handle(request, context)


def forward(transport: Transport) -> Handler:
    """Build a router handler that rewrites and forwards (convenience function).

    Args:
        transport: Transport that delivers rewritten requests

    Returns:
        Handler suitable for Router.register()
    """
    return ProxyMiddleware(transport).handle
