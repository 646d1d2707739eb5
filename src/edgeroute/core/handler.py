"""Request handler for the edge router host.

This module connects the aiohttp server to the routing core: it adapts the
inbound request, dispatches the root router, and turns transport failures
into gateway error responses.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from contextlib import nullcontext
from datetime import UTC, datetime
from typing import Optional

import aiohttp
from aiohttp import web

from edgeroute.core.config import EdgeConfig
from edgeroute.core.logging import EdgeLogger
from edgeroute.core.metrics import EdgeMetrics
from edgeroute.core.middleware import RequestContext, generate_correlation_id
from edgeroute.core.request import EdgeRequest
from edgeroute.core.routing import Router

logger = logging.getLogger(__name__)


def error_response(
    status: int, error: str, message: str, correlation_id: str
) -> web.Response:
    """Build a JSON error response.

    Args:
        status: HTTP status code
        error: Machine readable error code
        message: Human readable message
        correlation_id: Request correlation ID

    Returns:
        web.Response object
    """
    return web.json_response(
        {
            "error": error,
            "message": message,
            "correlation_id": correlation_id,
            "timestamp": datetime.now(UTC).isoformat(),
        },
        status=status,
    )


class RequestHandler:
    """Main request handler for the edge router.

    Coordinates:
    - Correlation ID assignment
    - Root router dispatch
    - Gateway error responses (502, 504, 500)
    - Request metrics
    """

    def __init__(
        self,
        router: Router,
        config: EdgeConfig,
        metrics: Optional[EdgeMetrics] = None,
        structured_logger: Optional[EdgeLogger] = None,
    ):
        """Initialize the request handler.

        Args:
            router: Root router
            config: Edge configuration
            metrics: Optional metrics collector
            structured_logger: Optional structured logger
        """
        self.router = router
        self.config = config
        self.metrics = metrics
        self.structured_logger = structured_logger

    async def handle_request(self, request: web.Request) -> web.StreamResponse:
        """Handle an incoming HTTP request.

        Args:
            request: aiohttp Request object

        Returns:
            Response object
        """
        header_name = self.config.logging.correlation_id_header
        correlation_id = request.headers.get(header_name) or generate_correlation_id()
        context = RequestContext(correlation_id=correlation_id)
        start = time.monotonic()

        binding = (
            self.structured_logger.correlation(correlation_id)
            if self.structured_logger
            else nullcontext()
        )
        with binding:
            response = await self._dispatch(request, context)
        response.headers.setdefault(header_name, correlation_id)

        if self.metrics:
            self.metrics.record_request(
                method=request.method,
                path=request.path,
                status_code=response.status,
                duration_seconds=time.monotonic() - start,
            )

        return response

    async def _dispatch(self, request: web.Request, context: RequestContext) -> web.StreamResponse:
        correlation_id = context.correlation_id
        try:
            return await self.router.dispatch(EdgeRequest.from_web(request), context)

        except asyncio.TimeoutError:
            logger.error(
                "Upstream request timeout",
                extra={"correlation_id": correlation_id, "url": str(request.url)},
            )
            self._record_error("upstream_timeout")
            return error_response(
                504, "gateway_timeout", "Upstream service did not respond in time", correlation_id
            )

        except aiohttp.ClientConnectionError as e:
            logger.error(
                f"Upstream connection error: {e}",
                extra={"correlation_id": correlation_id, "url": str(request.url)},
            )
            self._record_error("upstream_connection")
            return error_response(
                502, "bad_gateway", "Could not connect to upstream service", correlation_id
            )

        except aiohttp.ClientError as e:
            logger.error(
                f"Upstream client error: {e}",
                extra={"correlation_id": correlation_id, "url": str(request.url)},
            )
            self._record_error("upstream_client")
            return error_response(
                502, "bad_gateway", "Error communicating with upstream service", correlation_id
            )

        except web.HTTPException:
            # Already proper responses
            raise

        except Exception as e:
            logger.exception(
                f"Unexpected error handling request: {e}",
                extra={"correlation_id": correlation_id},
            )
            self._record_error("internal")
            return error_response(
                500, "internal_error", "An unexpected error occurred", correlation_id
            )

    def _record_error(self, error_type: str) -> None:
        if self.metrics:
            self.metrics.record_error(error_type)


def create_handler_middleware(
    request_handler: RequestHandler,
) -> Callable[
    [web.Request, Callable[[web.Request], Awaitable[web.StreamResponse]]],
    Awaitable[web.StreamResponse],
]:
    """Create an aiohttp middleware that routes every request through the router.

    Args:
        request_handler: Handler that routes requests through the router tree

    Returns:
        aiohttp middleware function
    """

    @web.middleware
    async def middleware(
        request: web.Request,
        handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
    ) -> web.StreamResponse:
        """aiohttp middleware function.

        Requests for routes registered on the aiohttp app itself (health and
        metrics endpoints) go to their own handlers.
        """
        if request.match_info.route.resource is not None:
            return await handler(request)
        return await request_handler.handle_request(request)

    return middleware
