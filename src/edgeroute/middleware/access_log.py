"""Request/response logging link."""

import logging
from typing import Optional

from aiohttp import web

from edgeroute.core.logging import EdgeLogger
from edgeroute.core.middleware import Handler, Middleware, RequestContext
from edgeroute.core.request import EdgeRequest

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(Middleware):
    """Logs a request before delegating and its response afterwards.

    Falls back to the module logger when no structured logger is configured.
    """

    def __init__(self, structured_logger: Optional[EdgeLogger] = None):
        """Initialize the logging middleware.

        Args:
            structured_logger: Structured logger, if configured
        """
        self.structured_logger = structured_logger

    async def process(
        self, request: EdgeRequest, context: RequestContext, next_handler: Handler
    ) -> web.StreamResponse:
        """Process request with logging.

        Args:
            request: Request being handled
            context: Request context
            next_handler: Next handler in the chain

        Returns:
            Response from the rest of the chain
        """
        url = str(request.url)

        if self.structured_logger:
            self.structured_logger.log_request(request, context)
        else:
            logger.info(
                f"{request.method} {url}",
                extra={"correlation_id": context.correlation_id, "params": dict(context.params)},
            )

        response = await next_handler(request, context)

        if self.structured_logger:
            self.structured_logger.log_response(request, context, response.status)
        else:
            logger.info(
                f"{request.method} {url} -> {response.status} ({context.elapsed_ms():.2f}ms)",
                extra={"correlation_id": context.correlation_id},
            )

        return response
