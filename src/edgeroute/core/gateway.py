"""Main edge router integration module.

This module integrates all components:
- HTTP Server
- Router tree built from configuration
- Middleware chains and the upstream transport
- Logging
- Metrics
"""

import asyncio
import logging
from typing import Any, Mapping, Optional, Union

from aiohttp import web
from prometheus_client import REGISTRY, CollectorRegistry

from edgeroute.core.config import EdgeConfig, RouteConfig, StaticResponseConfig
from edgeroute.core.handler import RequestHandler, create_handler_middleware
from edgeroute.core.logging import EdgeLogger
from edgeroute.core.metrics import EdgeMetrics, HealthStatus
from edgeroute.core.middleware import Handler, RequestContext, compose
from edgeroute.core.request import EdgeRequest
from edgeroute.core.routing import Router
from edgeroute.core.server import HTTPServer
from edgeroute.middleware.access_log import RequestLoggingMiddleware
from edgeroute.middleware.proxy import ProxyMiddleware, UpstreamTransport

logger = logging.getLogger(__name__)


def static_response(config: StaticResponseConfig) -> Handler:
    """Build a handler that always returns the configured response.

    Args:
        config: Static response configuration

    Returns:
        Router handler
    """

    async def respond(request: EdgeRequest, context: RequestContext) -> web.StreamResponse:
        return web.Response(
            status=config.status,
            text=config.body,
            content_type=config.content_type,
            headers=config.headers,
        )

    return respond


class EdgeGateway:
    """Main edge router class.

    Builds the router tree from configuration and manages the server lifecycle.
    """

    def __init__(self, config: EdgeConfig, registry: CollectorRegistry = REGISTRY):
        """Initialize the edge router.

        Args:
            config: Edge configuration
            registry: Prometheus registry for the metrics collectors

        Raises:
            PatternError: If a configured rule contains a malformed pattern
        """
        self.config = config
        self.structured_logger = EdgeLogger(config.logging)
        self.metrics = EdgeMetrics(config.metrics, registry) if config.metrics.enabled else None
        if self.metrics is not None:
            self.metrics.register_health_check("upstreams", self.metrics.upstream_health)
        self.transport = UpstreamTransport(
            config.upstream,
            metrics=self.metrics,
            correlation_id_header=config.logging.correlation_id_header,
            structured_logger=self.structured_logger,
        )
        self.router = self._build_router(
            config.routes, config.variables, name="root", metrics=self.metrics
        )
        self.server = HTTPServer(config.server)

    def _build_router(
        self,
        routes: list[RouteConfig],
        environment: Mapping[str, Any],
        name: str,
        metrics: Optional[EdgeMetrics] = None,
    ) -> Router:
        """Build a router table from route configurations.

        Args:
            routes: Route configurations in priority order
            environment: Environment of the router
            name: Router name for logging
            metrics: Metrics collector for dispatch outcomes

        Returns:
            Router instance
        """
        router = Router(environment=environment, name=name, metrics=metrics)
        for route in routes:
            router.register(route.rule, self._build_destination(route))

        logger.info(
            f"Initialized router {name} with {len(router)} entries",
            extra={"router": name, "route_count": len(router)},
        )
        return router

    def _build_destination(self, route: RouteConfig) -> Union[Handler, Router]:
        """Build what a matching request is handed to.

        Args:
            route: Route configuration

        Returns:
            Nested router, static responder, or forwarding chain
        """
        if route.routes is not None:
            return self._build_router(
                route.routes, route.variables, name=route.id, metrics=self.metrics
            )

        if route.action == "respond" and route.response is not None:
            return static_response(route.response)

        return compose(
            [
                RequestLoggingMiddleware(self.structured_logger),
                ProxyMiddleware(self.transport),
            ]
        )

    def create_app(self) -> web.Application:
        """Create the aiohttp application with all routes wired.

        Returns:
            aiohttp Application instance
        """
        app = self.server.create_app()
        self._setup_routes(app)
        self.server.add_cleanup(self.transport.close)
        return app

    def _setup_routes(self, app: web.Application) -> None:
        """Setup routes and handlers.

        Args:
            app: aiohttp Application instance
        """
        handler = RequestHandler(
            self.router, self.config, metrics=self.metrics, structured_logger=self.structured_logger
        )
        app.middlewares.append(create_handler_middleware(handler))  # type: ignore[arg-type]

        if self.metrics is not None:
            app.router.add_get(self.config.metrics.health_endpoint, self._health_check)
            app.router.add_get(self.config.metrics.liveness_endpoint, self._liveness_check)
            app.router.add_get(self.config.metrics.endpoint, self._metrics_endpoint)

    async def _health_check(self, request: web.Request) -> web.Response:
        """Health check endpoint.

        Args:
            request: aiohttp Request object

        Returns:
            Health status response
        """
        health = self.metrics.check_health(detailed=True)
        health["environment"] = self.config.environment
        health["routes"] = len(self.router)
        status = 503 if health["status"] == HealthStatus.UNHEALTHY.value else 200
        return web.json_response(health, status=status)

    async def _liveness_check(self, request: web.Request) -> web.Response:
        """Liveness check endpoint.

        Args:
            request: aiohttp Request object

        Returns:
            Liveness status response
        """
        return web.json_response(self.metrics.check_liveness(), status=200)

    async def _metrics_endpoint(self, request: web.Request) -> web.Response:
        """Metrics endpoint (Prometheus format).

        Args:
            request: aiohttp Request object

        Returns:
            Metrics in Prometheus format
        """
        metrics_text = self.metrics.export_metrics().decode("utf-8")
        return web.Response(text=metrics_text, content_type="text/plain")

    async def start(self) -> None:
        """Start the edge router."""
        logger.info(
            f"Starting edge router in {self.config.environment} environment",
            extra={"environment": self.config.environment, "routes": len(self.config.routes)},
        )

        self.create_app()
        await self.server.start()

        logger.info("Edge router started successfully")

    async def stop(self) -> None:
        """Stop the edge router."""
        logger.info("Stopping edge router...")
        await self.server.stop()
        logger.info("Edge router stopped")

    async def run_forever(self) -> None:
        """Run the edge router until interrupted."""
        await self.start()

        try:
            await asyncio.Event().wait()
        except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
            logger.info("Shutdown signal received")
        finally:
            await self.stop()
