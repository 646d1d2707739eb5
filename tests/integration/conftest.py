"""Shared fixtures for integration tests."""

import asyncio
from collections.abc import AsyncGenerator

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer, unused_port
from prometheus_client import CollectorRegistry

from edgeroute.core.config import EdgeConfig, LoggingConfig, RouteConfig, UpstreamConfig
from edgeroute.core.gateway import EdgeGateway


@pytest.fixture
def mock_upstream_app() -> web.Application:
    """Create a mock origin for testing."""
    app = web.Application()

    async def upload_handler(request: web.Request) -> web.Response:
        """Parse a multipart form and report its fields."""
        form = await request.post()
        upload = form["file"]
        return web.json_response(
            {
                "field": form["field"],
                "filename": upload.filename,
                "file": upload.file.read().decode(),
            }
        )

    async def slow_handler(request: web.Request) -> web.Response:
        """Slow endpoint for timeout testing."""
        await asyncio.sleep(2)
        return web.json_response({"message": "Slow response"})

    async def echo_handler(request: web.Request) -> web.Response:
        """Echo back what the origin received."""
        body = await request.text() if request.can_read_body else ""
        return web.json_response(
            {
                "method": request.method,
                "path": request.path,
                "query": request.query_string,
                "host": request.headers.get("Host"),
                "headers": dict(request.headers),
                "body": body,
            }
        )

    app.router.add_post("/upload", upload_handler)
    app.router.add_get("/slow", slow_handler)
    app.router.add_route("*", "/{tail:.*}", echo_handler)

    return app


@pytest.fixture
async def mock_upstream_server(
    mock_upstream_app: web.Application,
) -> AsyncGenerator[TestServer, None]:
    """Create and start a test server for the mock origin."""
    server = TestServer(mock_upstream_app)
    await server.start_server()
    yield server
    await server.close()


@pytest.fixture
def integration_config(mock_upstream_server: TestServer) -> EdgeConfig:
    """Create edge router configuration for integration tests."""
    origin = {"host": "127.0.0.1", "port": mock_upstream_server.port}

    return EdgeConfig(
        environment="test",
        variables={"stage": "test"},
        logging=LoggingConfig(level="DEBUG", format="text"),
        upstream=UpstreamConfig(request_timeout=1, connection_timeout=1),
        routes=[
            RouteConfig(id="upload", rule={"method": "POST", "path": "/upload", "target": origin}),
            RouteConfig(
                id="tenants",
                rule={"host": "*tenant.edge.test", "target": origin},
                routes=[
                    RouteConfig(
                        id="tenant-api",
                        rule={"path": "/api/*", "target": {"path": {"^/api": "/tenants/:tenant"}}},
                    )
                ],
            ),
            RouteConfig(
                id="api",
                rule={
                    "path": "/api/:entity",
                    "target": {
                        **origin,
                        "path": "/v2/:entity",
                        "headers": {"X-Edge": "edgeroute", "X-Internal": None},
                    },
                },
            ),
            RouteConfig(
                id="static",
                rule={"path": "/static"},
                action="respond",
                response={"status": 200, "body": "static response", "headers": {"X-Static": "1"}},
            ),
            RouteConfig(
                id="unreachable",
                rule={"path": "/down", "target": {"host": "127.0.0.1", "port": unused_port()}},
            ),
            RouteConfig(id="slow", rule={"path": "/slow", "target": origin}),
            RouteConfig(id="catchall", rule={"path": "/*", "target": origin}),
        ],
    )


@pytest.fixture
def gateway(integration_config: EdgeConfig) -> EdgeGateway:
    """Create an edge router with an isolated metrics registry."""
    return EdgeGateway(integration_config, registry=CollectorRegistry())


@pytest.fixture
async def gateway_client(gateway: EdgeGateway) -> AsyncGenerator[TestClient, None]:
    """Create a test client for the edge router."""
    server = TestServer(gateway.create_app())
    client = TestClient(server)
    await client.start_server()
    yield client
    await client.close()
