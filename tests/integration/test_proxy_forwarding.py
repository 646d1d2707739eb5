"""Integration tests for forwarding to origins."""

import aiohttp
import pytest
from aiohttp.test_utils import TestClient


class TestUpstreamForwarding:
    """Test request rewriting and forwarding to the origin."""

    @pytest.mark.asyncio
    async def test_request_forwarded_to_origin(self, gateway_client: TestClient):
        """Test that unmatched-by-earlier-entries requests reach the catch-all origin."""
        response = await gateway_client.get("/hello")

        assert response.status == 200
        data = await response.json()
        assert data["method"] == "GET"
        assert data["path"] == "/hello"

    @pytest.mark.asyncio
    async def test_query_string_forwarded(self, gateway_client: TestClient):
        response = await gateway_client.get("/hello?foo=bar&baz=qux")

        data = await response.json()
        assert data["query"] == "foo=bar&baz=qux"

    @pytest.mark.asyncio
    async def test_path_rewritten_with_captures(self, gateway_client: TestClient):
        """Test that /api/:entity is rewritten to /v2/:entity."""
        response = await gateway_client.get("/api/users")

        assert response.status == 200
        data = await response.json()
        assert data["path"] == "/v2/users"

    @pytest.mark.asyncio
    async def test_host_header_points_at_origin(
        self, gateway_client: TestClient, mock_upstream_server
    ):
        response = await gateway_client.get("/hello")

        data = await response.json()
        assert data["host"] == f"127.0.0.1:{mock_upstream_server.port}"

    @pytest.mark.asyncio
    async def test_header_rules_applied(self, gateway_client: TestClient):
        """Test that header rules set and remove headers."""
        response = await gateway_client.get(
            "/api/users",
            headers={"X-Internal": "secret", "X-Custom-Header": "custom-value"},
        )

        data = await response.json()
        assert data["headers"]["X-Edge"] == "edgeroute"
        assert "X-Internal" not in data["headers"]
        assert data["headers"]["X-Custom-Header"] == "custom-value"

    @pytest.mark.asyncio
    async def test_request_body_forwarded(self, gateway_client: TestClient):
        """Test that a request body is forwarded to the origin."""
        response = await gateway_client.post("/echo", json={"name": "Test User"})

        assert response.status == 200
        data = await response.json()
        assert data["method"] == "POST"
        assert data["body"] == '{"name": "Test User"}'

    @pytest.mark.asyncio
    async def test_multipart_form_preserved(self, gateway_client: TestClient):
        """Test that multipart fields survive the rewrite with their boundary."""
        form = aiohttp.FormData()
        form.add_field("field", "value")
        form.add_field("file", b"file contents", filename="a.txt", content_type="text/plain")

        response = await gateway_client.post("/upload", data=form)

        assert response.status == 200
        data = await response.json()
        assert data == {"field": "value", "filename": "a.txt", "file": "file contents"}

    @pytest.mark.asyncio
    async def test_correlation_id_forwarded(self, gateway_client: TestClient):
        """Test that the client's correlation ID reaches the origin and comes back."""
        response = await gateway_client.get("/hello", headers={"X-Request-ID": "client-id-1"})

        data = await response.json()
        assert data["headers"]["X-Request-ID"] == "client-id-1"
        assert response.headers["X-Request-ID"] == "client-id-1"

    @pytest.mark.asyncio
    async def test_correlation_id_generated(self, gateway_client: TestClient):
        response = await gateway_client.get("/hello")

        data = await response.json()
        assert data["headers"]["X-Request-ID"].startswith("req-")
        assert response.headers["X-Request-ID"] == data["headers"]["X-Request-ID"]


class TestUpstreamFailures:
    """Test mapping of transport failures to gateway responses."""

    @pytest.mark.asyncio
    async def test_unreachable_origin_returns_502(self, gateway_client: TestClient):
        response = await gateway_client.get("/down")

        assert response.status == 502
        data = await response.json()
        assert data["error"] == "bad_gateway"
        assert data["correlation_id"] == response.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_slow_origin_returns_504(self, gateway_client: TestClient):
        response = await gateway_client.get("/slow")

        assert response.status == 504
        data = await response.json()
        assert data["error"] == "gateway_timeout"
