"""Request value consumed and produced by the routing core.

EdgeRequest is an immutable snapshot of an HTTP request: method, absolute URL,
headers and an optional body. The body is either already materialized bytes or
the inbound aiohttp stream, which is handed to the transport untouched.
"""

from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

from aiohttp import StreamReader, hdrs, web
from multidict import CIMultiDict, CIMultiDictProxy
from yarl import URL

RequestBody = bytes | StreamReader | None

MULTIPART_FORM_DATA = "multipart/form-data"


@dataclass(frozen=True)
class EdgeRequest:
    """An inbound or rewritten HTTP request."""

    method: str
    url: URL
    headers: CIMultiDictProxy[str]
    body: RequestBody = None

    @classmethod
    def build(
        cls,
        url: str | URL,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        body: RequestBody | str = None,
    ) -> "EdgeRequest":
        """Construct a request from plain values.

        Args:
            url: Absolute URL
            method: HTTP method (normalized to upper case)
            headers: Request headers
            body: Request body; strings are UTF-8 encoded

        Returns:
            EdgeRequest instance
        """
        if isinstance(body, str):
            body = body.encode("utf-8")
        return cls(
            method=method.upper(),
            url=URL(url),
            headers=CIMultiDictProxy(CIMultiDict(headers or {})),
            body=body,
        )

    @classmethod
    def from_web(cls, request: web.Request) -> "EdgeRequest":
        """Adapt an aiohttp server request.

        The body stream is carried by reference and is not read here.

        Args:
            request: aiohttp Request object

        Returns:
            EdgeRequest instance
        """
        return cls(
            method=request.method,
            url=request.url,
            headers=CIMultiDictProxy(CIMultiDict(request.headers)),
            body=request.content if request.can_read_body else None,
        )

    @property
    def authority(self) -> str:
        """The ``host[:port]`` authority, port only when given explicitly."""
        host = self.url.raw_host or ""
        if ":" in host:
            host = f"[{host}]"
        port = self.url.explicit_port
        return f"{host}:{port}" if port is not None else host

    @property
    def path(self) -> str:
        """Raw (percent-encoded) URL path."""
        return self.url.raw_path

    @property
    def scheme(self) -> str:
        return self.url.scheme

    @property
    def content_type(self) -> str:
        """Media type of the body without parameters, lower-cased."""
        value = self.headers.get(hdrs.CONTENT_TYPE, "")
        return value.split(";", 1)[0].strip().lower()

    @property
    def is_multipart(self) -> bool:
        return self.content_type == MULTIPART_FORM_DATA

    async def read(self) -> bytes:
        """Read the whole body.

        Reading a streamed body consumes the stream.
        """
        if self.body is None:
            return b""
        if isinstance(self.body, bytes):
            return self.body
        return await self.body.read()

    def replace(self, **changes: Any) -> "EdgeRequest":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)
