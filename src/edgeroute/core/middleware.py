"""Middleware framework for the edge router.

This module implements:
- The per-request context threaded through routers and middleware
- The middleware link interface and class-based links
- Composition of links into a single handler (right-to-left fold)
"""

import logging
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from aiohttp import web

from edgeroute.core.errors import MiddlewareChainError
from edgeroute.core.request import EdgeRequest
from edgeroute.core.rules import TargetOverride

logger = logging.getLogger(__name__)


def generate_correlation_id() -> str:
    """Generate a unique correlation ID.

    Returns:
        A unique correlation ID
    """
    return f"req-{uuid.uuid4().hex[:16]}"


@dataclass(frozen=True)
class RequestContext:
    """Context that flows through routers and middleware chains.

    Contexts are never mutated; every merge produces a new instance.
    """

    params: Mapping[str, str] = field(default_factory=dict)
    environment: Mapping[str, Any] = field(default_factory=dict)

    # Rewrite override accumulated from every matched rule, innermost winning
    target: TargetOverride = field(default_factory=TargetOverride)

    # Correlation and Timing
    correlation_id: str = field(default_factory=generate_correlation_id)
    start_time: float = field(default_factory=time.time)

    def merge(
        self,
        params: Optional[Mapping[str, str]] = None,
        environment: Optional[Mapping[str, Any]] = None,
        target: Optional[TargetOverride] = None,
    ) -> "RequestContext":
        """Return a new context with the given values merged over this one.

        Args:
            params: Parameters that win over existing ones
            environment: Environment values that win over existing ones
            target: Target override merged over the current one

        Returns:
            New RequestContext instance
        """
        return replace(
            self,
            params={**self.params, **(params or {})},
            environment={**self.environment, **(environment or {})},
            target=self.target.merge(target),
        )

    def elapsed_ms(self) -> float:
        """Calculate elapsed time since request start in milliseconds.

        Returns:
            Elapsed time in milliseconds
        """
        return (time.time() - self.start_time) * 1000


# A terminal request handler
Handler = Callable[[EdgeRequest, RequestContext], Awaitable[web.StreamResponse]]

# A middleware link: receives the rest of the chain as its third argument
Link = Callable[[EdgeRequest, RequestContext, Handler], Awaitable[web.StreamResponse]]


class Middleware(ABC):
    """Abstract base class for class-based middleware links.

    Middleware can:
    - Rewrite the request or extend the context before delegating
    - Short-circuit the chain by returning a response
    - Execute logic after the rest of the chain returns
    """

    @abstractmethod
    async def process(
        self, request: EdgeRequest, context: RequestContext, next_handler: Handler
    ) -> web.StreamResponse:
        """Process the request.

        Args:
            request: Request being handled
            context: Request context
            next_handler: Remainder of the chain

        Returns:
            Response object
        """

    async def __call__(
        self, request: EdgeRequest, context: RequestContext, next_handler: Handler
    ) -> web.StreamResponse:
        return await self.process(request, context, next_handler)

    @property
    def name(self) -> str:
        """Get middleware name.

        Returns:
            Middleware class name
        """
        return self.__class__.__name__


async def end_of_chain(request: EdgeRequest, context: RequestContext) -> web.StreamResponse:
    """Continuation handed to the last link of a chain."""
    raise MiddlewareChainError(
        f"Middleware chain exhausted for {request.method} {request.url}: "
        "the last link called its continuation"
    )


def _bind(link: Link, next_handler: Handler) -> Handler:
    async def handler(request: EdgeRequest, context: RequestContext) -> web.StreamResponse:
        return await link(request, context, next_handler)

    return handler


class MiddlewareChain:
    """A sequence of links folded into a single handler.

    Links run in order; each decides whether to call the next one.
    """

    def __init__(self, links: Sequence[Link], environment: Optional[Mapping[str, Any]] = None):
        """Initialize the middleware chain.

        Args:
            links: Links in execution order
            environment: Environment values merged over the incoming context

        Raises:
            ValueError: If no links are given
        """
        if not links:
            raise ValueError("A middleware chain needs at least one link")

        self.links: List[Link] = list(links)
        self.environment: Dict[str, Any] = dict(environment or {})
        self._handler = self._fold()

        logger.debug(
            f"Middleware chain composed with {len(self.links)} links",
            extra={"middleware": [_link_name(link) for link in self.links]},
        )

    def _fold(self) -> Handler:
        handler: Handler = end_of_chain
        for link in reversed(self.links):
            handler = _bind(link, handler)
        return handler

    async def execute(self, request: EdgeRequest, context: RequestContext) -> web.StreamResponse:
        """Execute the middleware chain.

        Args:
            request: Request being handled
            context: Request context

        Returns:
            Response object
        """
        if self.environment:
            context = context.merge(environment=self.environment)
        return await self._handler(request, context)

    async def __call__(self, request: EdgeRequest, context: RequestContext) -> web.StreamResponse:
        return await self.execute(request, context)


def _link_name(link: Link) -> str:
    return getattr(link, "name", None) or getattr(link, "__name__", repr(link))


def compose(
    links: Sequence[Link], environment: Optional[Mapping[str, Any]] = None
) -> MiddlewareChain:
    """Compose links into one handler (convenience function).

    Args:
        links: Links in execution order
        environment: Environment values with the highest precedence

    Returns:
        MiddlewareChain usable as a router handler
    """
    return MiddlewareChain(links, environment)
