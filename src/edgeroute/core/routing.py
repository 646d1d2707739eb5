"""Routing engine for the edge router.

This module implements the dispatcher:
- An ordered, append-only table of compiled rules and their destinations
- Destinations are either handlers or nested routers
- Context propagation (params, environment, target) into the destination
- First-match-commits dispatch with a fixed 404 fallback
"""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple, Union

from aiohttp import web

from edgeroute.core.matching import CompiledRule, compile_rule
from edgeroute.core.middleware import Handler, RequestContext
from edgeroute.core.request import EdgeRequest
from edgeroute.core.rules import MatchResult, Rule

logger = logging.getLogger(__name__)

NOT_FOUND_TEXT = "Not Found"

RuleLike = Union[Rule, CompiledRule, Mapping[str, Any]]


def not_found_response() -> web.Response:
    """Build the response returned when no rule matches."""
    return web.Response(status=404, text=NOT_FOUND_TEXT)


@dataclass(frozen=True)
class Endpoint:
    """Destination that invokes a handler."""

    handler: Handler


@dataclass(frozen=True)
class SubRouter:
    """Destination that hands the request to a nested router."""

    router: "Router"


Destination = Union[Endpoint, SubRouter]


@dataclass(frozen=True)
class RouteEntry:
    """A compiled rule and where matching requests go."""

    matcher: CompiledRule
    destination: Destination


class Router:
    """Dispatches requests to the first registered entry whose rule matches.

    Responsibilities:
    - Compiling rules once at registration
    - Trying entries in registration order
    - Merging captured params, environment and target into the context
    - Returning 404 when nothing matches

    Once an entry's rule matches, that entry owns the request: if its handler
    or nested router cannot resolve it, later entries are not tried.
    """

    def __init__(
        self,
        environment: Optional[Mapping[str, Any]] = None,
        name: str = "router",
        metrics: Optional[Any] = None,
    ):
        """Initialize the router.

        Args:
            environment: Environment values this router contributes to the context
            name: Name used in log records
            metrics: Optional collector with a record_dispatch(matched) method
        """
        self.name = name
        self.environment = dict(environment or {})
        self.metrics = metrics
        self._entries: List[RouteEntry] = []

    @property
    def entries(self) -> Tuple[RouteEntry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def register(self, rule: RuleLike, destination: Union[Handler, "Router"]) -> "Router":
        """Compile a rule and append an entry for it.

        Args:
            rule: Rule, rule document mapping, or compiled rule
            destination: Handler, or a Router to dispatch into

        Returns:
            This router, for chaining

        Raises:
            PatternError: If a pattern in the rule tree is malformed
        """
        matcher = compile_rule(rule)
        if isinstance(destination, Router):
            entry = RouteEntry(matcher=matcher, destination=SubRouter(destination))
        else:
            entry = RouteEntry(matcher=matcher, destination=Endpoint(destination))
        self._entries.append(entry)

        logger.debug(
            f"Registered entry {len(self._entries)} on {self.name}",
            extra={"router": self.name, "rule": matcher.rule.model_dump(exclude_none=True)},
        )
        return self

    def route(self, rule: RuleLike) -> Callable[[Handler], Handler]:
        """Decorator form of register()."""

        def decorator(handler: Handler) -> Handler:
            self.register(rule, handler)
            return handler

        return decorator

    def match(self, request: EdgeRequest) -> Optional[Tuple[RouteEntry, MatchResult]]:
        """Find the entry that owns a request.

        Args:
            request: Request to route

        Returns:
            The first matching entry and its match result, or None
        """
        for entry in self._entries:
            result = entry.matcher.evaluate(request)
            if result is not None:
                return entry, result
        return None

    async def dispatch(
        self, request: EdgeRequest, context: Optional[RequestContext] = None
    ) -> web.StreamResponse:
        """Dispatch a request.

        Args:
            request: Request to handle
            context: Context from an enclosing router or the host

        Returns:
            Response from the destination, or a 404 response
        """
        context = context or RequestContext()

        found = self.match(request)
        if self.metrics is not None:
            self.metrics.record_dispatch(found is not None)

        if found is None:
            logger.debug(
                f"No entry matched for {request.method} {request.url} on {self.name}",
                extra={"router": self.name, "correlation_id": context.correlation_id},
            )
            return not_found_response()

        entry, result = found
        context = context.merge(
            params=result.params, environment=self.environment, target=result.target
        )

        logger.debug(
            f"Entry matched on {self.name}: {request.method} {request.url}",
            extra={
                "router": self.name,
                "correlation_id": context.correlation_id,
                "params": dict(context.params),
            },
        )

        match entry.destination:
            case SubRouter(router=router):
                return await router.dispatch(request, context)
            case Endpoint(handler=handler):
                return await handler(request, context)

    async def __call__(self, request: EdgeRequest, context: RequestContext) -> web.StreamResponse:
        return await self.dispatch(request, context)
