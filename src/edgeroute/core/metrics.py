"""Prometheus metrics and health reporting for the edge router.

Collectors cover three layers of a request's life:
- the host (requests, durations, gateway errors)
- the router tree (dispatch outcomes)
- the origins (upstream calls, latencies, transport errors)
"""

import re
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

from edgeroute.core.config import MetricsConfig

LATENCY_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)

# Path segments that would explode label cardinality
_UUID_SEGMENT = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE
)
_NUMERIC_SEGMENT = re.compile(r"/\d+(?=/|$)")

# Failing origins listed in the health details
MAX_FAILING_DETAILS = 20


class HealthStatus(Enum):
    """Health status, declared from best to worst."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"

    @property
    def severity(self) -> int:
        return list(HealthStatus).index(self)


@dataclass
class ComponentHealth:
    """Health of a single component reported by a registered check."""

    name: str
    status: HealthStatus
    message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {k: v for k, v in asdict(self).items() if v}
        result["status"] = self.status.value
        return result


class EdgeMetrics:
    """Prometheus collectors plus component health checks.

    Every collector is registered with ``registry``; tests pass a fresh
    CollectorRegistry so instances do not collide.
    """

    def __init__(self, config: MetricsConfig, registry: CollectorRegistry = REGISTRY):
        self.config = config
        self.registry = registry
        self._health_checks: Dict[str, Callable[[], ComponentHealth]] = {}
        # Most recent outcome per origin authority: (timestamp, error type or None),
        # oldest first
        self._last_upstream_outcome: OrderedDict[str, Tuple[float, Optional[str]]] = OrderedDict()

        self.request_total = Counter(
            "edgeroute_requests_total",
            "Requests handled by the host",
            ["method", "path", "status"],
            registry=registry,
        )
        self.request_duration = Histogram(
            "edgeroute_request_duration_seconds",
            "End-to-end request latency in seconds",
            ["method", "path"],
            buckets=LATENCY_BUCKETS,
            registry=registry,
        )
        self.errors_total = Counter(
            "edgeroute_errors_total",
            "Requests answered with a gateway error",
            ["error_type"],
            registry=registry,
        )

        self.dispatch_total = Counter(
            "edgeroute_dispatch_total",
            "Routing decisions by outcome",
            ["outcome"],
            registry=registry,
        )

        self.upstream_requests = Counter(
            "edgeroute_upstream_requests_total",
            "Requests forwarded to origins",
            ["upstream", "status"],
            registry=registry,
        )
        self.upstream_duration = Histogram(
            "edgeroute_upstream_duration_seconds",
            "Origin latency in seconds",
            ["upstream"],
            buckets=LATENCY_BUCKETS,
            registry=registry,
        )
        self.upstream_errors = Counter(
            "edgeroute_upstream_errors_total",
            "Transport failures talking to origins",
            ["upstream", "error_type"],
            registry=registry,
        )

    def record_request(
        self,
        method: str,
        path: str,
        status_code: int,
        duration_seconds: float,
    ) -> None:
        """Record a request completed by the host.

        Args:
            method: HTTP method
            path: Inbound path, normalized before use as a label
            status_code: Status sent to the client
            duration_seconds: Time from arrival to response
        """
        path = self._normalize_path(path)
        self.request_total.labels(method=method, path=path, status=str(status_code)).inc()
        self.request_duration.labels(method=method, path=path).observe(duration_seconds)

    def record_dispatch(self, matched: bool) -> None:
        self.dispatch_total.labels(outcome="matched" if matched else "not_found").inc()

    def record_upstream_request(
        self,
        upstream: str,
        status_code: int,
        duration_seconds: float,
        error_type: Optional[str] = None,
    ) -> None:
        """Record a call to an origin.

        Args:
            upstream: Origin authority (``host[:port]``)
            status_code: Origin status, 0 when no response arrived
            duration_seconds: Time spent on the call
            error_type: Exception class name when the call failed
        """
        status = str(status_code) if status_code > 0 else "error"
        self.upstream_requests.labels(upstream=upstream, status=status).inc()
        self.upstream_duration.labels(upstream=upstream).observe(duration_seconds)
        if error_type:
            self.upstream_errors.labels(upstream=upstream, error_type=error_type).inc()

        now = time.time()
        self._last_upstream_outcome[upstream] = (now, error_type)
        self._last_upstream_outcome.move_to_end(upstream)
        self._expire_upstream_outcomes(now)

    def _expire_upstream_outcomes(self, now: float) -> None:
        cutoff = now - self.config.upstream_health_window
        while self._last_upstream_outcome:
            upstream, (seen, _) = next(iter(self._last_upstream_outcome.items()))
            if seen >= cutoff:
                break
            del self._last_upstream_outcome[upstream]

    def record_error(self, error_type: str) -> None:
        self.errors_total.labels(error_type=error_type).inc()

    def upstream_health(self) -> ComponentHealth:
        """Report origins whose most recent call failed.

        Only outcomes younger than ``upstream_health_window`` count, so an origin
        that is never contacted again stops affecting health once its failure ages
        out. At most MAX_FAILING_DETAILS origins are listed, most recent first.

        Returns:
            DEGRADED when any origin's last call failed, HEALTHY otherwise
        """
        self._expire_upstream_outcomes(time.time())
        failing = [
            (upstream, seen, error)
            for upstream, (seen, error) in reversed(self._last_upstream_outcome.items())
            if error
        ]
        if failing:
            return ComponentHealth(
                name="upstreams",
                status=HealthStatus.DEGRADED,
                message=f"{len(failing)} of {len(self._last_upstream_outcome)} origins failing",
                details={
                    upstream: {"last_seen": seen, "error": error}
                    for upstream, seen, error in failing[:MAX_FAILING_DETAILS]
                },
            )
        return ComponentHealth(
            name="upstreams",
            status=HealthStatus.HEALTHY,
            details={"origins": len(self._last_upstream_outcome)},
        )

    def register_health_check(self, name: str, check_func: Callable[[], ComponentHealth]) -> None:
        self._health_checks[name] = check_func

    def check_health(self, detailed: bool = False) -> Dict[str, Any]:
        """Run every registered check.

        The overall status is the worst component status. A check that raises
        counts as UNHEALTHY.

        Args:
            detailed: Include each component's result

        Returns:
            Health report
        """
        if not self._health_checks:
            return {
                "status": HealthStatus.HEALTHY.value,
                "message": "No health checks registered",
            }

        components: List[ComponentHealth] = []
        for name, check_func in self._health_checks.items():
            try:
                components.append(check_func())
            except Exception as e:
                components.append(
                    ComponentHealth(
                        name=name,
                        status=HealthStatus.UNHEALTHY,
                        message=f"Health check failed: {e}",
                    )
                )

        overall = max((c.status for c in components), key=lambda s: s.severity)
        health: Dict[str, Any] = {"status": overall.value, "timestamp": time.time()}
        if detailed:
            health["components"] = [c.to_dict() for c in components]
        return health

    def check_liveness(self) -> Dict[str, Any]:
        return {"status": HealthStatus.HEALTHY.value, "timestamp": time.time()}

    def export_metrics(self) -> bytes:
        """Render the registry in the Prometheus text format."""
        return generate_latest(self.registry)

    @staticmethod
    def _normalize_path(path: str) -> str:
        """Replace UUID and numeric path segments with ``:id``."""
        path = _UUID_SEGMENT.sub(":id", path)
        return _NUMERIC_SEGMENT.sub("/:id", path)
