"""Prometheus metrics helpers for component operations.

Examples
--------
>>> from jskos_common.observability import MetricsProvider, observe_duration
>>> provider = MetricsProvider.default()
>>> with observe_duration(provider, "infer_mappings", component="mappings") as observer:
...     observer.mark_success()
"""

from __future__ import annotations

import time
import types
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal, cast

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram

from jskos_common.logging import get_logger, with_fields

if TYPE_CHECKING:
    from collections.abc import Sequence

__all__ = [
    "DurationObservation",
    "MetricsProvider",
    "build_counter",
    "build_histogram",
    "observe_duration",
]


LOGGER = get_logger(__name__)
StatusLiteral = Literal["success", "error"]
_SET_FROZEN_ATTR = object.__setattr__


def _thaw(target: object, **updates: object) -> None:
    """Assign ``updates`` to ``target`` bypassing frozen dataclass guards."""
    for name, value in updates.items():
        _SET_FROZEN_ATTR(target, name, value)


def _existing_collector(name: str, registry: CollectorRegistry) -> object | None:
    names_to_collectors = cast(
        "dict[str, object] | None",
        getattr(registry, "_names_to_collectors", None),
    )
    if isinstance(names_to_collectors, dict):
        return names_to_collectors.get(name)
    return None


def build_counter(
    name: str,
    documentation: str,
    labelnames: Sequence[str] = (),
    *,
    registry: CollectorRegistry | None = None,
) -> Counter:
    """Return a counter, reusing an already registered collector of that name.

    Parameters
    ----------
    name : str
        Metric name (including the ``_total`` suffix).
    documentation : str
        Human readable description of the metric.
    labelnames : Sequence[str], optional
        Label names applied to the metric. Defaults to no labels.
    registry : CollectorRegistry | None, optional
        Registry to register against. Defaults to the global registry.

    Returns
    -------
    Counter
        Registered counter.

    Raises
    ------
    ValueError
        If registration fails and no collector of that name exists.
    """
    target = registry or REGISTRY
    try:
        return Counter(name, documentation, tuple(labelnames), registry=target)
    except ValueError:
        existing = _existing_collector(name, target)
        if existing is None:
            raise
        return cast("Counter", existing)


def build_histogram(
    name: str,
    documentation: str,
    labelnames: Sequence[str] = (),
    *,
    registry: CollectorRegistry | None = None,
) -> Histogram:
    """Return a histogram, reusing an already registered collector of that name."""
    target = registry or REGISTRY
    try:
        return Histogram(name, documentation, tuple(labelnames), registry=target)
    except ValueError:
        existing = _existing_collector(name, target)
        if existing is None:
            raise
        return cast("Histogram", existing)


@dataclass(slots=True, frozen=True)
class _ObservabilityCache:
    provider: MetricsProvider | None = None


_OBS_CACHE = _ObservabilityCache()


@dataclass(slots=True, frozen=True)
class MetricsProvider:
    """Provide component-level metrics for service operations.

    Parameters
    ----------
    registry : CollectorRegistry | None, optional
        Prometheus registry to use. If None, uses the global registry.

    Attributes
    ----------
    runs_total : Counter
        ``jskos_runs_total{component,status}``.
    operation_duration_seconds : Histogram
        ``jskos_operation_duration_seconds{component,operation,status}``.
    """

    runs_total: Counter
    operation_duration_seconds: Histogram
    _registry: CollectorRegistry = field(repr=False)

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        resolved_registry = registry or REGISTRY
        _thaw(
            self,
            _registry=resolved_registry,
            runs_total=build_counter(
                "jskos_runs_total",
                "Total number of operations executed by a component.",
                ("component", "status"),
                registry=resolved_registry,
            ),
            operation_duration_seconds=build_histogram(
                "jskos_operation_duration_seconds",
                "Operation duration in seconds for each component/operation pair.",
                ("component", "operation", "status"),
                registry=resolved_registry,
            ),
        )

    @property
    def registry(self) -> CollectorRegistry:
        """Return the underlying Prometheus registry."""
        return self._registry

    @classmethod
    def default(cls) -> MetricsProvider:
        """Return a cached provider bound to the global registry."""
        if _OBS_CACHE.provider is None:
            _thaw(_OBS_CACHE, provider=cls())
        return cast("MetricsProvider", _OBS_CACHE.provider)


@dataclass(slots=True, frozen=True)
class DurationObservation:
    """Capture metrics and structured status for an in-flight operation."""

    metrics: MetricsProvider
    operation: str
    component: str
    correlation_id: str | None
    status: StatusLiteral = "success"
    _start: float = field(default_factory=time.monotonic)

    def mark_success(self) -> None:
        """Mark the operation as successful."""
        _thaw(self, status="success")

    def mark_error(self) -> None:
        """Mark the operation as failed."""
        _thaw(self, status="error")

    def duration_seconds(self) -> float:
        """Return the elapsed wall-clock duration in seconds."""
        return time.monotonic() - self._start


class _DurationObservationContext:
    def __init__(
        self,
        *,
        metrics: MetricsProvider,
        operation: str,
        component: str,
        correlation_id: str | None,
    ) -> None:
        self._observation = DurationObservation(
            metrics=metrics,
            operation=operation,
            component=component,
            correlation_id=correlation_id,
        )

    def __enter__(self) -> DurationObservation:
        return self._observation

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        _tb: types.TracebackType | None,
    ) -> bool:
        if exc_type is not None:
            self._observation.mark_error()
        _finalise_observation(self._observation)
        return False


def observe_duration(
    metrics: MetricsProvider,
    operation: str,
    *,
    component: str = "unknown",
    correlation_id: str | None = None,
) -> _DurationObservationContext:
    """Record metrics and a structured log line for a component operation.

    Parameters
    ----------
    metrics : MetricsProvider
        Metrics provider instance.
    operation : str
        Operation name.
    component : str, optional
        Component name. Defaults to "unknown".
    correlation_id : str | None, optional
        Correlation ID for tracing.

    Returns
    -------
    _DurationObservationContext
        Context manager yielding a :class:`DurationObservation` instance.

    Notes
    -----
    Exceptions raised within the managed block propagate after the observation
    is marked as ``"error"`` and metrics/logs are recorded.
    """
    return _DurationObservationContext(
        metrics=metrics,
        operation=operation,
        component=component,
        correlation_id=correlation_id,
    )


def _finalise_observation(observation: DurationObservation) -> None:
    duration = observation.duration_seconds()
    observation.metrics.runs_total.labels(
        component=observation.component,
        status=observation.status,
    ).inc()
    observation.metrics.operation_duration_seconds.labels(
        component=observation.component,
        operation=observation.operation,
        status=observation.status,
    ).observe(duration)
    with with_fields(
        LOGGER,
        correlation_id=observation.correlation_id,
        operation=observation.operation,
        status=observation.status,
    ) as adapter:
        adapter.info(
            "Operation completed",
            extra={"component": observation.component, "duration_ms": duration * 1000},
        )
