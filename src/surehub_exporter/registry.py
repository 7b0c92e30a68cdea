"""Idempotent gauge/counter registry keyed by metric name and label set.

Each distinct (name, label set) pair is its own series object: asking for
the same pair twice returns the instance created the first time. Series are
exposed through a single custom collector registered on an injected
``CollectorRegistry``, so one metric name may carry series with different
label names (``weight_change`` with and without pet labels).
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Iterator, Mapping
from typing import Literal, cast

from prometheus_client import CollectorRegistry
from prometheus_client.metrics_core import Metric
from prometheus_client.registry import Collector

logger = logging.getLogger(__name__)

NAMESPACE = "surehub"

_METRIC_NAME_RE = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
_LABEL_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

MetricKind = Literal["gauge", "counter"]
LabelKey = tuple[tuple[str, str], ...]


class RegistrationError(RuntimeError):
    """Raised when a series cannot be registered for a reason other than reuse."""


class _Series:
    def __init__(self, name: str, labels: Mapping[str, str]) -> None:
        self.name = name
        self.labels = dict(labels)
        self._value = 0.0
        self._lock = threading.Lock()

    @property
    def value(self) -> float:
        with self._lock:
            return self._value


class GaugeSeries(_Series):
    """A single gauge time series. ``set`` overwrites the last value."""

    def set(self, value: float) -> None:
        with self._lock:
            self._value = float(value)


class CounterSeries(_Series):
    """A single counter time series.

    Amounts are added as given. A negative amount breaks counter semantics;
    it is still applied, and the first one per series is logged.
    """

    def __init__(self, name: str, labels: Mapping[str, str]) -> None:
        super().__init__(name, labels)
        self._warned_negative = False

    def add(self, amount: float) -> None:
        amount = float(amount)
        with self._lock:
            self._value += amount
            warn = amount < 0 and not self._warned_negative
            if warn:
                self._warned_negative = True
        if warn:
            logger.warning(
                "Negative amount added to counter %s; the series will decrease",
                self.name,
                extra={"labels": self.labels, "amount": amount},
            )


class MetricRegistry(Collector):
    """Lookup-or-create gauges and counters on a ``CollectorRegistry``."""

    def __init__(
        self,
        registry: CollectorRegistry | None = None,
        *,
        namespace: str = NAMESPACE,
    ) -> None:
        self._registry = registry if registry is not None else CollectorRegistry()
        self._namespace = namespace
        self._series: dict[tuple[str, LabelKey], _Series] = {}
        self._kinds: dict[str, MetricKind] = {}
        self._lock = threading.Lock()
        try:
            self._registry.register(self)
        except ValueError as exc:
            raise RegistrationError(f"failed to register metric collector: {exc}") from exc

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def ensure_gauge(self, name: str, labels: Mapping[str, str]) -> GaugeSeries:
        return cast(GaugeSeries, self._ensure("gauge", name, labels))

    def ensure_counter(self, name: str, labels: Mapping[str, str]) -> CounterSeries:
        return cast(CounterSeries, self._ensure("counter", name, labels))

    def full_name(self, name: str) -> str:
        return f"{self._namespace}_{name}" if self._namespace else name

    def _ensure(self, kind: MetricKind, name: str, labels: Mapping[str, str]) -> _Series:
        full_name = self.full_name(name)
        if not _METRIC_NAME_RE.match(full_name):
            raise RegistrationError(f"invalid metric name: {full_name!r}")
        for label_name in labels:
            if not _LABEL_NAME_RE.match(label_name) or label_name.startswith("__"):
                raise RegistrationError(f"invalid label name {label_name!r} for {full_name}")

        key = (full_name, tuple(sorted((k, str(v)) for k, v in labels.items())))
        with self._lock:
            existing_kind = self._kinds.get(full_name)
            if existing_kind is not None and existing_kind != kind:
                raise RegistrationError(
                    f"failed to register {kind} {full_name}: already registered as {existing_kind}"
                )

            series = self._series.get(key)
            if series is not None:
                return series

            series_cls = GaugeSeries if kind == "gauge" else CounterSeries
            series = series_cls(full_name, dict(key[1]))
            self._series[key] = series
            self._kinds[full_name] = kind
            logger.debug("Registered %s %s", kind, full_name, extra={"labels": series.labels})
            return series

    def describe(self) -> list[Metric]:
        # series appear over time; nothing to reserve at registration
        return []

    def collect(self) -> Iterator[Metric]:
        with self._lock:
            series_list = list(self._series.values())
            kinds = dict(self._kinds)

        families: dict[str, Metric] = {}
        for series in series_list:
            kind = kinds[series.name]
            family = families.get(series.name)
            if family is None:
                family = Metric(series.name, f"SureHub {kind} {series.name}", kind)
                families[series.name] = family
            sample_name = f"{series.name}_total" if kind == "counter" else series.name
            family.add_sample(sample_name, series.labels, series.value)

        yield from families.values()
