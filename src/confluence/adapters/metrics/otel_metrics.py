from __future__ import annotations

from typing import Any, Iterable

from opentelemetry import metrics as otel_metrics_api
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import ConsoleMetricExporter, MetricReader, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource

from confluence.adapters.metrics.noop import NoopCounter
from confluence.ports.metrics import Attributes, CounterPort, MeterPort


def build_meter_provider(
    *,
    service_name: str = "confluence",
    export_interval_ms: int = 60_000,
    readers: Iterable[MetricReader] | None = None,
) -> MeterProvider:
    """SDK meter provider; exports to stdout periodically unless readers are given."""
    if readers is None:
        readers = [
            PeriodicExportingMetricReader(ConsoleMetricExporter(), export_interval_millis=export_interval_ms)
        ]
    resource = Resource.create({"service.name": service_name})
    return MeterProvider(resource=resource, metric_readers=list(readers))


def install_meter_provider(provider: MeterProvider) -> None:
    # the global provider can only be set once per process
    try:
        otel_metrics_api.set_meter_provider(provider)
    except Exception:
        pass


class _OtelCounter(CounterPort):
    def __init__(self, counter: Any) -> None:
        self._counter = counter

    def add(self, amount: int, attributes: Attributes | None = None) -> None:
        try:
            self._counter.add(amount, attributes=dict(attributes or {}))
        except Exception:
            return None


class OtelMeter(MeterPort):
    """MeterPort backed by an OpenTelemetry meter.

    Takes its meter from `provider` when given, else from the global provider.
    """

    def __init__(
        self,
        meter: Any | None = None,
        provider: Any | None = None,
        name: str = "confluence",
        version: str | None = None,
    ) -> None:
        if meter is None:
            source = provider if provider is not None else otel_metrics_api
            # positional: instrumentation-scope keyword names differ across versions
            meter = source.get_meter(name, version)
        self._meter = meter

    def create_counter(self, name: str, unit: str | None = None, description: str | None = None) -> CounterPort:
        try:
            c = self._meter.create_counter(name, unit=unit or "", description=description or "")
            return _OtelCounter(c)
        except Exception:
            return NoopCounter()
