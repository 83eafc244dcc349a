from __future__ import annotations

from confluence.ports.metrics import Attributes, CounterPort, MeterPort


class NoopCounter(CounterPort):
    def add(self, amount: int, attributes: Attributes | None = None) -> None:
        return None


class NoopMeter(MeterPort):
    def create_counter(self, name: str, unit: str | None = None, description: str | None = None) -> CounterPort:
        return NoopCounter()
