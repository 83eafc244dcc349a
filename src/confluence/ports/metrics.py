from __future__ import annotations

from typing import Mapping, Protocol, Sequence, Union, runtime_checkable

# OpenTelemetry attribute values are limited to primitives and sequences of primitives.
AttributePrimitive = Union[bool, str, int, float]
AttributeValue = Union[AttributePrimitive, Sequence[AttributePrimitive]]
Attributes = Mapping[str, AttributeValue]


@runtime_checkable
class CounterPort(Protocol):
    def add(self, amount: int, attributes: Attributes | None = None) -> None: ...


@runtime_checkable
class MeterPort(Protocol):
    def create_counter(self, name: str, unit: str | None = None, description: str | None = None) -> CounterPort: ...
