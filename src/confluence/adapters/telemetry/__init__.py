from .console import ConsoleTelemetrySink
from .memory import InMemoryTelemetrySink

__all__ = [
    "ConsoleTelemetrySink",
    "InMemoryTelemetrySink",
]
