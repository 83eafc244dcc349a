from __future__ import annotations
from typing import Dict, List

from confluence.application.telemetry.run_context import RunTelemetry
from confluence.domain.signals.analyzers.base import BaseAnalyzer
from confluence.ports.telemetry import TelemetryLevel, TelemetryPort

ANALYZERS: Dict[str, List[BaseAnalyzer]] = {}
DEFAULT_METHOD: Dict[str, str] = {}


def register_analyzer(*, module: str, method: str, tags: set[str]):
    """
    Register a bar-based analyzer implementation for a module name
    (e.g. "rsi") and method (e.g. "wilder_14").
    """
    def deco(cls):
        inst = cls()
        inst.module = module
        inst.method = method
        inst.tags = tags
        ANALYZERS.setdefault(module, []).append(inst)
        return cls
    return deco


def set_default_analyzer_method(module: str, method: str) -> None:
    DEFAULT_METHOD[module] = method


def pick_analyzer_for(module: str) -> BaseAnalyzer:
    """
    Pick an analyzer for a module name. Preference order:
    - DEFAULT_METHOD[module] when configured
    - analyzers tagged "default"
    - otherwise, the first registered
    """
    candidates = list(ANALYZERS.get(module, []))
    if not candidates:
        raise KeyError(f"No analyzers registered for module={module!r}")

    method = DEFAULT_METHOD.get(module)
    if method:
        for a in candidates:
            if a.method == method:
                return a

    defaults = [a for a in candidates if "default" in getattr(a, "tags", set())]
    return (defaults or candidates)[0]


def auto_discover(telemetry: TelemetryPort | None = None) -> None:
    """
    Import every analyzer plugin module so that their decorators run and
    fill the registry. Called once during application startup.
    """
    import importlib
    import pkgutil

    t = RunTelemetry(port=telemetry, run_id="bootstrap", base_scope={"component": "plugins"})
    base = "confluence.domain.signals.analyzers"
    pkg = importlib.import_module(base)

    for mod in pkgutil.walk_packages(pkg.__path__, pkg.__name__ + "."):
        try:
            importlib.import_module(mod.name)
        except Exception as e:
            t.emit(
                name="plugins.import_failed",
                channel="ops",
                level=TelemetryLevel.ERROR,
                payload={"module": mod.name, "exception_type": type(e).__name__, "message": str(e)},
            )

    t.emit(
        name="plugins.discovered",
        channel="ops",
        payload={"analyzers": {k: [a.method for a in v] for k, v in sorted(ANALYZERS.items())}},
    )
