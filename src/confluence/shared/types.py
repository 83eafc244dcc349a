from __future__ import annotations
from datetime import datetime
from typing import Callable

# Injected into the services so tests can drive time explicitly.
Clock = Callable[[], datetime]
