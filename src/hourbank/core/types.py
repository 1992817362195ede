"""Type aliases used across the Hourbank escrow engine."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

JsonDict = dict[str, Any]
Clock = Callable[[], datetime]
