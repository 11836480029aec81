from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List

from models import WatchConfig


@dataclass
class HttpContext:
    watcher: Any
    config: WatchConfig
    config_lock: Any
    rules: List[Any] = field(default_factory=list)
