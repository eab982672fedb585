from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field


@dataclass
class RuntimeStats:
    started_at: float = field(default_factory=time.time)
    timers_scheduled: int = 0
    timers_fired: int = 0
    timers_failed: int = 0
    sweeps_run: int = 0
    items_reinstated: int = 0
    polls_run: int = 0
    items_polled: int = 0

    def uptime_seconds(self) -> int:
        return int(time.time() - self.started_at)

    def as_dict(self) -> dict:
        out = asdict(self)
        out["uptime_seconds"] = self.uptime_seconds()
        return out
