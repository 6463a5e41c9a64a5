import hashlib
import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Protocol


class Clock(Protocol):
    def now_utc(self) -> datetime:
        ...

    def time(self) -> float:
        ...

    def sleep(self, seconds: float) -> None:
        ...


@dataclass
class FrozenClock:
    """Clock that never blocks; sleeps advance time and are recorded."""

    start_time_utc: datetime
    slept: List[float] = field(default_factory=list)

    def now_utc(self) -> datetime:
        return self.start_time_utc + timedelta(seconds=sum(self.slept))

    def time(self) -> float:
        return float(self.now_utc().timestamp())

    def sleep(self, seconds: float) -> None:
        self.slept.append(float(seconds))


@dataclass
class SystemClock:
    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)

    def time(self) -> float:
        return float(time.time())

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


def _stable_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def make_run_id(
    *,
    clock: Clock,
    seed_material: Dict[str, Any],
) -> str:
    """Return ``run_<UTC timestamp>_<hash>`` identifying one sandbox run.

    ``seed_material`` holds the run inputs (version, repository path, pid) so
    concurrent runs started in the same second get distinct ids.
    """
    dt = clock.now_utc()
    ts = dt.strftime("%Y%m%d_%H%M%S")
    h = hashlib.sha256(_stable_json(seed_material).encode("utf-8", errors="ignore")).hexdigest()[:8]
    return f"run_{ts}_{h}"
