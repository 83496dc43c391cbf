"""Per-class refresh scheduling for telemetry caches.

Each telemetry class has its own staleness budget (TTL). The engine asks
is_due() once per tick and calls record_refresh() after every attempt,
successful or not, so a failing source is retried on the normal cadence
instead of every tick.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class TelemetryClass(Enum):
    """Independently-aged telemetry categories."""

    SWAP = "swap"
    TOPOLOGY = "topology"
    DISTRIBUTION = "distribution"
    ACCELERATOR_DEVICES = "accelerator_devices"
    ACCELERATOR_PROCESSES = "accelerator_processes"


DEFAULT_BUDGETS: dict[TelemetryClass, float] = {
    TelemetryClass.SWAP: 1.0,
    TelemetryClass.TOPOLOGY: 30.0,
    TelemetryClass.DISTRIBUTION: 5.0,
    TelemetryClass.ACCELERATOR_DEVICES: 2.0,
    TelemetryClass.ACCELERATOR_PROCESSES: 1.0,
}


@dataclass
class CacheEntry(Generic[T]):
    """Last value of one telemetry class and when it was refreshed."""

    budget: float
    value: T
    refreshed_at: float | None = None

    def is_due(self, now: float) -> bool:
        """True if never refreshed or at least budget seconds have elapsed."""
        if self.refreshed_at is None:
            return True
        return now - self.refreshed_at >= self.budget

    def age(self, now: float) -> float | None:
        """Seconds since last refresh, None if never refreshed."""
        if self.refreshed_at is None:
            return None
        return max(0.0, now - self.refreshed_at)


Predicate = Callable[[], bool]


class CacheScheduler:
    """Owns one CacheEntry per telemetry class.

    The scheduler only touches its own timestamps and stored values. It
    never fetches anything itself.
    """

    def __init__(
        self,
        budgets: Mapping[TelemetryClass, float] | None = None,
        initial: Mapping[TelemetryClass, object] | None = None,
    ) -> None:
        merged = dict(DEFAULT_BUDGETS)
        if budgets:
            merged.update(budgets)
        for cls, budget in merged.items():
            if budget < 0:
                raise ValueError(f"budget for {cls.value} must be >= 0, got {budget}")
        initial = initial or {}
        self._entries: dict[TelemetryClass, CacheEntry] = {
            cls: CacheEntry(budget=budget, value=initial.get(cls))
            for cls, budget in merged.items()
        }
        self._gates: dict[TelemetryClass, Predicate] = {}

    def entry(self, cls: TelemetryClass) -> CacheEntry:
        """Return the cache entry for a class."""
        return self._entries[cls]

    def value(self, cls: TelemetryClass):
        """Return the cached value for a class."""
        return self._entries[cls].value

    def budget(self, cls: TelemetryClass) -> float:
        """Return the staleness budget for a class in seconds."""
        return self._entries[cls].budget

    def set_gate(self, cls: TelemetryClass, predicate: Predicate | None) -> None:
        """Only consider cls due while predicate() is true.

        Gating one class has no effect on the others. Pass None to remove.
        """
        if predicate is None:
            self._gates.pop(cls, None)
        else:
            self._gates[cls] = predicate

    def is_due(self, cls: TelemetryClass, now: float) -> bool:
        """True when cls should be refreshed at time now."""
        gate = self._gates.get(cls)
        if gate is not None and not gate():
            return False
        return self._entries[cls].is_due(now)

    def record_refresh(self, cls: TelemetryClass, now: float) -> None:
        """Mark cls refreshed at now, regardless of fetch outcome."""
        self._entries[cls].refreshed_at = now

    def store(self, cls: TelemetryClass, value: object, now: float) -> None:
        """Replace the cached value and mark it refreshed."""
        entry = self._entries[cls]
        entry.value = value
        entry.refreshed_at = now

    def invalidate(self, cls: TelemetryClass) -> None:
        """Force cls to be due on the next check."""
        self._entries[cls].refreshed_at = None

    def staleness(self, now: float) -> dict[TelemetryClass, float | None]:
        """Seconds since last refresh per class (None if never refreshed)."""
        return {cls: entry.age(now) for cls, entry in self._entries.items()}
