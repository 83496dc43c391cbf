"""Tick driver: refresh due telemetry, correlate, rank.

One call to TelemetryEngine.tick() is one UI tick. Each telemetry class is
refreshed at most once per tick, only when its cache entry is due, and
only after the source reports the capability is present. Correlation then
reads the latest completed value of every class.
"""

import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from nv_swaptop.correlation import correlate
from nv_swaptop.history import SwapHistory
from nv_swaptop.models import (
    AcceleratorDevice,
    AcceleratorProcessRecord,
    ActiveView,
    ProcessTopologyDistribution,
    SwapProcessRecord,
    SwapSummary,
    TopologyNode,
    UnifiedProcessRecord,
)
from nv_swaptop.ranking import SortKey, rank
from nv_swaptop.scheduler import CacheScheduler, TelemetryClass
from nv_swaptop.source import FetchFailure, ProcTelemetrySource, TelemetrySource
from nv_swaptop.topology import cpu_to_node

if TYPE_CHECKING:
    from nv_swaptop.config import Config

log = structlog.get_logger()

DISTRIBUTION_VIEWS = frozenset({ActiveView.TOPOLOGY, ActiveView.UNIFIED})


@dataclass(frozen=True)
class DashboardState:
    """Everything the presentation layer renders for one tick."""

    tick: int
    records: tuple[UnifiedProcessRecord, ...]
    swap_summary: SwapSummary
    swap_processes: tuple[SwapProcessRecord, ...]
    nodes: tuple[TopologyNode, ...]
    devices: tuple[AcceleratorDevice, ...]
    accelerator_processes: tuple[AcceleratorProcessRecord, ...]
    distributions: tuple[ProcessTopologyDistribution, ...]
    history: tuple[int, ...]
    staleness: dict[TelemetryClass, float | None]
    sort_key: SortKey
    topology_available: bool = False
    accelerator_available: bool = False
    errors: dict[TelemetryClass, str] = field(default_factory=dict)


class TelemetryEngine:
    """Owns the cache scheduler and the swap history for one dashboard."""

    def __init__(
        self,
        source: TelemetrySource,
        scheduler: CacheScheduler | None = None,
        *,
        sort_key: SortKey = SortKey.SWAP,
        view: ActiveView = ActiveView.SWAP,
        distribution_top_n: int = 20,
        history_size: int = 60,
    ) -> None:
        self.source = source
        self.scheduler = scheduler or CacheScheduler()
        self.sort_key = sort_key
        self.view = view
        self.distribution_top_n = distribution_top_n
        self.history = SwapHistory(history_size)
        self.tick_count = 0
        self._errors: dict[TelemetryClass, str] = {}
        self._topology_available = False
        self._accelerator_available = False

        s = self.scheduler
        for cls, empty in (
            (TelemetryClass.SWAP, (SwapSummary(), [])),
            (TelemetryClass.TOPOLOGY, []),
            (TelemetryClass.DISTRIBUTION, []),
            (TelemetryClass.ACCELERATOR_DEVICES, []),
            (TelemetryClass.ACCELERATOR_PROCESSES, []),
        ):
            if s.value(cls) is None:
                s.entry(cls).value = empty
        s.set_gate(TelemetryClass.DISTRIBUTION, lambda: self.view in DISTRIBUTION_VIEWS)

    @classmethod
    def from_config(
        cls, config: "Config", source: TelemetrySource | None = None
    ) -> "TelemetryEngine":
        """Build an engine wired to the host (or the given source) from config."""
        if source is None:
            source = ProcTelemetrySource(
                node_root=Path(config.system.sysfs_node_root),
                pci_root=Path(config.system.sysfs_pci_root),
                accelerator_tool=config.system.accelerator_tool,
                accelerator_timeout=config.refresh.accelerator_timeout,
            )
        return cls(
            source,
            CacheScheduler(config.refresh.budgets()),
            sort_key=config.display.sort,
            view=config.display.view,
            distribution_top_n=config.refresh.distribution_top_n,
            history_size=config.display.history_size,
        )

    # ─────────────────────────────────────────────────────────────────────
    # Cached values
    # ─────────────────────────────────────────────────────────────────────

    @property
    def swap_summary(self) -> SwapSummary:
        return self.scheduler.value(TelemetryClass.SWAP)[0]

    @property
    def swap_processes(self) -> list[SwapProcessRecord]:
        return self.scheduler.value(TelemetryClass.SWAP)[1]

    @property
    def nodes(self) -> list[TopologyNode]:
        return self.scheduler.value(TelemetryClass.TOPOLOGY)

    @property
    def distributions(self) -> list[ProcessTopologyDistribution]:
        return self.scheduler.value(TelemetryClass.DISTRIBUTION)

    @property
    def devices(self) -> list[AcceleratorDevice]:
        return self.scheduler.value(TelemetryClass.ACCELERATOR_DEVICES)

    @property
    def accelerator_processes(self) -> list[AcceleratorProcessRecord]:
        return self.scheduler.value(TelemetryClass.ACCELERATOR_PROCESSES)

    # ─────────────────────────────────────────────────────────────────────
    # Refresh
    # ─────────────────────────────────────────────────────────────────────

    def _refresh(self, cls: TelemetryClass, now: float, fetch, available: bool = True) -> bool:
        """Refresh one class if due. Returns True if a new value was stored.

        When the capability is missing the class degrades to an empty value.
        On FetchFailure the previous value is kept. The timestamp advances
        in every case.
        """
        if not self.scheduler.is_due(cls, now):
            return False
        if not available:
            self.scheduler.store(cls, [], now)
            self._errors.pop(cls, None)
            return True
        try:
            value = fetch()
        except FetchFailure as e:
            self.scheduler.record_refresh(cls, now)
            self._errors[cls] = str(e)
            log.warning("fetch_failed", telemetry=cls.value, error=str(e))
            return False
        self.scheduler.store(cls, value, now)
        self._errors.pop(cls, None)
        return True

    def _read_swap(self) -> tuple[SwapSummary, list[SwapProcessRecord]]:
        return self.source.read_swap_summary(), self.source.read_swap_processes()

    def _read_distributions(self) -> list[ProcessTopologyDistribution]:
        """Distributions for the heaviest swap users.

        A process that exits between the swap scan and the read is skipped.
        """
        top = sorted(self.swap_processes, key=lambda p: p.swap_kb, reverse=True)
        nodes = self.nodes
        result: list[ProcessTopologyDistribution] = []
        for proc in top[: self.distribution_top_n]:
            try:
                distribution = self.source.read_distribution(proc.pid, proc.name)
            except FetchFailure as e:
                log.debug("distribution_skipped", pid=proc.pid, error=str(e))
                continue
            distribution.last_cpu = proc.last_cpu
            distribution.cpu_node = cpu_to_node(proc.last_cpu, nodes)
            result.append(distribution)
        return result

    def refresh(self, now: float) -> None:
        """Refresh every due class once, in dependency order."""
        source = self.source
        self._topology_available = source.topology_available()
        self._accelerator_available = source.accelerator_available()

        if self._refresh(TelemetryClass.SWAP, now, self._read_swap):
            self.history.push(self.tick_count, self.swap_summary.used_kb)

        self._refresh(
            TelemetryClass.ACCELERATOR_DEVICES,
            now,
            source.read_accelerator_devices,
            self._accelerator_available,
        )
        self._refresh(
            TelemetryClass.ACCELERATOR_PROCESSES,
            now,
            source.read_accelerator_processes,
            self._accelerator_available,
        )
        if self._refresh(
            TelemetryClass.TOPOLOGY, now, source.read_topology, self._topology_available
        ):
            log.debug("topology_refreshed", nodes=len(self.nodes))
        self._refresh(
            TelemetryClass.DISTRIBUTION,
            now,
            self._read_distributions,
            self._topology_available,
        )

    def correlated(self) -> list[UnifiedProcessRecord]:
        """Unified records from the current cache contents, ranked."""
        unified = correlate(
            self.swap_processes,
            self.accelerator_processes,
            self.distributions,
            self.nodes,
        )
        return rank(unified, self.sort_key)

    def tick(self, now: float | None = None, view: ActiveView | None = None) -> DashboardState:
        """Run one tick and return the state to render.

        Args:
            now: Monotonic timestamp (defaults to time.monotonic()).
            view: The view currently displayed, which gates distribution reads.
        """
        if now is None:
            now = time.monotonic()
        if view is not None:
            self.view = view

        self.refresh(now)
        records = self.correlated()
        state = DashboardState(
            tick=self.tick_count,
            records=tuple(records),
            swap_summary=self.swap_summary,
            swap_processes=tuple(self.swap_processes),
            nodes=tuple(self.nodes),
            devices=tuple(self.devices),
            accelerator_processes=tuple(self.accelerator_processes),
            distributions=tuple(self.distributions),
            history=tuple(self.history.values()),
            staleness=self.scheduler.staleness(now),
            sort_key=self.sort_key,
            topology_available=self._topology_available,
            accelerator_available=self._accelerator_available,
            errors=dict(self._errors),
        )
        self.tick_count += 1
        return state

    def invalidate(self, classes: Iterable[TelemetryClass] | None = None) -> None:
        """Force classes (default all) to refresh on the next tick."""
        for cls in classes if classes is not None else TelemetryClass:
            self.scheduler.invalidate(cls)
