"""Telemetry record types for nv-swaptop.

All memory quantities are stored in KiB. Conversion to MiB/GiB happens only
at presentation time via convert_kb().
"""

from dataclasses import dataclass, field
from enum import Enum


class SizeUnit(Enum):
    """Display unit for memory quantities."""

    KB = "kb"
    MB = "mb"
    GB = "gb"

    @property
    def suffix(self) -> str:
        """Short label shown next to values."""
        return {"kb": "KiB", "mb": "MiB", "gb": "GiB"}[self.value]


def convert_kb(kb: float, unit: SizeUnit) -> float:
    """Convert a KiB quantity to the given display unit."""
    if unit is SizeUnit.MB:
        return kb / 1024.0
    if unit is SizeUnit.GB:
        return kb / (1024.0 * 1024.0)
    return float(kb)


class ActiveView(Enum):
    """Dashboard views. Order is the Tab cycling order."""

    SWAP = "swap"
    TOPOLOGY = "topology"
    ACCELERATOR = "accelerator"
    UNIFIED = "unified"

    def next(self) -> "ActiveView":
        """Return the view after this one, wrapping around."""
        views = list(ActiveView)
        return views[(views.index(self) + 1) % len(views)]


class Placement(Enum):
    """Where a process's memory lives across CPU and accelerator domains."""

    CPU_ONLY = "cpu"
    ACCELERATOR_ONLY = "accelerator"
    CPU_AND_ACCELERATOR = "cpu+accelerator"


# ─────────────────────────────────────────────────────────────────────────────
# Swap
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(slots=True, frozen=True)
class SwapProcessRecord:
    """A process currently holding swapped-out pages."""

    pid: int
    name: str
    swap_kb: float
    last_cpu: int | None = None


@dataclass(slots=True, frozen=True)
class SwapDevice:
    """One row of the kernel swap device table."""

    name: str
    kind: str  # "partition" or "file"
    size_kb: int
    used_kb: int
    priority: int


@dataclass(slots=True)
class SwapSummary:
    """Global swap totals plus the per-device breakdown."""

    total_kb: int = 0
    used_kb: int = 0
    devices: list[SwapDevice] = field(default_factory=list)

    @property
    def percent(self) -> float:
        """Used swap as a percentage of total (0.0 when no swap is configured)."""
        if self.total_kb <= 0:
            return 0.0
        return self.used_kb / self.total_kb * 100.0


# ─────────────────────────────────────────────────────────────────────────────
# Accelerator
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(slots=True, frozen=True)
class AcceleratorDevice:
    """A discrete accelerator. Identity is the device index."""

    index: int
    name: str
    total_kb: int
    used_kb: int
    free_kb: int
    bus_address: str
    topology_node: int | None = None
    temperature_c: int | None = None

    @property
    def used_percent(self) -> float:
        """Used device memory as a percentage of total."""
        if self.total_kb <= 0:
            return 0.0
        return self.used_kb / self.total_kb * 100.0


@dataclass(slots=True, frozen=True)
class AcceleratorProcessRecord:
    """Memory held by one process on one accelerator.

    A process using several devices produces several records.
    """

    pid: int
    name: str
    device_index: int
    memory_kb: int


# ─────────────────────────────────────────────────────────────────────────────
# Topology
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(slots=True, frozen=True)
class CpuNode:
    """A node with CPUs attached."""

    label = "CPU"


@dataclass(slots=True, frozen=True)
class AcceleratorAttachedMemory:
    """A CPU-less node backed by accelerator memory (e.g. GPU HBM)."""

    device_index: int
    label = "GPU HBM"


@dataclass(slots=True, frozen=True)
class Unclassified:
    """A CPU-less node with no known accelerator affinity."""

    label = "Unknown"


NodeKind = CpuNode | AcceleratorAttachedMemory | Unclassified


@dataclass(slots=True, frozen=True)
class TopologyNode:
    """A NUMA memory domain.

    kind is assigned by topology.classify() each time topology is read.
    """

    id: int
    total_kb: int
    free_kb: int
    cpus: frozenset[int]
    kind: NodeKind = Unclassified()

    @property
    def used_kb(self) -> int:
        """Memory in use on this node."""
        return max(0, self.total_kb - self.free_kb)

    @property
    def is_accelerator_memory(self) -> bool:
        """True for nodes backed by accelerator-attached memory."""
        return isinstance(self.kind, AcceleratorAttachedMemory)


@dataclass(slots=True)
class ProcessTopologyDistribution:
    """Resident pages of one process, per topology node."""

    pid: int
    name: str
    pages_per_node: dict[int, int] = field(default_factory=dict)
    last_cpu: int | None = None
    cpu_node: int | None = None

    @property
    def total_pages(self) -> int:
        """Sum of pages over all nodes. Computed on access, never stored."""
        return sum(self.pages_per_node.values())

    def pages_on(self, node_id: int) -> int:
        """Pages resident on a node (0 if none)."""
        return self.pages_per_node.get(node_id, 0)


# ─────────────────────────────────────────────────────────────────────────────
# Unified
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(slots=True)
class UnifiedProcessRecord:
    """One process joined across swap, accelerator and topology data."""

    pid: int
    name: str
    swap_kb: int = 0
    dominant_node: int | None = None
    accelerator_memory_kb: int | None = None
    accelerator_index: int | None = None
    placement: Placement = Placement.CPU_ONLY

    @property
    def footprint_kb(self) -> int:
        """Swap plus accelerator memory."""
        return self.swap_kb + (self.accelerator_memory_kb or 0)

    def to_dict(self) -> dict:
        """Serialize to a dictionary."""
        return {
            "pid": self.pid,
            "name": self.name,
            "swap_kb": self.swap_kb,
            "dominant_node": self.dominant_node,
            "accelerator_memory_kb": self.accelerator_memory_kb,
            "accelerator_index": self.accelerator_index,
            "placement": self.placement.value,
        }
