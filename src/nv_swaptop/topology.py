"""NUMA topology discovery and node classification.

Nodes are read from sysfs (node<N>/meminfo, node<N>/cpulist) and classified:

- Any CPUs attached → CpuNode
- No CPUs, but an accelerator reports the node as its affinity → AcceleratorAttachedMemory
- Otherwise → Unclassified

Classification is redone on every topology read.
"""

import dataclasses
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path

import structlog

from nv_swaptop.models import (
    AcceleratorAttachedMemory,
    AcceleratorDevice,
    CpuNode,
    NodeKind,
    TopologyNode,
    Unclassified,
)
from nv_swaptop.parsing import parse_node_meminfo, parse_range_list

log = structlog.get_logger()

DEFAULT_NODE_ROOT = Path("/sys/devices/system/node")
DEFAULT_PCI_ROOT = Path("/sys/bus/pci/devices")

BusResolver = Callable[[str], int | None]


def classify(node: TopologyNode, affinity_index: Mapping[int, int]) -> NodeKind:
    """Assign a semantic kind to a topology node.

    Args:
        node: Node with its CPU affinity set populated.
        affinity_index: Topology node id → accelerator device index.

    Returns:
        CpuNode if the node has CPUs, AcceleratorAttachedMemory if a device
        claims the node, else Unclassified.
    """
    if node.cpus:
        return CpuNode()
    device_index = affinity_index.get(node.id)
    if device_index is not None:
        return AcceleratorAttachedMemory(device_index=device_index)
    return Unclassified()


# ─────────────────────────────────────────────────────────────────────────────
# Accelerator affinity
# ─────────────────────────────────────────────────────────────────────────────


def _bus_address_candidates(bus_address: str) -> list[str]:
    """Spellings of a PCI address to try against sysfs.

    The vendor tool reports an 8-digit domain ("00000000:01:00.0") while sysfs
    uses 4 digits, lowercase ("0000:01:00.0").
    """
    raw = bus_address.strip()
    candidates = [raw]
    domain, sep, rest = raw.partition(":")
    if sep and len(domain) > 4:
        candidates.append(f"{domain[-4:]}:{rest}".lower())
    lowered = raw.lower()
    if lowered not in candidates:
        candidates.append(lowered)
    return candidates


def sysfs_bus_resolver(pci_root: Path = DEFAULT_PCI_ROOT) -> BusResolver:
    """Build a resolver reading <pci_root>/<bus>/numa_node.

    The resolver returns None for unreadable files, garbage, and the
    kernel's -1 ("no affinity").
    """

    def resolve(bus_address: str) -> int | None:
        for candidate in _bus_address_candidates(bus_address):
            path = pci_root / candidate / "numa_node"
            try:
                content = path.read_text()
            except OSError:
                continue
            try:
                node_id = int(content.strip())
            except ValueError:
                return None
            return node_id if node_id >= 0 else None
        return None

    return resolve


def build_affinity_index(
    devices: Iterable[AcceleratorDevice],
    resolve: BusResolver,
) -> dict[int, int]:
    """Map topology node id → accelerator device index.

    Devices whose bus address doesn't resolve are silently left out. When
    several devices report the same node, the lowest device index wins.
    """
    index: dict[int, int] = {}
    for device in sorted(devices, key=lambda d: d.index):
        node_id = resolve(device.bus_address)
        if node_id is None or node_id < 0:
            continue
        index.setdefault(node_id, device.index)
    return index


def attach_topology_nodes(
    devices: Iterable[AcceleratorDevice],
    resolve: BusResolver,
) -> list[AcceleratorDevice]:
    """Return devices with topology_node filled in from the resolver."""
    return [
        dataclasses.replace(device, topology_node=resolve(device.bus_address))
        for device in devices
    ]


# ─────────────────────────────────────────────────────────────────────────────
# Discovery
# ─────────────────────────────────────────────────────────────────────────────


def cpu_to_node(cpu: int | None, nodes: Iterable[TopologyNode]) -> int | None:
    """Find the node whose CPU set contains cpu."""
    if cpu is None:
        return None
    for node in nodes:
        if cpu in node.cpus:
            return node.id
    return None


def topology_available(root: Path = DEFAULT_NODE_ROOT) -> bool:
    """True when the kernel exposes NUMA nodes."""
    return (root / "node0").exists()


def _read_or_empty(path: Path) -> str:
    try:
        return path.read_text()
    except OSError:
        return ""


def discover_topology(
    root: Path = DEFAULT_NODE_ROOT,
    affinity_index: Mapping[int, int] | None = None,
) -> list[TopologyNode]:
    """Read every node<N> directory under root and classify it.

    Missing meminfo or cpulist files read as empty. Directory entries that
    aren't node<N> are ignored.

    Args:
        root: sysfs node directory.
        affinity_index: Topology node id → accelerator device index.

    Returns:
        Nodes sorted by id.

    Raises:
        OSError: If root itself can't be listed.
    """
    affinity_index = affinity_index or {}
    nodes: list[TopologyNode] = []
    for entry in root.iterdir():
        if not entry.name.startswith("node"):
            continue
        try:
            node_id = int(entry.name[4:])
        except ValueError:
            continue

        total_kb, free_kb = parse_node_meminfo(_read_or_empty(entry / "meminfo"))
        cpus = frozenset(parse_range_list(_read_or_empty(entry / "cpulist")))
        node = TopologyNode(id=node_id, total_kb=total_kb, free_kb=free_kb, cpus=cpus)
        nodes.append(dataclasses.replace(node, kind=classify(node, affinity_index)))

    nodes.sort(key=lambda n: n.id)
    log.debug("topology_discovered", nodes=len(nodes), accelerator_nodes=len(affinity_index))
    return nodes
