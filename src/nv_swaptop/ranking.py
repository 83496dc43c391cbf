"""Ordering of unified process records."""

from collections.abc import Iterable
from enum import Enum

from nv_swaptop.models import UnifiedProcessRecord


class SortKey(Enum):
    """Selectable sort column. Order is the cycling order."""

    SWAP = "swap"
    ACCELERATOR_MEMORY = "accelerator_memory"
    TOPOLOGY_NODE = "topology_node"
    NAME = "name"

    @property
    def label(self) -> str:
        """Column label shown in the header."""
        return {
            "swap": "Swap",
            "accelerator_memory": "GPU Mem",
            "topology_node": "NUMA Node",
            "name": "Name",
        }[self.value]

    def next(self) -> "SortKey":
        """Return the key after this one, wrapping around."""
        keys = list(SortKey)
        return keys[(keys.index(self) + 1) % len(keys)]


def _sort_value(record: UnifiedProcessRecord, key: SortKey):
    if key is SortKey.SWAP:
        # Accelerator-only records have no swap; rank them by what they hold
        return -record.footprint_kb
    if key is SortKey.ACCELERATOR_MEMORY:
        return -(record.accelerator_memory_kb or 0)
    if key is SortKey.TOPOLOGY_NODE:
        # Absent sorts before every present id
        node = record.dominant_node
        return (node is not None, node if node is not None else 0)
    return record.name


def rank(records: Iterable[UnifiedProcessRecord], key: SortKey) -> list[UnifiedProcessRecord]:
    """Return records ordered by key.

    SWAP and ACCELERATOR_MEMORY are descending, TOPOLOGY_NODE and NAME
    ascending. Exact ties keep their input order.
    """
    return sorted(records, key=lambda r: _sort_value(r, key))
