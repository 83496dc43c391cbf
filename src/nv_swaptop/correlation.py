"""Join swap, accelerator and topology records into one per-process view.

correlate() is total over pid: every pid present in the swap, accelerator or
distribution inputs appears exactly once in the output. Missing sources leave
fields empty, they never drop a process.
"""

from collections.abc import Iterable, Mapping

from nv_swaptop.models import (
    AcceleratorProcessRecord,
    Placement,
    ProcessTopologyDistribution,
    SwapProcessRecord,
    TopologyNode,
    UnifiedProcessRecord,
)


def dominant_node(distribution: ProcessTopologyDistribution | None) -> int | None:
    """Node holding the most pages of a process. Ties go to the lowest node id."""
    if distribution is None or not distribution.pages_per_node:
        return None
    return min(
        distribution.pages_per_node,
        key=lambda node_id: (-distribution.pages_per_node[node_id], node_id),
    )


def accelerator_memory_nodes(nodes: Iterable[TopologyNode]) -> set[int]:
    """Ids of nodes classified as accelerator-attached memory."""
    return {node.id for node in nodes if node.is_accelerator_memory}


def correlate(
    swap: Iterable[SwapProcessRecord],
    accelerator: Iterable[AcceleratorProcessRecord],
    distributions: Iterable[ProcessTopologyDistribution] | Mapping[int, ProcessTopologyDistribution],
    nodes: Iterable[TopologyNode],
) -> list[UnifiedProcessRecord]:
    """Build unified records keyed by pid.

    1. Every swap record seeds a CpuOnly entry with its dominant node.
    2. Every accelerator record either marks an existing swap entry as
       CpuAndAccelerator or adds an AcceleratorOnly entry with no swap. A pid
       reported on several devices accumulates memory; the first device
       reported stays as accelerator_index.
    3. Every distribution whose pid is still unknown adds a CpuOnly entry
       with no swap. Distributions outlive the swap list between refreshes.
    4. A CpuOnly process with any pages on accelerator-attached memory is
       promoted to CpuAndAccelerator (its working set migrated).

    Returns:
        Records in insertion order (swap, then accelerator-only, then
        distribution-only).
    """
    if isinstance(distributions, Mapping):
        by_pid = dict(distributions)
    else:
        by_pid = {d.pid: d for d in distributions}

    merged: dict[int, UnifiedProcessRecord] = {}

    for record in swap:
        merged[record.pid] = UnifiedProcessRecord(
            pid=record.pid,
            name=record.name,
            swap_kb=int(record.swap_kb),
            dominant_node=dominant_node(by_pid.get(record.pid)),
            placement=Placement.CPU_ONLY,
        )

    for record in accelerator:
        existing = merged.get(record.pid)
        if existing is None:
            merged[record.pid] = UnifiedProcessRecord(
                pid=record.pid,
                name=record.name,
                swap_kb=0,
                accelerator_memory_kb=record.memory_kb,
                accelerator_index=record.device_index,
                placement=Placement.ACCELERATOR_ONLY,
            )
            continue
        if existing.accelerator_memory_kb is None:
            existing.accelerator_memory_kb = record.memory_kb
            existing.accelerator_index = record.device_index
        else:
            existing.accelerator_memory_kb += record.memory_kb
        if existing.placement is Placement.CPU_ONLY:
            existing.placement = Placement.CPU_AND_ACCELERATOR

    for pid, distribution in by_pid.items():
        if pid in merged:
            continue
        merged[pid] = UnifiedProcessRecord(
            pid=pid,
            name=distribution.name,
            swap_kb=0,
            dominant_node=dominant_node(distribution),
            placement=Placement.CPU_ONLY,
        )

    migrated_to = accelerator_memory_nodes(nodes)
    if migrated_to:
        for pid, distribution in by_pid.items():
            unified = merged[pid]
            if unified.placement is not Placement.CPU_ONLY:
                continue
            if any(distribution.pages_on(node_id) > 0 for node_id in migrated_to):
                unified.placement = Placement.CPU_AND_ACCELERATOR

    return list(merged.values())


def aggregate_by_name(records: Iterable[SwapProcessRecord]) -> list[SwapProcessRecord]:
    """Fold records sharing a name into one.

    The folded record's pid field holds the number of processes folded in
    and swap_kb their sum. Sorted by swap, largest first.
    """
    totals: dict[str, tuple[int, float]] = {}
    for record in records:
        count, swap_kb = totals.get(record.name, (0, 0.0))
        totals[record.name] = (count + 1, swap_kb + record.swap_kb)

    folded = [
        SwapProcessRecord(pid=count, name=name, swap_kb=swap_kb)
        for name, (count, swap_kb) in totals.items()
    ]
    folded.sort(key=lambda r: r.swap_kb, reverse=True)
    return folded
