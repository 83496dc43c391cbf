"""Formatting utilities for consistent output across CLI and TUI."""

from nv_swaptop.models import NodeKind, Placement, SizeUnit, convert_kb

PLACEMENT_LABELS = {
    Placement.CPU_ONLY: "CPU",
    Placement.ACCELERATOR_ONLY: "GPU",
    Placement.CPU_AND_ACCELERATOR: "CPU+GPU",
}


def format_size(kb: float | None, unit: SizeUnit) -> str:
    """Format a KiB quantity in the display unit.

    Args:
        kb: Quantity in KiB, or None when the source had no value
        unit: Display unit

    Returns:
        "-" for None, whole numbers for KiB, two decimals otherwise:
        "2048 KiB", "2.00 MiB", "0.50 GiB".
    """
    if kb is None:
        return "-"
    value = convert_kb(kb, unit)
    if unit is SizeUnit.KB:
        return f"{value:.0f} {unit.suffix}"
    return f"{value:.2f} {unit.suffix}"


def format_age(seconds: float | None) -> str:
    """Format time since a cache refresh.

    Returns "never" for None, then "0.4s", "12s", "3m05s".
    """
    if seconds is None:
        return "never"
    if seconds < 1:
        return f"{seconds:.1f}s"
    if seconds < 60:
        return f"{int(seconds)}s"
    return f"{int(seconds // 60)}m{int(seconds % 60):02d}s"


def format_percent(value: float) -> str:
    """Format a percentage with one decimal."""
    return f"{value:.1f}%"


def placement_label(placement: Placement) -> str:
    """Short label for a placement."""
    return PLACEMENT_LABELS[placement]


def node_kind_label(kind: NodeKind) -> str:
    """Label for a node kind, naming the device for accelerator memory."""
    device_index = getattr(kind, "device_index", None)
    if device_index is not None:
        return f"{kind.label} (GPU {device_index})"
    return kind.label


def format_node(node_id: int | None) -> str:
    """Node id or "-" when unknown."""
    return "-" if node_id is None else str(node_id)


def format_cpus(cpus: frozenset[int]) -> str:
    """Compress a CPU set back into range-list form ("0-3,8")."""
    if not cpus:
        return "-"
    ordered = sorted(cpus)
    ranges: list[str] = []
    start = prev = ordered[0]
    for cpu in ordered[1:]:
        if cpu == prev + 1:
            prev = cpu
            continue
        ranges.append(f"{start}-{prev}" if start != prev else str(start))
        start = prev = cpu
    ranges.append(f"{start}-{prev}" if start != prev else str(start))
    return ",".join(ranges)


def truncate(text: str, length: int) -> str:
    """Cut text to length, marking the cut with ".."."""
    if len(text) <= length:
        return text
    return text[: max(0, length - 2)] + ".."
