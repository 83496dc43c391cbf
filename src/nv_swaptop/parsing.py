"""Parsers for telemetry text: vendor CSV output, kernel pseudo-files, range lists.

Every parser here is lenient. A line that can't be turned into a row is
skipped; malformed input yields fewer rows, never an exception.
"""

from collections.abc import Callable, Iterator, Mapping, Sequence
from typing import Generic, TypeVar

from nv_swaptop.models import (
    AcceleratorDevice,
    AcceleratorProcessRecord,
    ProcessTopologyDistribution,
    SwapDevice,
)

T = TypeVar("T")

KIB_PER_MIB = 1024

NOT_SUPPORTED = "[Not Supported]"

# Leading tokens that mark a header or comment line in vendor CSV output
ACCELERATOR_PROCESS_MARKERS = ("gpu", "#", "index")
ACCELERATOR_DEVICE_MARKERS = ("index", "#", "name")


class RowSkipped(Exception):
    """Raised by a row factory to drop the current line."""


def mib_to_kb(mib: int) -> int:
    """Convert MiB (vendor tool unit) to KiB (internal unit)."""
    return mib * KIB_PER_MIB


def parse_int(value: str) -> int:
    """Parse a required integer field, skipping the row on failure."""
    try:
        return int(value.strip())
    except ValueError:
        raise RowSkipped(value) from None


def parse_mib(value: str) -> int:
    """Parse a required "<n> MiB" field into KiB, skipping the row on failure."""
    return mib_to_kb(parse_int(value.replace("MiB", "")))


def parse_mib_or_zero(value: str) -> int:
    """Parse an optional "<n> MiB" field into KiB, 0 when unparseable."""
    try:
        return mib_to_kb(int(value.replace("MiB", "").strip()))
    except ValueError:
        return 0


class TextTable(Generic[T]):
    """Lazy, restartable view of delimited telemetry text as typed rows.

    Each iteration re-reads the text from the start, so the same table can be
    consumed more than once with identical results.

    Lines are skipped when they are blank, begin with one of skip_prefixes,
    contain a skip_sentinel, have fewer than min_fields fields, or when the
    row factory raises RowSkipped.
    """

    def __init__(
        self,
        text: str,
        row_factory: Callable[[Sequence[str]], T],
        *,
        min_fields: int,
        delimiter: str | None = ",",
        skip_prefixes: tuple[str, ...] = ("#",),
        skip_sentinels: tuple[str, ...] = (NOT_SUPPORTED,),
    ) -> None:
        self.text = text
        self.row_factory = row_factory
        self.min_fields = min_fields
        self.delimiter = delimiter
        self.skip_prefixes = skip_prefixes
        self.skip_sentinels = skip_sentinels

    def __iter__(self) -> Iterator[T]:
        for raw in self.text.splitlines():
            line = raw.strip()
            if not line or line.startswith(self.skip_prefixes):
                continue
            if any(sentinel in line for sentinel in self.skip_sentinels):
                continue
            fields = [f.strip() for f in line.split(self.delimiter)]
            if len(fields) < self.min_fields:
                continue
            try:
                yield self.row_factory(fields)
            except RowSkipped:
                continue

    def rows(self) -> list[T]:
        """Materialize all rows."""
        return list(self)


# ─────────────────────────────────────────────────────────────────────────────
# Range lists
# ─────────────────────────────────────────────────────────────────────────────


def parse_range_list(content: str) -> list[int]:
    """Parse a CPU list like "0-3,8-11" into a sorted, duplicate-free list.

    Tokens are single integers or inclusive "start-end" ranges. Tokens that
    don't parse are ignored. Empty input means a node with no CPUs.
    """
    values: set[int] = set()
    for token in content.strip().split(","):
        token = token.strip()
        if not token:
            continue
        start_str, dash, end_str = token.partition("-")
        try:
            start = int(start_str)
            end = int(end_str) if dash else start
        except ValueError:
            continue
        if start < 0:
            continue
        values.update(range(start, end + 1))
    return sorted(values)


# ─────────────────────────────────────────────────────────────────────────────
# Accelerator tool CSV
# ─────────────────────────────────────────────────────────────────────────────


def _device_index(value: str, device_lookup: Mapping[str, int]) -> int:
    # Either a plain index or a device identifier (bus id, uuid)
    value = value.strip()
    try:
        return int(value)
    except ValueError:
        pass
    index = device_lookup.get(value.lower())
    if index is None:
        raise RowSkipped(value)
    return index


def accelerator_process_table(
    csv: str,
    device_lookup: Mapping[str, int] | None = None,
) -> TextTable[AcceleratorProcessRecord]:
    """Table over "device, pid, process_name, used_memory [MiB]" lines.

    Args:
        csv: Tool output.
        device_lookup: Lowercased device identifier → device index, for
            output that names the device by bus id or uuid instead of index.
    """
    lookup = device_lookup or {}

    def row(fields: Sequence[str]) -> AcceleratorProcessRecord:
        return AcceleratorProcessRecord(
            device_index=_device_index(fields[0], lookup),
            pid=parse_int(fields[1]),
            name=fields[2],
            memory_kb=parse_mib(fields[3]),
        )

    return TextTable(
        csv,
        row,
        min_fields=4,
        skip_prefixes=ACCELERATOR_PROCESS_MARKERS,
    )


def parse_accelerator_processes(
    csv: str,
    device_lookup: Mapping[str, int] | None = None,
) -> list[AcceleratorProcessRecord]:
    """Parse the accelerator tool's compute-apps query output."""
    return accelerator_process_table(csv, device_lookup).rows()


def _accelerator_device_row(fields: Sequence[str]) -> AcceleratorDevice:
    try:
        temperature: int | None = int(fields[5])
    except ValueError:
        temperature = None
    return AcceleratorDevice(
        index=parse_int(fields[0]),
        name=fields[1],
        total_kb=parse_mib_or_zero(fields[2]),
        used_kb=parse_mib_or_zero(fields[3]),
        free_kb=parse_mib_or_zero(fields[4]),
        temperature_c=temperature,
        bus_address=fields[6],
    )


def accelerator_device_table(csv: str) -> TextTable[AcceleratorDevice]:
    """Table over "index, name, total, used, free, temperature, bus_id" lines.

    Devices report "[Not Supported]" for individual fields (temperature on
    some boards), so the sentinel doesn't drop device rows.
    """
    return TextTable(
        csv,
        _accelerator_device_row,
        min_fields=7,
        skip_prefixes=ACCELERATOR_DEVICE_MARKERS,
        skip_sentinels=(),
    )


def parse_accelerator_devices(csv: str) -> list[AcceleratorDevice]:
    """Parse the accelerator tool's device inventory query output."""
    return accelerator_device_table(csv).rows()


# ─────────────────────────────────────────────────────────────────────────────
# Kernel pseudo-files
# ─────────────────────────────────────────────────────────────────────────────


def _meminfo_value(line: str) -> int | None:
    # "Node 0 MemTotal:       16384000 kB"
    _, colon, rest = line.partition(":")
    if not colon:
        return None
    parts = rest.split()
    if not parts:
        return None
    try:
        return int(parts[0])
    except ValueError:
        return None


def parse_node_meminfo(content: str) -> tuple[int, int]:
    """Extract (MemTotal, MemFree) in KiB from a node's meminfo file."""
    total = 0
    free = 0
    for line in content.splitlines():
        if "MemTotal:" in line:
            value = _meminfo_value(line)
            if value is not None:
                total = value
        elif "MemFree:" in line:
            value = _meminfo_value(line)
            if value is not None:
                free = value
    return total, free


def parse_page_counts(content: str, prefix: str = "N") -> dict[int, int]:
    """Sum "<prefix><id>=<count>" tokens across all lines, keyed by id.

    Used for numa_maps, where each line is one mapped region and the same
    node key appears once per region.
    """
    counts: dict[int, int] = {}
    for line in content.splitlines():
        for token in line.split():
            key, eq, value = token.partition("=")
            if not eq or not key.startswith(prefix):
                continue
            try:
                node_id = int(key[len(prefix) :])
                pages = int(value)
            except ValueError:
                continue
            counts[node_id] = counts.get(node_id, 0) + pages
    return counts


def parse_distribution(
    content: str,
    pid: int,
    name: str,
    last_cpu: int | None = None,
) -> ProcessTopologyDistribution:
    """Parse /proc/<pid>/numa_maps into a per-node page distribution."""
    return ProcessTopologyDistribution(
        pid=pid,
        name=name,
        pages_per_node=parse_page_counts(content),
        last_cpu=last_cpu,
    )


def _swap_device_row(fields: Sequence[str]) -> SwapDevice:
    return SwapDevice(
        name=fields[0],
        kind=fields[1],
        size_kb=parse_int(fields[2]),
        used_kb=parse_int(fields[3]),
        priority=parse_int(fields[4]),
    )


def parse_swap_devices(content: str) -> list[SwapDevice]:
    """Parse /proc/swaps ("Filename Type Size Used Priority", sizes in KiB)."""
    return TextTable(
        content,
        _swap_device_row,
        min_fields=5,
        delimiter=None,
        skip_prefixes=("Filename", "#"),
    ).rows()


def parse_status_swap(content: str) -> int | None:
    """Extract VmSwap (KiB) from /proc/<pid>/status, None if absent."""
    for line in content.splitlines():
        if line.startswith("VmSwap:"):
            return _meminfo_value(line)
    return None
