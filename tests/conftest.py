"""Shared test fixtures for nv-swaptop."""

import logging
from pathlib import Path
from unittest.mock import patch

import pytest
import structlog

from nv_swaptop.config import Config
from nv_swaptop.models import (
    AcceleratorDevice,
    AcceleratorProcessRecord,
    CpuNode,
    NodeKind,
    ProcessTopologyDistribution,
    SwapProcessRecord,
    SwapSummary,
    TopologyNode,
    Unclassified,
)
from nv_swaptop.source import FetchFailure


def make_swap(
    pid: int = 100,
    name: str = "proc",
    swap_kb: float = 1024.0,
    last_cpu: int | None = None,
) -> SwapProcessRecord:
    """Create a SwapProcessRecord for testing."""
    return SwapProcessRecord(pid=pid, name=name, swap_kb=swap_kb, last_cpu=last_cpu)


def make_accel(
    pid: int = 200,
    name: str = "python3",
    device_index: int = 0,
    memory_kb: int = 2048 * 1024,
) -> AcceleratorProcessRecord:
    """Create an AcceleratorProcessRecord for testing."""
    return AcceleratorProcessRecord(
        pid=pid, name=name, device_index=device_index, memory_kb=memory_kb
    )


def make_device(
    index: int = 0,
    name: str = "NVIDIA H100",
    total_kb: int = 80 * 1024 * 1024,
    used_kb: int = 1024 * 1024,
    bus_address: str = "00000000:01:00.0",
    topology_node: int | None = None,
) -> AcceleratorDevice:
    """Create an AcceleratorDevice for testing."""
    return AcceleratorDevice(
        index=index,
        name=name,
        total_kb=total_kb,
        used_kb=used_kb,
        free_kb=total_kb - used_kb,
        bus_address=bus_address,
        topology_node=topology_node,
    )


def make_node(
    node_id: int = 0,
    cpus: set[int] | frozenset[int] | None = None,
    kind: NodeKind | None = None,
    total_kb: int = 16_000_000,
    free_kb: int = 8_000_000,
) -> TopologyNode:
    """Create a TopologyNode for testing.

    kind defaults to CpuNode when cpus are given, Unclassified otherwise.
    """
    cpus = frozenset(cpus or ())
    if kind is None:
        kind = CpuNode() if cpus else Unclassified()
    return TopologyNode(id=node_id, total_kb=total_kb, free_kb=free_kb, cpus=cpus, kind=kind)


def make_distribution(
    pid: int = 100,
    name: str = "proc",
    pages: dict[int, int] | None = None,
) -> ProcessTopologyDistribution:
    """Create a ProcessTopologyDistribution for testing."""
    return ProcessTopologyDistribution(pid=pid, name=name, pages_per_node=dict(pages or {}))


class FakeSource:
    """In-memory TelemetrySource.

    Set an attribute to a FetchFailure instance to make the matching read
    raise it. Every read is counted in calls.
    """

    def __init__(
        self,
        *,
        swap: list[SwapProcessRecord] | None = None,
        summary: SwapSummary | None = None,
        devices: list[AcceleratorDevice] | None = None,
        accelerator: list[AcceleratorProcessRecord] | None = None,
        nodes: list[TopologyNode] | None = None,
        distributions: dict[int, dict[int, int]] | None = None,
        topology: bool = True,
        accelerator_present: bool = True,
    ) -> None:
        self.swap = swap or []
        self.summary = summary or SwapSummary(total_kb=8_000_000, used_kb=2_000_000)
        self.devices = devices or []
        self.accelerator = accelerator or []
        self.nodes = nodes or []
        self.distributions = distributions or {}
        self.topology = topology
        self.accelerator_present = accelerator_present
        self.calls: dict[str, int] = {}

    def _count(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1

    @staticmethod
    def _value(value):
        if isinstance(value, FetchFailure):
            raise value
        return value

    def read_swap_summary(self) -> SwapSummary:
        self._count("swap_summary")
        return self._value(self.summary)

    def read_swap_processes(self) -> list[SwapProcessRecord]:
        self._count("swap_processes")
        return list(self._value(self.swap))

    def read_accelerator_devices(self) -> list[AcceleratorDevice]:
        self._count("accelerator_devices")
        return list(self._value(self.devices))

    def read_accelerator_processes(self) -> list[AcceleratorProcessRecord]:
        self._count("accelerator_processes")
        return list(self._value(self.accelerator))

    def read_topology(self) -> list[TopologyNode]:
        self._count("topology")
        return list(self._value(self.nodes))

    def read_distribution(self, pid: int, name: str) -> ProcessTopologyDistribution:
        self._count("distribution")
        distributions = self._value(self.distributions)
        if pid not in distributions:
            raise FetchFailure(f"/proc/{pid}/numa_maps: no such process")
        return make_distribution(pid, name, distributions[pid])

    def topology_available(self) -> bool:
        return self.topology

    def accelerator_available(self) -> bool:
        return self.accelerator_present


@pytest.fixture
def fake_source() -> FakeSource:
    """A FakeSource with one swap user, one GPU process and one CPU node."""
    return FakeSource(
        swap=[make_swap(pid=1, name="a", swap_kb=100, last_cpu=2)],
        accelerator=[make_accel(pid=3, name="c", memory_kb=10_000)],
        devices=[make_device()],
        nodes=[make_node(0, cpus={0, 1, 2, 3})],
        distributions={1: {0: 50}},
    )


@pytest.fixture
def sysfs_tree(tmp_path: Path) -> Path:
    """Fake /sys/devices/system/node with two CPU nodes and one CPU-less node."""
    root = tmp_path / "node"
    layout = {
        0: ("0-3", 16_000_000, 8_000_000),
        1: ("4-7", 16_000_000, 4_000_000),
        2: ("", 96_000_000, 90_000_000),
    }
    for node_id, (cpulist, total, free) in layout.items():
        node_dir = root / f"node{node_id}"
        node_dir.mkdir(parents=True)
        (node_dir / "cpulist").write_text(f"{cpulist}\n")
        (node_dir / "meminfo").write_text(
            f"Node {node_id} MemTotal:       {total} kB\n"
            f"Node {node_id} MemFree:        {free} kB\n"
            f"Node {node_id} MemUsed:        {total - free} kB\n"
        )
    # Non-node entries sysfs also has
    (root / "possible").write_text("0-2\n")
    (root / "power").mkdir()
    return root


@pytest.fixture
def pci_tree(tmp_path: Path) -> Path:
    """Fake /sys/bus/pci/devices with one device bound to node 2."""
    root = tmp_path / "pci"
    device = root / "0000:01:00.0"
    device.mkdir(parents=True)
    (device / "numa_node").write_text("2\n")
    orphan = root / "0000:02:00.0"
    orphan.mkdir()
    (orphan / "numa_node").write_text("-1\n")
    return root


@pytest.fixture
def restore_logging():
    """Undo global logging configuration after a test."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.fixture
def isolated_config(tmp_path: Path, restore_logging):
    """Point config and state directories at tmp_path."""
    config_dir = tmp_path / "config"
    state_dir = tmp_path / "state"
    with (
        patch.object(Config, "config_dir", property(lambda self: config_dir)),
        patch.object(Config, "state_dir", property(lambda self: state_dir)),
    ):
        yield Config()
