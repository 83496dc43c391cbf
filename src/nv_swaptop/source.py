"""Telemetry sources.

A TelemetrySource reports swap, accelerator and topology data. Read
methods either return typed records or raise FetchFailure; availability
is reported separately and is checked by the caller before every read.

ProcTelemetrySource is the Linux implementation: psutil and procfs for
swap, sysfs for topology, and the vendor query tool (nvidia-smi) for
accelerators.
"""

import shutil
import subprocess
from pathlib import Path
from typing import Protocol, runtime_checkable

import psutil
import structlog

from nv_swaptop.models import (
    AcceleratorDevice,
    AcceleratorProcessRecord,
    ProcessTopologyDistribution,
    SwapProcessRecord,
    SwapSummary,
    TopologyNode,
)
from nv_swaptop.parsing import (
    parse_accelerator_devices,
    parse_accelerator_processes,
    parse_distribution,
    parse_status_swap,
    parse_swap_devices,
)
from nv_swaptop.topology import (
    DEFAULT_NODE_ROOT,
    DEFAULT_PCI_ROOT,
    attach_topology_nodes,
    build_affinity_index,
    discover_topology,
    sysfs_bus_resolver,
    topology_available,
)

log = structlog.get_logger()

DEVICE_QUERY = [
    "--query-gpu=index,name,memory.total,memory.used,memory.free,temperature.gpu,pci.bus_id",
    "--format=csv,noheader",
]
PROCESS_QUERY = [
    "--query-compute-apps=gpu_bus_id,pid,process_name,used_gpu_memory",
    "--format=csv,noheader",
]
# Older drivers only know the used_memory field name
PROCESS_QUERY_FALLBACK = [
    "--query-compute-apps=gpu_bus_id,pid,process_name,used_memory",
    "--format=csv,noheader",
]


class FetchFailure(Exception):
    """A telemetry read failed transiently (I/O, tool exec, timeout, bad exit)."""


@runtime_checkable
class TelemetrySource(Protocol):
    """Everything the engine needs from the host."""

    def read_swap_summary(self) -> SwapSummary: ...

    def read_swap_processes(self) -> list[SwapProcessRecord]: ...

    def read_accelerator_devices(self) -> list[AcceleratorDevice]: ...

    def read_accelerator_processes(self) -> list[AcceleratorProcessRecord]: ...

    def read_topology(self) -> list[TopologyNode]: ...

    def read_distribution(self, pid: int, name: str) -> ProcessTopologyDistribution: ...

    def topology_available(self) -> bool: ...

    def accelerator_available(self) -> bool: ...


class ProcTelemetrySource:
    """Reads telemetry from /proc, /sys and the accelerator query tool."""

    def __init__(
        self,
        *,
        proc_root: Path = Path("/proc"),
        node_root: Path = DEFAULT_NODE_ROOT,
        pci_root: Path = DEFAULT_PCI_ROOT,
        accelerator_tool: str = "nvidia-smi",
        accelerator_timeout: float = 5.0,
    ) -> None:
        self.proc_root = proc_root
        self.node_root = node_root
        self.pci_root = pci_root
        self.accelerator_tool = accelerator_tool
        self.accelerator_timeout = accelerator_timeout
        self._resolve_bus = sysfs_bus_resolver(pci_root)
        self._devices: list[AcceleratorDevice] | None = None

    # ─────────────────────────────────────────────────────────────────────
    # Availability
    # ─────────────────────────────────────────────────────────────────────

    def topology_available(self) -> bool:
        """True when sysfs exposes NUMA nodes."""
        return topology_available(self.node_root)

    def accelerator_available(self) -> bool:
        """True when the accelerator query tool is on PATH."""
        return shutil.which(self.accelerator_tool) is not None

    # ─────────────────────────────────────────────────────────────────────
    # Swap
    # ─────────────────────────────────────────────────────────────────────

    def read_swap_summary(self) -> SwapSummary:
        """Global swap totals (KiB) plus the kernel's swap device table."""
        try:
            swap = psutil.swap_memory()
        except (OSError, RuntimeError) as e:
            raise FetchFailure(f"swap totals: {e}") from e

        try:
            devices = parse_swap_devices((self.proc_root / "swaps").read_text())
        except OSError:
            # Totals only
            devices = []

        return SwapSummary(
            total_kb=swap.total // 1024,
            used_kb=swap.used // 1024,
            devices=devices,
        )

    def read_swap_processes(self) -> list[SwapProcessRecord]:
        """Every process with a non-zero VmSwap.

        Processes that vanish or deny access mid-scan are skipped.
        """
        records: list[SwapProcessRecord] = []
        try:
            processes = psutil.process_iter(["pid", "name", "cpu_num"])
            for proc in processes:
                info = proc.info
                pid = info["pid"]
                try:
                    status = (self.proc_root / str(pid) / "status").read_text()
                except OSError:
                    continue
                swap_kb = parse_status_swap(status)
                if not swap_kb:
                    continue
                records.append(
                    SwapProcessRecord(
                        pid=pid,
                        name=info.get("name") or "?",
                        swap_kb=float(swap_kb),
                        last_cpu=info.get("cpu_num"),
                    )
                )
        except (OSError, psutil.Error) as e:
            raise FetchFailure(f"process scan: {e}") from e
        return records

    # ─────────────────────────────────────────────────────────────────────
    # Accelerator
    # ─────────────────────────────────────────────────────────────────────

    def _run_tool(self, args: list[str]) -> str:
        """Run the accelerator query tool and return stdout.

        Raises:
            FetchFailure: On exec error, timeout or non-zero exit.
        """
        cmd = [self.accelerator_tool, *args]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.accelerator_timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise FetchFailure(
                f"{self.accelerator_tool} timed out after {self.accelerator_timeout}s"
            ) from e
        except OSError as e:
            raise FetchFailure(f"{self.accelerator_tool}: {e}") from e

        if result.returncode != 0:
            raise FetchFailure(
                f"{self.accelerator_tool} exited {result.returncode}: {result.stderr.strip()}"
            )
        return result.stdout

    def read_accelerator_devices(self) -> list[AcceleratorDevice]:
        """Device inventory with each device's topology node resolved."""
        devices = parse_accelerator_devices(self._run_tool(DEVICE_QUERY))
        self._devices = attach_topology_nodes(devices, self._resolve_bus)
        return self._devices

    def _device_lookup(self) -> dict[str, int]:
        if self._devices is None:
            try:
                self.read_accelerator_devices()
            except FetchFailure as e:
                log.warning("accelerator_device_lookup_failed", error=str(e))
        return {d.bus_address.lower(): d.index for d in self._devices or []}

    def read_accelerator_processes(self) -> list[AcceleratorProcessRecord]:
        """Per-process accelerator memory, one record per (pid, device)."""
        try:
            csv = self._run_tool(PROCESS_QUERY)
        except FetchFailure as e:
            log.debug("accelerator_process_query_fallback", error=str(e))
            csv = self._run_tool(PROCESS_QUERY_FALLBACK)
        return parse_accelerator_processes(csv, self._device_lookup())

    # ─────────────────────────────────────────────────────────────────────
    # Topology
    # ─────────────────────────────────────────────────────────────────────

    def read_topology(self) -> list[TopologyNode]:
        """Classified topology nodes, sorted by id.

        Uses the most recently read device inventory for accelerator
        affinity. If devices were never read, they're read once here.
        """
        devices = self._devices
        if devices is None and self.accelerator_available():
            try:
                devices = self.read_accelerator_devices()
            except FetchFailure as e:
                log.warning("topology_without_accelerators", error=str(e))
        affinity = build_affinity_index(devices or [], self._resolve_bus)

        try:
            return discover_topology(self.node_root, affinity)
        except OSError as e:
            raise FetchFailure(f"topology: {e}") from e

    def read_distribution(self, pid: int, name: str) -> ProcessTopologyDistribution:
        """Per-node page counts for one process from numa_maps."""
        path = self.proc_root / str(pid) / "numa_maps"
        try:
            content = path.read_text()
        except OSError as e:
            raise FetchFailure(f"{path}: {e}") from e
        return parse_distribution(content, pid, name)
