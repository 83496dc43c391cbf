"""Real-time dashboard for nv-swaptop.

Four views share one header:
- Swap: per-process swap (optionally folded by name) and the swap device table
- Topology: NUMA nodes with their kind, and per-process page placement
- Accelerator: devices and per-process device memory
- Unified: everything joined by pid, with placement

The app drives TelemetryEngine.tick() from a timer. Caching and refresh
cadence live in the engine; the app only renders the state it returns.
"""

from typing import Any

from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal
from textual.css.query import NoMatches
from textual.timer import Timer
from textual.widgets import ContentSwitcher, DataTable, Footer, Label, Sparkline, Static

from nv_swaptop.config import THEMES, TICK_INTERVAL_MAX, TICK_INTERVAL_MIN, Config
from nv_swaptop.correlation import aggregate_by_name
from nv_swaptop.engine import DashboardState, TelemetryEngine
from nv_swaptop.formatting import (
    format_age,
    format_cpus,
    format_node,
    format_percent,
    format_size,
    node_kind_label,
    placement_label,
    truncate,
)
from nv_swaptop.models import (
    AcceleratorAttachedMemory,
    ActiveView,
    CpuNode,
    NodeKind,
    Placement,
    SizeUnit,
)
from nv_swaptop.scheduler import TelemetryClass

TICK_STEP = 0.1

STALENESS_LABELS = {
    TelemetryClass.SWAP: "swap",
    TelemetryClass.TOPOLOGY: "topo",
    TelemetryClass.DISTRIBUTION: "maps",
    TelemetryClass.ACCELERATOR_DEVICES: "gpu",
    TelemetryClass.ACCELERATOR_PROCESSES: "gpu-procs",
}

VIEW_TITLES = {
    ActiveView.SWAP: "SWAP",
    ActiveView.TOPOLOGY: "NUMA TOPOLOGY",
    ActiveView.ACCELERATOR: "GPU",
    ActiveView.UNIFIED: "UNIFIED",
}


def clamp_interval(seconds: float) -> float:
    """Clamp a tick interval to the allowed range, rounded to 100ms steps."""
    return round(min(TICK_INTERVAL_MAX, max(TICK_INTERVAL_MIN, seconds)), 1)


def staleness_line(staleness: dict[TelemetryClass, float | None]) -> str:
    """One-line per-class cache age summary."""
    return "  ".join(
        f"{label} {format_age(staleness.get(cls))}" for cls, label in STALENESS_LABELS.items()
    )


class HeaderBar(Static):
    """Header showing swap totals, usage sparkline and cache ages."""

    DEFAULT_CSS = """
    HeaderBar {
        height: 5;
        padding: 0 1;
        border: solid green;
        border-title-align: left;
    }

    HeaderBar Horizontal {
        height: 1;
        width: 100%;
    }

    HeaderBar #gauge-left {
        width: auto;
    }

    HeaderBar #gauge-right {
        width: 1fr;
        text-align: right;
    }

    HeaderBar Sparkline {
        width: 1fr;
        height: 2;
    }
    """

    def compose(self) -> ComposeResult:
        """Create header layout."""
        yield Horizontal(
            Label("", id="gauge-left"),
            Label("", id="gauge-right"),
        )
        yield Sparkline([], summary_function=max, id="sparkline")

    def on_mount(self) -> None:
        """Set border title."""
        self.border_title = "SWAP"

    def update_state(self, state: DashboardState, unit: SizeUnit, interval: float) -> None:
        """Refresh gauge, sparkline and staleness from a tick."""
        try:
            gauge_left = self.query_one("#gauge-left", Label)
            gauge_right = self.query_one("#gauge-right", Label)
            sparkline = self.query_one("#sparkline", Sparkline)
        except NoMatches:
            return

        summary = state.swap_summary
        percent = summary.percent
        filled = int(percent // 5)
        bar = "█" * filled + "░" * (20 - filled)
        gauge_left.update(
            f"SWAP {bar} {format_size(summary.used_kb, unit)} / "
            f"{format_size(summary.total_kb, unit)} ({format_percent(percent)})"
        )
        gauge_right.update(f"{staleness_line(state.staleness)}   tick {interval:.1f}s")
        sparkline.data = list(state.history)

        usage = self.app.config.tui.colors.usage
        self.styles.border = ("solid", usage.for_percent(percent))


class ViewPanel(Static):
    """Bordered panel holding the tables of one view."""

    DEFAULT_CSS = """
    ViewPanel {
        height: 1fr;
        border: solid $primary;
        border-title-align: left;
    }

    ViewPanel DataTable {
        width: 100%;
        height: 1fr;
    }

    ViewPanel .unavailable {
        color: $text-muted;
        padding: 1 2;
    }
    """

    PANEL_TITLE = ""

    def on_mount(self) -> None:
        """Set border title."""
        self.border_title = self.PANEL_TITLE

    def _table(self, table_id: str) -> DataTable | None:
        try:
            return self.query_one(f"#{table_id}", DataTable)
        except NoMatches:
            return None

    def _notice(self, message: str) -> None:
        try:
            self.query_one(".unavailable", Label).update(message)
        except NoMatches:
            pass

    def update_state(self, state: DashboardState) -> None:
        """Render a tick. Subclasses fill their tables."""


class SwapPanel(ViewPanel):
    """Processes using swap and the swap device table."""

    PANEL_TITLE = "SWAP"

    def compose(self) -> ComposeResult:
        """Create the process and device tables."""
        yield DataTable(id="swap-processes", zebra_stripes=True, cursor_type="row")
        yield DataTable(id="swap-devices", cursor_type="none")

    def on_mount(self) -> None:
        """Set up table columns."""
        super().on_mount()
        processes = self._table("swap-processes")
        if processes is not None:
            processes.add_columns("PID", "Process", "Swap")
        devices = self._table("swap-devices")
        if devices is not None:
            devices.styles.height = 6
            devices.add_columns("Device", "Type", "Size", "Used", "Priority")

    def update_state(self, state: DashboardState) -> None:
        """Render swap processes (folded by name when aggregating)."""
        app = self.app
        unit = app.unit
        name_len = app.config.tui.name_truncate_length
        pid_style = app.config.tui.colors.pid

        records = sorted(state.swap_processes, key=lambda r: r.swap_kb, reverse=True)
        if app.aggregate:
            records = aggregate_by_name(records)
        self.border_title = f"SWAP{' (by name)' if app.aggregate else ''}"

        processes = self._table("swap-processes")
        if processes is not None:
            processes.clear()
            for r in records:
                pid = f"×{r.pid}" if app.aggregate else str(r.pid)
                processes.add_row(
                    Text(pid, style=pid_style),
                    Text(truncate(r.name, name_len)),
                    Text(format_size(r.swap_kb, unit), justify="right"),
                )

        devices = self._table("swap-devices")
        if devices is not None:
            devices.clear()
            for d in state.swap_summary.devices:
                devices.add_row(
                    d.name,
                    d.kind,
                    format_size(d.size_kb, unit),
                    format_size(d.used_kb, unit),
                    str(d.priority),
                )


class TopologyPanel(ViewPanel):
    """NUMA nodes and per-process page placement."""

    PANEL_TITLE = "NUMA TOPOLOGY"

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._node_columns: tuple[int, ...] = ()

    def compose(self) -> ComposeResult:
        """Create node and distribution tables."""
        yield Label("", classes="unavailable")
        yield DataTable(id="topology-nodes", cursor_type="none")
        yield DataTable(id="topology-distributions", zebra_stripes=True, cursor_type="row")

    def on_mount(self) -> None:
        """Set up node table columns. Distribution columns depend on node ids."""
        super().on_mount()
        nodes = self._table("topology-nodes")
        if nodes is not None:
            nodes.styles.height = 8
            nodes.add_columns("Node", "Kind", "CPUs", "Total", "Used", "Free")

    def _kind_style(self, kind: NodeKind) -> str:
        colors = self.app.config.tui.colors.node_kinds
        if isinstance(kind, CpuNode):
            return colors.cpu
        if isinstance(kind, AcceleratorAttachedMemory):
            return colors.accelerator_memory
        return colors.unclassified

    def update_state(self, state: DashboardState) -> None:
        """Render nodes and the page distribution of the heaviest swap users."""
        unit = self.app.unit
        if not state.topology_available:
            self._notice("NUMA topology not available on this host")
        else:
            self._notice("")

        nodes = self._table("topology-nodes")
        if nodes is not None:
            nodes.clear()
            for node in state.nodes:
                style = self._kind_style(node.kind)
                nodes.add_row(
                    str(node.id),
                    Text(node_kind_label(node.kind), style=style),
                    format_cpus(node.cpus),
                    format_size(node.total_kb, unit),
                    format_size(node.used_kb, unit),
                    format_size(node.free_kb, unit),
                )

        table = self._table("topology-distributions")
        if table is None:
            return
        node_ids = tuple(node.id for node in state.nodes)
        if node_ids != self._node_columns:
            table.clear(columns=True)
            table.add_columns("PID", "Process", "CPU Node", *(f"N{i}" for i in node_ids), "Pages")
            self._node_columns = node_ids
        else:
            table.clear()

        name_len = self.app.config.tui.name_truncate_length
        accel_nodes = {node.id for node in state.nodes if node.is_accelerator_memory}
        for dist in sorted(state.distributions, key=lambda d: d.total_pages, reverse=True):
            cells: list[Any] = [
                str(dist.pid),
                truncate(dist.name, name_len),
                format_node(dist.cpu_node),
            ]
            for node_id in node_ids:
                pages = dist.pages_on(node_id)
                style = "bold" if node_id in accel_nodes and pages else ""
                cells.append(Text(str(pages) if pages else "-", style=style, justify="right"))
            cells.append(Text(str(dist.total_pages), justify="right"))
            table.add_row(*cells)


class AcceleratorPanel(ViewPanel):
    """Accelerator devices and per-process device memory."""

    PANEL_TITLE = "GPU"

    def compose(self) -> ComposeResult:
        """Create device and process tables."""
        yield Label("", classes="unavailable")
        yield DataTable(id="accelerator-devices", cursor_type="none")
        yield DataTable(id="accelerator-processes", zebra_stripes=True, cursor_type="row")

    def on_mount(self) -> None:
        """Set up table columns."""
        super().on_mount()
        devices = self._table("accelerator-devices")
        if devices is not None:
            devices.styles.height = 8
            devices.add_columns("GPU", "Name", "Used", "Total", "Use%", "Temp", "NUMA", "Bus")
        processes = self._table("accelerator-processes")
        if processes is not None:
            processes.add_columns("PID", "Process", "GPU", "Memory")

    def update_state(self, state: DashboardState) -> None:
        """Render device inventory and per-process memory."""
        unit = self.app.unit
        usage = self.app.config.tui.colors.usage
        if not state.accelerator_available:
            self._notice("No accelerator query tool found (nvidia-smi)")
        else:
            self._notice("")

        devices = self._table("accelerator-devices")
        if devices is not None:
            devices.clear()
            for d in state.devices:
                temp = "-" if d.temperature_c is None else f"{d.temperature_c}°C"
                devices.add_row(
                    str(d.index),
                    d.name,
                    format_size(d.used_kb, unit),
                    format_size(d.total_kb, unit),
                    Text(format_percent(d.used_percent), style=usage.for_percent(d.used_percent)),
                    temp,
                    format_node(d.topology_node),
                    d.bus_address,
                )

        processes = self._table("accelerator-processes")
        if processes is not None:
            processes.clear()
            name_len = self.app.config.tui.name_truncate_length
            for p in sorted(state.accelerator_processes, key=lambda p: p.memory_kb, reverse=True):
                processes.add_row(
                    str(p.pid),
                    truncate(p.name, name_len),
                    str(p.device_index),
                    Text(format_size(p.memory_kb, unit), justify="right"),
                )


class UnifiedPanel(ViewPanel):
    """All processes joined by pid."""

    PANEL_TITLE = "UNIFIED"

    def compose(self) -> ComposeResult:
        """Create the unified table."""
        yield DataTable(id="unified-processes", zebra_stripes=True, cursor_type="row")

    def on_mount(self) -> None:
        """Set up table columns."""
        super().on_mount()
        table = self._table("unified-processes")
        if table is not None:
            table.add_columns("PID", "Process", "Swap", "GPU Mem", "GPU", "Node", "Placement")

    def _placement_style(self, placement: Placement) -> str:
        colors = self.app.config.tui.colors.placement
        return {
            Placement.CPU_ONLY: colors.cpu_only,
            Placement.ACCELERATOR_ONLY: colors.accelerator_only,
            Placement.CPU_AND_ACCELERATOR: colors.cpu_and_accelerator,
        }[placement]

    def update_state(self, state: DashboardState) -> None:
        """Render ranked unified records."""
        unit = self.app.unit
        self.border_title = f"UNIFIED [sorted by {state.sort_key.label}]"
        table = self._table("unified-processes")
        if table is None:
            return
        table.clear()
        name_len = self.app.config.tui.name_truncate_length
        for r in state.records:
            style = self._placement_style(r.placement)
            gpu = "-" if r.accelerator_index is None else str(r.accelerator_index)
            table.add_row(
                str(r.pid),
                truncate(r.name, name_len),
                Text(format_size(r.swap_kb, unit), justify="right"),
                Text(format_size(r.accelerator_memory_kb, unit), justify="right"),
                gpu,
                format_node(r.dominant_node),
                Text(placement_label(r.placement), style=style),
            )


class NvSwaptopApp(App):
    """Real-time dashboard for nv-swaptop."""

    CSS = """
    Screen {
        layout: vertical;
    }

    #header {
        height: 5;
    }

    #views {
        height: 1fr;
    }
    """

    BINDINGS = [
        Binding("tab", "next_view", "View", priority=True),
        Binding("1", "show_view('swap')", "Swap", show=False),
        Binding("2", "show_view('topology')", "NUMA", show=False),
        Binding("3", "show_view('accelerator')", "GPU", show=False),
        Binding("4", "show_view('unified')", "Unified", show=False),
        ("s", "cycle_sort", "Sort"),
        Binding("k", "set_unit('kb')", "KiB", show=False),
        Binding("m", "set_unit('mb')", "MiB", show=False),
        Binding("g", "set_unit('gb')", "GiB", show=False),
        ("a", "toggle_aggregate", "Aggregate"),
        Binding("left", "change_interval(-1)", "Slower", show=False, priority=True),
        Binding("right", "change_interval(1)", "Faster", show=False, priority=True),
        ("t", "cycle_theme", "Theme"),
        ("q", "quit", "Quit"),
        Binding("escape", "quit", "Quit", show=False, priority=True),
    ]

    def __init__(self, config: Config | None = None, engine: TelemetryEngine | None = None):
        super().__init__()
        self.config = config or Config.load()
        self.engine = engine or TelemetryEngine.from_config(self.config)
        self.active_view = self.config.display.view
        self.unit = self.config.display.size_unit
        self.aggregate = self.config.display.aggregate
        self.tick_interval = clamp_interval(self.config.refresh.tick_interval)
        self._timer: Timer | None = None
        self._state: DashboardState | None = None

    def compose(self) -> ComposeResult:
        """Create the TUI layout."""
        yield HeaderBar(id="header")
        with ContentSwitcher(initial=self.active_view.value, id="views"):
            yield SwapPanel(id=ActiveView.SWAP.value)
            yield TopologyPanel(id=ActiveView.TOPOLOGY.value)
            yield AcceleratorPanel(id=ActiveView.ACCELERATOR.value)
            yield UnifiedPanel(id=ActiveView.UNIFIED.value)
        yield Footer()

    def on_mount(self) -> None:
        """Take the first tick and start the timer."""
        self.title = "nv-swaptop"
        self.theme = self.config.display.theme
        self._update_subtitle()
        self.call_after_refresh(self.run_tick)
        self._timer = self.set_interval(self.tick_interval, self.run_tick)

    @property
    def last_state(self) -> DashboardState | None:
        """State from the most recent tick."""
        return self._state

    def run_tick(self) -> None:
        """Run one engine tick and render it."""
        self._state = self.engine.tick(view=self.active_view)
        self._show_state()

    def _show_state(self) -> None:
        state = self._state
        if state is None:
            return
        try:
            self.query_one("#header", HeaderBar).update_state(state, self.unit, self.tick_interval)
            panel = self.query_one(f"#{self.active_view.value}", ViewPanel)
        except NoMatches:
            return
        panel.update_state(state)

    def _update_subtitle(self) -> None:
        self.sub_title = (
            f"{VIEW_TITLES[self.active_view]}  sort: {self.engine.sort_key.label}  "
            f"unit: {self.unit.suffix}"
        )

    # ─────────────────────────────────────────────────────────────────────
    # Actions
    # ─────────────────────────────────────────────────────────────────────

    def _switch_to(self, view: ActiveView) -> None:
        self.active_view = view
        self.query_one("#views", ContentSwitcher).current = view.value
        self._update_subtitle()
        # Views gated on visibility (page distributions) become due right away
        self.run_tick()

    def action_next_view(self) -> None:
        """Cycle to the next view."""
        self._switch_to(self.active_view.next())

    def action_show_view(self, name: str) -> None:
        """Jump to a view by name."""
        self._switch_to(ActiveView(name))

    def action_cycle_sort(self) -> None:
        """Cycle the unified sort key."""
        self.engine.sort_key = self.engine.sort_key.next()
        self._update_subtitle()
        self.run_tick()

    def action_set_unit(self, unit: str) -> None:
        """Change the display unit."""
        self.unit = SizeUnit(unit)
        self._update_subtitle()
        self._show_state()

    def action_toggle_aggregate(self) -> None:
        """Fold swap processes by name."""
        self.aggregate = not self.aggregate
        self._show_state()

    def action_change_interval(self, direction: int) -> None:
        """Lengthen (-1) or shorten (+1) the tick interval by 100ms."""
        # Left slows the refresh down, right speeds it up
        interval = clamp_interval(self.tick_interval - direction * TICK_STEP)
        if interval == self.tick_interval:
            return
        self.tick_interval = interval
        if self._timer is not None:
            self._timer.stop()
        self._timer = self.set_interval(self.tick_interval, self.run_tick)
        self._show_state()

    def action_cycle_theme(self) -> None:
        """Switch to the next built-in theme."""
        index = THEMES.index(self.theme) if self.theme in THEMES else -1
        self.theme = THEMES[(index + 1) % len(THEMES)]


def run_tui(config: Config | None = None) -> None:
    """Run the TUI application."""
    app = NvSwaptopApp(config)
    app.run()
