"""Configuration system for nv-swaptop."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit

from nv_swaptop.models import ActiveView, SizeUnit
from nv_swaptop.ranking import SortKey
from nv_swaptop.scheduler import TelemetryClass

TICK_INTERVAL_MIN = 0.1
TICK_INTERVAL_MAX = 10.0

# Built-in textual themes cycled with `t`, in cycle order
THEMES = ("textual-dark", "solarized-light", "monokai", "dracula", "nord")


@dataclass
class RefreshConfig:
    """Tick rate and per-class staleness budgets (seconds)."""

    tick_interval: float = 1.0  # UI tick, adjustable at runtime with left/right
    swap_ttl: float = 1.0
    topology_ttl: float = 30.0  # Node inventory rarely changes
    distribution_ttl: float = 5.0  # numa_maps reads are expensive
    accelerator_devices_ttl: float = 2.0
    accelerator_processes_ttl: float = 1.0
    distribution_top_n: int = 20  # Heaviest swap users to read numa_maps for
    accelerator_timeout: float = 5.0  # Seconds before the query tool is abandoned

    def budgets(self) -> dict[TelemetryClass, float]:
        """Budgets keyed by telemetry class, for CacheScheduler."""
        return {
            TelemetryClass.SWAP: self.swap_ttl,
            TelemetryClass.TOPOLOGY: self.topology_ttl,
            TelemetryClass.DISTRIBUTION: self.distribution_ttl,
            TelemetryClass.ACCELERATOR_DEVICES: self.accelerator_devices_ttl,
            TelemetryClass.ACCELERATOR_PROCESSES: self.accelerator_processes_ttl,
        }


@dataclass
class DisplayConfig:
    """Startup display settings."""

    unit: str = "kb"  # "kb", "mb" or "gb"
    sort_key: str = "swap"  # swap, accelerator_memory, topology_node, name
    aggregate: bool = False  # Fold swap processes by name
    history_size: int = 60  # Samples in the swap sparkline
    initial_view: str = "swap"  # swap, topology, accelerator, unified
    theme: str = "dracula"  # One of THEMES

    @property
    def size_unit(self) -> SizeUnit:
        """unit as a SizeUnit."""
        return SizeUnit(self.unit)

    @property
    def sort(self) -> SortKey:
        """sort_key as a SortKey."""
        return SortKey(self.sort_key)

    @property
    def view(self) -> ActiveView:
        """initial_view as an ActiveView."""
        return ActiveView(self.initial_view)


@dataclass
class SystemConfig:
    """Host paths, external tools and log rotation."""

    sysfs_node_root: str = "/sys/devices/system/node"
    sysfs_pci_root: str = "/sys/bus/pci/devices"
    accelerator_tool: str = "nvidia-smi"
    # Log file rotation
    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


# =============================================================================
# TUI Color Configuration
# =============================================================================


@dataclass
class PlacementColors:
    """Colors for the placement column of the unified view.

    Colors can be:
    - Named colors: "red", "green", "yellow", "dim"
    - Hex colors: "#FFA500" (orange)
    - Rich styles: "bold red", "dim green"

    Default palette: Dracula theme.
    """

    cpu_only: str = "#8be9fd"  # Dracula cyan - ordinary host process
    accelerator_only: str = "#50fa7b"  # Dracula green - lives on the device
    cpu_and_accelerator: str = "#ffb86c"  # Dracula orange - spans both domains


@dataclass
class NodeKindColors:
    """Colors for topology node kinds."""

    cpu: str = "#bd93f9"  # Dracula purple
    accelerator_memory: str = "#50fa7b"  # Dracula green
    unclassified: str = "dim"


@dataclass
class UsageColors:
    """Colors for usage gauges by fill level."""

    low: str = "#50fa7b"  # Dracula green - under warn
    warn: str = "#f1fa8c"  # Dracula yellow
    critical: str = "#ff5555"  # Dracula red
    warn_percent: float = 50.0
    critical_percent: float = 80.0

    def for_percent(self, percent: float) -> str:
        """Return the color for a fill percentage."""
        if percent >= self.critical_percent:
            return self.critical
        if percent >= self.warn_percent:
            return self.warn
        return self.low


@dataclass
class TUIColorsConfig:
    """All TUI color configurations grouped together."""

    placement: PlacementColors = field(default_factory=PlacementColors)
    node_kinds: NodeKindColors = field(default_factory=NodeKindColors)
    usage: UsageColors = field(default_factory=UsageColors)
    border: str = "#6272a4"  # Dracula comment - muted purple-gray
    pid: str = "#6272a4"


@dataclass
class TUIConfig:
    """TUI-specific configuration."""

    colors: TUIColorsConfig = field(default_factory=TUIColorsConfig)
    name_truncate_length: int = 24  # Max chars for process names in tables


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """Main configuration container."""

    refresh: RefreshConfig = field(default_factory=RefreshConfig)
    display: DisplayConfig = field(default_factory=DisplayConfig)
    system: SystemConfig = field(default_factory=SystemConfig)
    tui: TUIConfig = field(default_factory=TUIConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "nv-swaptop"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs and other expendable persistent state."""
        return Path.home() / ".local" / "state" / "nv-swaptop"

    @property
    def log_path(self) -> Path:
        """Log path.

        Logs are expendable persistent state, so they go in XDG_STATE_HOME.
        """
        return self.state_dir / "nv-swaptop.log"

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("refresh", "display", "system", "tui"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions - no hardcoded values here.
        This ensures Config() and Config.load() use identical defaults.

        Raises:
            ValueError: If the file isn't valid TOML or a value is out of range.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        return cls(
            refresh=_load_refresh_config(data.get("refresh", {})),
            display=_load_display_config(data.get("display", {})),
            system=_load_system_config(data.get("system", {})),
            tui=_load_tui_config(data.get("tui", {})),
        )


def _load_refresh_config(data: dict) -> RefreshConfig:
    """Load refresh config from TOML data, using dataclass defaults for missing fields."""
    d = RefreshConfig()
    config = RefreshConfig(
        tick_interval=data.get("tick_interval", d.tick_interval),
        swap_ttl=data.get("swap_ttl", d.swap_ttl),
        topology_ttl=data.get("topology_ttl", d.topology_ttl),
        distribution_ttl=data.get("distribution_ttl", d.distribution_ttl),
        accelerator_devices_ttl=data.get("accelerator_devices_ttl", d.accelerator_devices_ttl),
        accelerator_processes_ttl=data.get(
            "accelerator_processes_ttl", d.accelerator_processes_ttl
        ),
        distribution_top_n=data.get("distribution_top_n", d.distribution_top_n),
        accelerator_timeout=data.get("accelerator_timeout", d.accelerator_timeout),
    )

    if not TICK_INTERVAL_MIN <= config.tick_interval <= TICK_INTERVAL_MAX:
        raise ValueError(
            f"tick_interval must be in [{TICK_INTERVAL_MIN}, {TICK_INTERVAL_MAX}], "
            f"got {config.tick_interval}"
        )
    for cls, budget in config.budgets().items():
        if budget < 0:
            raise ValueError(f"{cls.value}_ttl must be >= 0, got {budget}")
    if config.distribution_top_n < 1:
        raise ValueError(f"distribution_top_n must be >= 1, got {config.distribution_top_n}")
    if config.accelerator_timeout <= 0:
        raise ValueError(f"accelerator_timeout must be > 0, got {config.accelerator_timeout}")
    return config


def _load_display_config(data: dict) -> DisplayConfig:
    """Load display config from TOML data."""
    d = DisplayConfig()
    valid_units = {u.value for u in SizeUnit}
    valid_keys = {k.value for k in SortKey}
    valid_views = {v.value for v in ActiveView}

    unit = str(data.get("unit", d.unit))
    sort_key = str(data.get("sort_key", d.sort_key))
    initial_view = str(data.get("initial_view", d.initial_view))
    theme = str(data.get("theme", d.theme))

    if unit not in valid_units:
        raise ValueError(f"Invalid unit: {unit!r}. Must be one of {sorted(valid_units)}")
    if sort_key not in valid_keys:
        raise ValueError(f"Invalid sort_key: {sort_key!r}. Must be one of {sorted(valid_keys)}")
    if initial_view not in valid_views:
        raise ValueError(
            f"Invalid initial_view: {initial_view!r}. Must be one of {sorted(valid_views)}"
        )
    if theme not in THEMES:
        raise ValueError(f"Invalid theme: {theme!r}. Must be one of {list(THEMES)}")

    history_size = data.get("history_size", d.history_size)
    if history_size < 1:
        raise ValueError(f"history_size must be >= 1, got {history_size}")

    return DisplayConfig(
        unit=unit,
        sort_key=sort_key,
        aggregate=data.get("aggregate", d.aggregate),
        history_size=history_size,
        initial_view=initial_view,
        theme=theme,
    )


def _load_system_config(data: dict) -> SystemConfig:
    """Load system config from TOML data."""
    d = SystemConfig()
    return SystemConfig(
        sysfs_node_root=data.get("sysfs_node_root", d.sysfs_node_root),
        sysfs_pci_root=data.get("sysfs_pci_root", d.sysfs_pci_root),
        accelerator_tool=data.get("accelerator_tool", d.accelerator_tool),
        log_max_bytes=data.get("log_max_bytes", d.log_max_bytes),
        log_backup_count=data.get("log_backup_count", d.log_backup_count),
    )


def _load_tui_config(data: dict) -> TUIConfig:
    """Load TUI config from TOML data.

    Handles nested [tui.colors.*] sections with defaults.
    """
    tui_defaults = TUIConfig()
    colors_data = data.get("colors", {})
    placement_data = colors_data.get("placement", {})
    node_kinds_data = colors_data.get("node_kinds", {})
    usage_data = colors_data.get("usage", {})

    # Use dataclass instances as single source of truth for defaults
    c = TUIColorsConfig()
    p = PlacementColors()
    n = NodeKindColors()
    u = UsageColors()

    return TUIConfig(
        colors=TUIColorsConfig(
            placement=PlacementColors(
                cpu_only=placement_data.get("cpu_only", p.cpu_only),
                accelerator_only=placement_data.get("accelerator_only", p.accelerator_only),
                cpu_and_accelerator=placement_data.get(
                    "cpu_and_accelerator", p.cpu_and_accelerator
                ),
            ),
            node_kinds=NodeKindColors(
                cpu=node_kinds_data.get("cpu", n.cpu),
                accelerator_memory=node_kinds_data.get("accelerator_memory", n.accelerator_memory),
                unclassified=node_kinds_data.get("unclassified", n.unclassified),
            ),
            usage=UsageColors(
                low=usage_data.get("low", u.low),
                warn=usage_data.get("warn", u.warn),
                critical=usage_data.get("critical", u.critical),
                warn_percent=usage_data.get("warn_percent", u.warn_percent),
                critical_percent=usage_data.get("critical_percent", u.critical_percent),
            ),
            border=colors_data.get("border", c.border),
            pid=colors_data.get("pid", c.pid),
        ),
        name_truncate_length=data.get(
            "name_truncate_length", tui_defaults.name_truncate_length
        ),
    )
