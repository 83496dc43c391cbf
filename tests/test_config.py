"""Tests for configuration system."""

import pytest

from nv_swaptop.config import (
    Config,
    DisplayConfig,
    NodeKindColors,
    PlacementColors,
    RefreshConfig,
    SystemConfig,
    UsageColors,
)
from nv_swaptop.models import ActiveView, SizeUnit
from nv_swaptop.ranking import SortKey
from nv_swaptop.scheduler import TelemetryClass


def test_refresh_config_defaults():
    """RefreshConfig has correct defaults."""
    config = RefreshConfig()
    assert config.tick_interval == 1.0
    assert config.swap_ttl == 1.0
    assert config.topology_ttl == 30.0
    assert config.distribution_ttl == 5.0
    assert config.accelerator_devices_ttl == 2.0
    assert config.accelerator_processes_ttl == 1.0
    assert config.distribution_top_n == 20


def test_refresh_budgets_cover_every_class():
    """budgets() has one entry per telemetry class."""
    budgets = RefreshConfig(topology_ttl=45.0).budgets()
    assert set(budgets) == set(TelemetryClass)
    assert budgets[TelemetryClass.TOPOLOGY] == 45.0


def test_display_config_defaults():
    """DisplayConfig has correct defaults and typed accessors."""
    config = DisplayConfig()
    assert config.size_unit is SizeUnit.KB
    assert config.sort is SortKey.SWAP
    assert config.view is ActiveView.SWAP
    assert config.aggregate is False
    assert config.history_size == 60
    assert config.theme == "dracula"


def test_system_config_defaults():
    """SystemConfig points at the standard sysfs paths."""
    config = SystemConfig()
    assert config.sysfs_node_root == "/sys/devices/system/node"
    assert config.accelerator_tool == "nvidia-smi"


def test_color_defaults():
    """Color sections have a value for every placement and node kind."""
    assert PlacementColors().cpu_and_accelerator
    assert NodeKindColors().unclassified == "dim"


def test_usage_colors_for_percent():
    """Usage color steps up at the warn and critical thresholds."""
    usage = UsageColors()
    assert usage.for_percent(10.0) == usage.low
    assert usage.for_percent(50.0) == usage.warn
    assert usage.for_percent(80.0) == usage.critical


def test_config_paths():
    """Config provides correct paths."""
    config = Config()
    assert "nv-swaptop" in str(config.config_dir)
    assert config.config_path.name == "config.toml"
    assert config.log_path.name == "nv-swaptop.log"
    assert config.log_path.parent == config.state_dir


def test_config_save_preserves_values(tmp_path):
    """Config.save() writes correct TOML values."""
    config_path = tmp_path / "config.toml"
    config = Config()
    config.refresh.topology_ttl = 60.0
    config.display.unit = "gb"
    config.display.aggregate = True
    config.save(config_path)

    content = config_path.read_text()
    assert "[refresh]" in content
    assert "topology_ttl = 60.0" in content
    assert 'unit = "gb"' in content
    assert "aggregate = true" in content
    assert "[tui.colors.placement]" in content


def test_config_round_trip(tmp_path):
    """A saved config loads back with the same values."""
    config_path = tmp_path / "config.toml"
    config = Config()
    config.refresh.distribution_top_n = 5
    config.display.sort_key = "accelerator_memory"
    config.tui.colors.usage.warn_percent = 40.0
    config.save(config_path)

    loaded = Config.load(config_path)
    assert loaded.refresh.distribution_top_n == 5
    assert loaded.display.sort is SortKey.ACCELERATOR_MEMORY
    assert loaded.tui.colors.usage.warn_percent == 40.0


def test_config_load_reads_values(tmp_path):
    """Config.load() reads values from file, keeping defaults for the rest."""
    config_path = tmp_path / "config.toml"
    config_path.write_text("""
[refresh]
tick_interval = 0.5
distribution_ttl = 10.0

[display]
unit = "mb"
initial_view = "unified"

[system]
accelerator_tool = "/opt/nvidia/bin/nvidia-smi"

[tui.colors.placement]
cpu_only = "blue"
""")

    config = Config.load(config_path)
    assert config.refresh.tick_interval == 0.5
    assert config.refresh.distribution_ttl == 10.0
    assert config.refresh.swap_ttl == 1.0  # Default preserved
    assert config.display.size_unit is SizeUnit.MB
    assert config.display.view is ActiveView.UNIFIED
    assert config.system.accelerator_tool == "/opt/nvidia/bin/nvidia-smi"
    assert config.tui.colors.placement.cpu_only == "blue"
    assert config.tui.colors.placement.accelerator_only == PlacementColors().accelerator_only


def test_config_load_missing_file_returns_defaults(tmp_path):
    """Config.load() returns defaults when file doesn't exist."""
    config = Config.load(tmp_path / "nonexistent.toml")
    assert config.refresh.tick_interval == 1.0
    assert config.display.unit == "kb"


@pytest.mark.parametrize(
    "toml_text, message",
    [
        ("[refresh]\ntick_interval = 0.05\n", "tick_interval"),
        ("[refresh]\ntick_interval = 11.0\n", "tick_interval"),
        ("[refresh]\ntopology_ttl = -1.0\n", "topology_ttl"),
        ("[refresh]\ndistribution_top_n = 0\n", "distribution_top_n"),
        ("[refresh]\naccelerator_timeout = 0\n", "accelerator_timeout"),
        ('[display]\nunit = "tb"\n', "Invalid unit"),
        ('[display]\nsort_key = "cpu"\n', "Invalid sort_key"),
        ('[display]\ninitial_view = "graphs"\n', "Invalid initial_view"),
        ("[display]\nhistory_size = 0\n", "history_size"),
        ('[display]\ntheme = "vaporwave"\n', "Invalid theme"),
    ],
)
def test_config_load_rejects_invalid_values(tmp_path, toml_text, message):
    """Out-of-range values are rejected with a message naming the field."""
    config_path = tmp_path / "config.toml"
    config_path.write_text(toml_text)
    with pytest.raises(ValueError, match=message):
        Config.load(config_path)


def test_config_load_rejects_malformed_toml(tmp_path):
    """Malformed TOML is reported as a ValueError."""
    config_path = tmp_path / "config.toml"
    config_path.write_text("[refresh\ntick_interval = ")
    with pytest.raises(ValueError, match="Failed to parse config file"):
        Config.load(config_path)
