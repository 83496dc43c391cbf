"""Tests for CLI commands."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from nv_swaptop.cli import main
from nv_swaptop.config import Config, RefreshConfig
from nv_swaptop.engine import TelemetryEngine
from nv_swaptop.models import SwapSummary
from nv_swaptop.source import FetchFailure

from tests.conftest import FakeSource, make_accel, make_swap


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


def _invoke(runner: CliRunner, source: FakeSource, args: list[str]):
    """Run a command against a fake source."""
    engine = TelemetryEngine(source)
    with patch("nv_swaptop.engine.TelemetryEngine.from_config", return_value=engine):
        return runner.invoke(main, args)


class TestSnapshotCommand:
    """Tests for the snapshot command."""

    def test_snapshot_json(
        self, runner: CliRunner, isolated_config: Config, fake_source: FakeSource
    ) -> None:
        """snapshot --format json prints ranked unified records."""
        result = _invoke(runner, fake_source, ["snapshot", "--format", "json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [r["pid"] for r in data] == [3, 1]
        assert data[0]["placement"] == "accelerator"
        assert data[0]["accelerator_memory_kb"] == 10_000
        assert data[1]["placement"] == "cpu"
        assert data[1]["dominant_node"] == 0

    def test_snapshot_sort_and_limit(
        self, runner: CliRunner, isolated_config: Config, fake_source: FakeSource
    ) -> None:
        """--sort and --limit control order and length."""
        result = _invoke(
            runner, fake_source, ["snapshot", "-f", "json", "--sort", "name", "--limit", "1"]
        )

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [r["name"] for r in data] == ["a"]

    def test_snapshot_table(
        self, runner: CliRunner, isolated_config: Config, fake_source: FakeSource
    ) -> None:
        """The table format shows swap totals and one row per process."""
        result = _invoke(runner, fake_source, ["snapshot", "--unit", "mb"])

        assert result.exit_code == 0
        assert "Swap:" in result.output
        assert "PID" in result.output
        assert "Placement" in result.output
        assert "CPU+GPU" not in result.output
        assert "9.77 MiB" in result.output  # 10_000 KiB of GPU memory

    def test_snapshot_empty(self, runner: CliRunner, isolated_config: Config) -> None:
        """With nothing using swap or GPU memory, snapshot says so."""
        result = _invoke(runner, FakeSource(), ["snapshot"])

        assert result.exit_code == 0
        assert "No processes using swap or GPU memory." in result.output

    def test_snapshot_no_swap_configured(self, runner: CliRunner, isolated_config: Config) -> None:
        """Hosts without swap devices say so and still list GPU processes."""
        source = FakeSource(
            summary=SwapSummary(),
            accelerator=[make_accel(pid=3, name="trainer", memory_kb=1024)],
        )
        with patch("nv_swaptop.logging.source_unavailable") as mock_unavailable:
            result = _invoke(runner, source, ["snapshot"])

        assert result.exit_code == 0
        assert "trainer" in result.output
        mock_unavailable.assert_called_once()
        assert mock_unavailable.call_args.args[0] == "Swap"

    def test_snapshot_survives_fetch_failure(
        self, runner: CliRunner, isolated_config: Config
    ) -> None:
        """A failed accelerator read still prints the swap processes."""
        source = FakeSource(
            swap=[make_swap(pid=5, name="postgres", swap_kb=4096)],
            accelerator=FetchFailure("nvidia-smi exited 9"),
        )
        result = _invoke(runner, source, ["snapshot"])

        assert result.exit_code == 0
        assert "postgres" in result.output

    def test_snapshot_invalid_config(self, runner: CliRunner, isolated_config: Config) -> None:
        """An invalid config file exits with an error."""
        isolated_config.config_path.parent.mkdir(parents=True)
        isolated_config.config_path.write_text("[refresh]\ntick_interval = 99.0\n")

        result = runner.invoke(main, ["snapshot"])

        assert result.exit_code == 1


class TestTopologyCommand:
    """Tests for the topology command."""

    def test_topology_json(
        self, runner: CliRunner, isolated_config: Config, fake_source: FakeSource
    ) -> None:
        """topology --format json lists classified nodes."""
        result = _invoke(runner, fake_source, ["topology", "--format", "json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data == [
            {
                "id": 0,
                "kind": "CPU",
                "device_index": None,
                "cpus": [0, 1, 2, 3],
                "total_kb": 16_000_000,
                "free_kb": 8_000_000,
            }
        ]

    def test_topology_table(
        self, runner: CliRunner, isolated_config: Config, fake_source: FakeSource
    ) -> None:
        """The table shows node kind and CPU ranges."""
        result = _invoke(runner, fake_source, ["topology"])

        assert result.exit_code == 0
        assert "Kind" in result.output
        assert "0-3" in result.output

    def test_topology_unavailable(self, runner: CliRunner, isolated_config: Config) -> None:
        """Hosts without NUMA exit cleanly."""
        result = _invoke(runner, FakeSource(topology=False), ["topology"])

        assert result.exit_code == 0
        assert "Kind" not in result.output

    def test_topology_read_failure(self, runner: CliRunner, isolated_config: Config) -> None:
        """A failed topology read exits with an error."""
        result = _invoke(runner, FakeSource(nodes=FetchFailure("sysfs gone")), ["topology"])

        assert result.exit_code == 1


def _make_path_prop(path: Path):
    """Create a property that returns a fixed path."""
    return property(lambda self: path)


class TestConfigCommand:
    """Tests for the config command group."""

    def test_config_show_defaults(self, runner: CliRunner, tmp_path: Path) -> None:
        """config show displays default values when no config file exists."""
        config_path = tmp_path / "config.toml"

        with patch.object(Config, "config_path", new_callable=lambda: _make_path_prop(config_path)):
            result = runner.invoke(main, ["config", "show"])

        assert result.exit_code == 0
        assert "Config file:" in result.output
        assert "Exists: False" in result.output
        assert "[refresh]" in result.output
        defaults = Config()
        assert f"topology_ttl = {defaults.refresh.topology_ttl}" in result.output
        assert "[display]" in result.output
        assert f"sort_key = {defaults.display.sort_key}" in result.output

    def test_config_show_custom_values(self, runner: CliRunner, tmp_path: Path) -> None:
        """config show displays custom values from config file."""
        config_path = tmp_path / "config.toml"
        Config(refresh=RefreshConfig(distribution_top_n=8, swap_ttl=2.0)).save(config_path)

        with patch.object(Config, "config_path", new_callable=lambda: _make_path_prop(config_path)):
            result = runner.invoke(main, ["config", "show"])

        assert result.exit_code == 0
        assert "Exists: True" in result.output
        assert "distribution_top_n = 8" in result.output
        assert "swap_ttl = 2.0" in result.output

    def test_config_edit_creates_default(self, runner: CliRunner, tmp_path: Path) -> None:
        """config edit creates default config if it doesn't exist."""
        config_path = tmp_path / "config.toml"

        with (
            patch.object(Config, "config_path", new_callable=lambda: _make_path_prop(config_path)),
            patch("subprocess.run") as mock_run,
            patch.dict("os.environ", {"EDITOR": "vim"}),
        ):
            result = runner.invoke(main, ["config", "edit"])

        assert result.exit_code == 0
        assert config_path.exists()
        mock_run.assert_called_once_with(["vim", str(config_path)])

    def test_config_reset_with_confirmation(self, runner: CliRunner, tmp_path: Path) -> None:
        """config reset resets config when user confirms."""
        config_path = tmp_path / "config.toml"
        Config(refresh=RefreshConfig(topology_ttl=999.0)).save(config_path)

        with patch.object(Config, "config_path", new_callable=lambda: _make_path_prop(config_path)):
            result = runner.invoke(main, ["config", "reset", "--yes"])

        assert result.exit_code == 0
        assert f"Config reset to defaults at {config_path}" in result.output
        assert Config.load(config_path).refresh.topology_ttl == 30.0

    def test_config_reset_requires_confirmation(self, runner: CliRunner, tmp_path: Path) -> None:
        """config reset aborts without confirmation."""
        config_path = tmp_path / "config.toml"
        Config(refresh=RefreshConfig(topology_ttl=999.0)).save(config_path)

        with patch.object(Config, "config_path", new_callable=lambda: _make_path_prop(config_path)):
            result = runner.invoke(main, ["config", "reset"], input="n\n")

        assert result.exit_code != 0
        assert Config.load(config_path).refresh.topology_ttl == 999.0


def test_tui_command_launches_app(runner: CliRunner, isolated_config: Config) -> None:
    """Running with no command creates the config and starts the dashboard."""
    with patch("nv_swaptop.tui.run_tui") as mock_run:
        result = runner.invoke(main, [])

    assert result.exit_code == 0
    mock_run.assert_called_once()
    assert isolated_config.config_path.exists()
