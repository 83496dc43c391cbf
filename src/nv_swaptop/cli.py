"""CLI commands for nv-swaptop."""

import click

SORT_CHOICES = ["swap", "accelerator_memory", "topology_node", "name"]
UNIT_CHOICES = ["kb", "mb", "gb"]


@click.group(invoke_without_command=True)
@click.version_option()
@click.pass_context
def main(ctx) -> None:
    """Correlated swap, GPU memory and NUMA placement monitor.

    Runs the interactive dashboard when no command is given.
    """
    if ctx.invoked_subcommand is None:
        ctx.invoke(tui)


def _load_config():
    """Load config, turning validation errors into a clean exit."""
    from nv_swaptop.config import Config
    from nv_swaptop.logging import config_invalid

    try:
        return Config.load()
    except ValueError as e:
        config_invalid(str(e))
        raise SystemExit(1) from e


@main.command()
def tui() -> None:
    """Launch interactive dashboard."""
    from nv_swaptop.logging import config_created, configure
    from nv_swaptop.tui import run_tui

    config = _load_config()
    # Create config file with defaults if it doesn't exist
    if not config.config_path.exists():
        config.save()
        config_created(str(config.config_path))
    configure(config, source="tui")
    run_tui(config)


@main.command()
@click.option("--sort", "-s", "sort_key", type=click.Choice(SORT_CHOICES), default=None)
@click.option("--unit", "-u", type=click.Choice(UNIT_CHOICES), default=None)
@click.option("--format", "-f", "fmt", type=click.Choice(["table", "json"]), default="table")
@click.option("--limit", "-n", default=20, help="Number of processes to show")
def snapshot(sort_key: str | None, unit: str | None, fmt: str, limit: int) -> None:
    """Print the ranked unified process view once."""
    import json

    from nv_swaptop.engine import TelemetryEngine
    from nv_swaptop.formatting import (
        format_node,
        format_percent,
        format_size,
        placement_label,
    )
    from nv_swaptop.logging import Icon, configure, engine_started, fetch_failed, source_unavailable
    from nv_swaptop.models import ActiveView, SizeUnit
    from nv_swaptop.ranking import SortKey

    config = _load_config()
    configure(config, source="cli")

    engine = TelemetryEngine.from_config(config)
    if sort_key is not None:
        engine.sort_key = SortKey(sort_key)
    size_unit = SizeUnit(unit) if unit else config.display.size_unit

    state = engine.tick(view=ActiveView.UNIFIED)
    if fmt == "table":
        engine_started(state.topology_available, state.accelerator_available)
    for cls, message in state.errors.items():
        fetch_failed(cls.value, message)

    records = state.records[:limit]

    if fmt == "json":
        click.echo(json.dumps([r.to_dict() for r in records], indent=2))
        return

    summary = state.swap_summary
    if summary.total_kb == 0:
        source_unavailable("Swap", Icon.SWAP)
    click.echo(
        f"Swap: {format_size(summary.used_kb, size_unit)} / "
        f"{format_size(summary.total_kb, size_unit)} ({format_percent(summary.percent)})"
    )
    if not records:
        click.echo("No processes using swap or GPU memory.")
        return

    click.echo(
        f"{'PID':>7}  {'Name':24}  {'Swap':>14}  {'GPU Mem':>14}  {'GPU':>3}  "
        f"{'Node':>4}  {'Placement':9}"
    )
    click.echo("-" * 86)
    for r in records:
        gpu = "-" if r.accelerator_index is None else str(r.accelerator_index)
        click.echo(
            f"{r.pid:>7}  {r.name[:24]:24}  {format_size(r.swap_kb, size_unit):>14}  "
            f"{format_size(r.accelerator_memory_kb, size_unit):>14}  {gpu:>3}  "
            f"{format_node(r.dominant_node):>4}  {placement_label(r.placement):9}"
        )


@main.command()
@click.option("--format", "-f", "fmt", type=click.Choice(["table", "json"]), default="table")
def topology(fmt: str) -> None:
    """Print NUMA nodes and their classification."""
    import json

    from nv_swaptop.engine import TelemetryEngine
    from nv_swaptop.formatting import format_cpus, format_size, node_kind_label
    from nv_swaptop.logging import Icon, configure, fetch_failed, source_unavailable
    from nv_swaptop.models import SizeUnit
    from nv_swaptop.scheduler import TelemetryClass

    config = _load_config()
    configure(config, source="cli")

    engine = TelemetryEngine.from_config(config)
    state = engine.tick()
    if not state.topology_available:
        source_unavailable("NUMA topology", Icon.NODE)
        return
    if TelemetryClass.TOPOLOGY in state.errors:
        fetch_failed("topology", state.errors[TelemetryClass.TOPOLOGY])
        raise SystemExit(1)

    if fmt == "json":
        data = [
            {
                "id": node.id,
                "kind": node.kind.label,
                "device_index": getattr(node.kind, "device_index", None),
                "cpus": sorted(node.cpus),
                "total_kb": node.total_kb,
                "free_kb": node.free_kb,
            }
            for node in state.nodes
        ]
        click.echo(json.dumps(data, indent=2))
        return

    click.echo(f"{'Node':>4}  {'Kind':18}  {'CPUs':16}  {'Total':>12}  {'Free':>12}")
    click.echo("-" * 70)
    for node in state.nodes:
        click.echo(
            f"{node.id:>4}  {node_kind_label(node.kind):18}  {format_cpus(node.cpus)[:16]:16}  "
            f"{format_size(node.total_kb, SizeUnit.GB):>12}  "
            f"{format_size(node.free_kb, SizeUnit.GB):>12}"
        )


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Display current configuration."""
    cfg = _load_config()

    click.echo(f"Config file: {cfg.config_path}")
    click.echo(f"Exists: {cfg.config_path.exists()}")
    click.echo()
    click.echo("[refresh]")
    click.echo(f"  tick_interval = {cfg.refresh.tick_interval}")
    click.echo(f"  swap_ttl = {cfg.refresh.swap_ttl}")
    click.echo(f"  topology_ttl = {cfg.refresh.topology_ttl}")
    click.echo(f"  distribution_ttl = {cfg.refresh.distribution_ttl}")
    click.echo(f"  accelerator_devices_ttl = {cfg.refresh.accelerator_devices_ttl}")
    click.echo(f"  accelerator_processes_ttl = {cfg.refresh.accelerator_processes_ttl}")
    click.echo(f"  distribution_top_n = {cfg.refresh.distribution_top_n}")
    click.echo()
    click.echo("[display]")
    click.echo(f"  unit = {cfg.display.unit}")
    click.echo(f"  sort_key = {cfg.display.sort_key}")
    click.echo(f"  aggregate = {cfg.display.aggregate}")
    click.echo(f"  initial_view = {cfg.display.initial_view}")
    click.echo()
    click.echo("[system]")
    click.echo(f"  accelerator_tool = {cfg.system.accelerator_tool}")
    click.echo(f"  sysfs_node_root = {cfg.system.sysfs_node_root}")


@config.command("edit")
def config_edit() -> None:
    """Open config file in editor."""
    import os
    import subprocess

    from nv_swaptop.config import Config
    from nv_swaptop.logging import config_created

    cfg = Config()

    # Create config if it doesn't exist
    if not cfg.config_path.exists():
        cfg.save()
        config_created(str(cfg.config_path))

    editor = os.environ.get("EDITOR", "nano")
    subprocess.run([editor, str(cfg.config_path)])


@config.command("reset")
@click.confirmation_option(prompt="Reset config to defaults?")
def config_reset() -> None:
    """Reset configuration to defaults."""
    from nv_swaptop.config import Config

    cfg = Config()
    cfg.save()
    click.echo(f"Config reset to defaults at {cfg.config_path}")
