"""Tests for formatting utilities."""

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
    CpuNode,
    Placement,
    SizeUnit,
    Unclassified,
)


class TestFormatSize:
    """Tests for format_size."""

    def test_kib_whole_numbers(self) -> None:
        """KiB values show as whole numbers."""
        assert format_size(2048, SizeUnit.KB) == "2048 KiB"

    def test_mib_two_decimals(self) -> None:
        """MiB values show two decimals."""
        assert format_size(2048, SizeUnit.MB) == "2.00 MiB"

    def test_gib(self) -> None:
        """GiB conversion divides by 1024 twice."""
        assert format_size(512 * 1024, SizeUnit.GB) == "0.50 GiB"

    def test_missing_value(self) -> None:
        """None renders as a dash in every unit."""
        assert format_size(None, SizeUnit.MB) == "-"


class TestFormatAge:
    """Tests for format_age (cache staleness)."""

    def test_never(self) -> None:
        """Never-refreshed caches say so."""
        assert format_age(None) == "never"

    def test_sub_second(self) -> None:
        """Sub-second ages show one decimal."""
        assert format_age(0.4) == "0.4s"

    def test_seconds(self) -> None:
        """Ages under a minute show whole seconds."""
        assert format_age(12.7) == "12s"

    def test_minutes(self) -> None:
        """Longer ages show minutes and zero-padded seconds."""
        assert format_age(185.0) == "3m05s"


def test_format_percent() -> None:
    """Percentages show one decimal."""
    assert format_percent(25.0) == "25.0%"


def test_placement_label() -> None:
    """Placements have short labels."""
    assert placement_label(Placement.CPU_ONLY) == "CPU"
    assert placement_label(Placement.ACCELERATOR_ONLY) == "GPU"
    assert placement_label(Placement.CPU_AND_ACCELERATOR) == "CPU+GPU"


def test_node_kind_label() -> None:
    """Accelerator memory nodes name their device."""
    assert node_kind_label(CpuNode()) == "CPU"
    assert node_kind_label(AcceleratorAttachedMemory(device_index=1)) == "GPU HBM (GPU 1)"
    assert node_kind_label(Unclassified()) == "Unknown"


def test_format_node() -> None:
    """Unknown nodes render as a dash."""
    assert format_node(None) == "-"
    assert format_node(0) == "0"


def test_format_cpus() -> None:
    """CPU sets compress back to range-list form."""
    assert format_cpus(frozenset({0, 1, 2, 3, 8})) == "0-3,8"
    assert format_cpus(frozenset({1, 3, 4})) == "1,3-4"
    assert format_cpus(frozenset()) == "-"


def test_truncate() -> None:
    """Long text is cut with a marker; short text is untouched."""
    assert truncate("postgres", 24) == "postgres"
    assert truncate("very-long-process-name", 10) == "very-lon.."
