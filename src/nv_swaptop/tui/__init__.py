"""Interactive dashboard."""

from nv_swaptop.tui.app import NvSwaptopApp, run_tui

__all__ = ["NvSwaptopApp", "run_tui"]
