"""Diskwright partition layout planning."""

from diskwright.layout.planner import LayoutPlanner, plan_layout

__all__ = ["LayoutPlanner", "plan_layout"]
