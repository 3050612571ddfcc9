from src.tools.analytics import ANALYTICS_TOOLS
from src.tools.base import ScheduleRenderer, Tool, ToolContext, ToolRegistry, tool
from src.tools.reservations import RESERVATION_TOOLS


def build_tool_registry() -> ToolRegistry:
    """Registry holding every booking and analytics tool."""
    return ToolRegistry([*RESERVATION_TOOLS, *ANALYTICS_TOOLS])


__all__ = [
    "ScheduleRenderer",
    "Tool",
    "ToolContext",
    "ToolRegistry",
    "build_tool_registry",
    "tool",
]
