from . import group_tools, guardian_tools, lead_tools, memory_tools, skill_tools, supervisor_tools
from .registry import ToolContext, ToolError, ToolRegistry, ToolRunner


def builtin_registry() -> ToolRegistry:
    """Registry with every built-in tool."""
    registry = ToolRegistry()
    for module in (group_tools, skill_tools, memory_tools, supervisor_tools, guardian_tools, lead_tools):
        for spec in module.TOOLS:
            registry.register(spec)
    return registry


__all__ = ["ToolContext", "ToolError", "ToolRegistry", "ToolRunner", "builtin_registry"]
