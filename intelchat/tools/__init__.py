"""
Intel query tools.

Importing this package registers every tool; the catalog order is registration order.
"""

from __future__ import annotations

from intelchat.tools import crossref, listings, profiles, search  # noqa: F401  (registration side effects)
from intelchat.tools.base import ToolContext, ToolResult, registered_tools, run_tool, tool_catalog

__all__ = ["ToolContext", "ToolResult", "registered_tools", "run_tool", "tool_catalog"]
