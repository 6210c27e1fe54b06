"""Tool registry and tool execution.

 A *tool* is a callable capability exposed to the LLM through function
 calling.

 - ``ToolDescriptor`` (in ``schemas.domain``) is what the LLM sees: name,
   description and structured parameter schema.
 - ``ToolRegistry`` maps tool ids to implementations, validates arguments
   against the schema and runs the bound logic.
 - Built-in tools (``current_time``, ``web_fetch``, ``knowledge_search``) and
   ``HttpTool`` (for ``HttpBinding`` descriptors) are the shipped
   implementations.
 """

from .base import Tool, ToolContext
from .builtin import CurrentTimeTool, KnowledgeSearchTool, WebFetchTool, builtin_tools
from .http import HttpTool
from .registry import ToolRegistry

__all__ = [
    "Tool",
    "ToolContext",
    "ToolRegistry",
    "HttpTool",
    "CurrentTimeTool",
    "KnowledgeSearchTool",
    "WebFetchTool",
    "builtin_tools",
]
