"""LangGraph-based execution runtime for agent runs.

 The runtime takes an ``Agent`` definition and a user input and drives the
 bounded tool-calling loop:

 - the LLM is asked for either a final answer or tool-call directives,
 - tool calls are validated and executed through the ``ToolRegistry``,
 - every step is appended to the execution log and published as progress,
 - the terminal run raises ``agent.completed`` or ``agent.failed``.

 The main entry point is ``AgentEngine``; its collaborators are injected via
 ``EngineDeps`` and bounded by ``EngineLimits``.
 """

from .engine import AgentEngine
from .models import EngineDeps, EngineLimits

__all__ = [
    "AgentEngine",
    "EngineDeps",
    "EngineLimits",
]
