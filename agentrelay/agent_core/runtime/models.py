from __future__ import annotations

"""Runtime dependency bundle, limits and LangGraph state types.

The runtime engine is designed to be dependency-injected.

- ``EngineDeps`` collects the repositories, registries and clients the engine
  needs. Nothing in the engine reads global configuration.
- ``EngineLimits`` holds the numeric bounds of a run.
- ``_RunContext`` is the per-run working set shared by the graph nodes.
- ``_GraphState`` is the state passed between LangGraph nodes.
"""

from dataclasses import dataclass, field
from typing import Dict, List, NotRequired, Optional, Required, TypedDict

from ...events.bus import EventBus
from ...repos.interfaces import AgentRepository, ExecutionLogRepository
from ..context import ContextRetriever
from ..llm.base import ChatMessage, LLMClient, ToolCallDirective
from ..schemas.domain import Agent, ExecutionRun, ToolDescriptor
from ..tools import ToolRegistry


@dataclass(frozen=True)
class EngineLimits:
    """Numeric bounds applied to every run.

    Attributes
    ----------
    max_iterations:
        Maximum number of LLM requests in the tool-calling loop.
    context_limit:
        Maximum number of context snippets added to the system prompt.
    llm_timeout_seconds:
        Per-request LLM timeout; exceeding it fails the run.
    retrieval_timeout_seconds:
        Context retrieval timeout; exceeding it means "no context".
    """

    max_iterations: int = 5
    context_limit: int = 5
    llm_timeout_seconds: float = 60.0
    retrieval_timeout_seconds: float = 10.0

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")


@dataclass(frozen=True)
class EngineDeps:
    """Dependency bundle for ``AgentEngine``.

    This object is typically constructed by application wiring code. It holds:

    - persistence repositories (agents, execution logs)
    - the tool registry used to resolve and invoke tools
    - the LLM client and the optional context retriever
    - the event bus receiving lifecycle and progress events.
    """

    agents: AgentRepository
    logs: ExecutionLogRepository
    tools: ToolRegistry
    llm: LLMClient
    bus: EventBus
    retriever: Optional[ContextRetriever] = None


@dataclass
class _RunContext:
    agent: Agent
    run: ExecutionRun
    tools_by_name: Dict[str, ToolDescriptor] = field(default_factory=dict)
    system_prompt: str = ""
    started_monotonic: float = 0.0


class _GraphState(TypedDict):
    """Mutable LangGraph state for a single engine run.

    Required keys:

    - ``ctx``: the per-run working set.
    - ``messages``: conversation sent to the LLM (user input, assistant tool
      calls, tool results).
    - ``iteration``: number of LLM requests made so far.

    Optional keys:

    - ``pending_calls``: tool-call directives of the last LLM response.
    - ``_finished`` / ``_terminal_status``: set when the run is over.
    - ``_failure_reason`` / ``_error``: structured failure of a failed run.
    """

    ctx: Required[_RunContext]
    messages: Required[List[ChatMessage]]
    iteration: Required[int]
    pending_calls: NotRequired[List[ToolCallDirective]]
    _finished: NotRequired[bool]
    _terminal_status: NotRequired[str]
    _failure_reason: NotRequired[Optional[str]]
    _error: NotRequired[Optional[Dict[str, str]]]
