from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import Field

from .base import BaseSchema
from .parameters import ObjectParameter


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class RunStatus(str, Enum):
    pending = "pending"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"


class StepKind(str, Enum):
    llm_request = "llm_request"
    tool_call = "tool_call"
    tool_result = "tool_result"
    final_answer = "final_answer"


class FailureReason(str, Enum):
    execution_limit_exceeded = "ExecutionLimitExceeded"
    cancelled = "Cancelled"
    fatal_provider_error = "FatalProviderError"


class ModelParameters(BaseSchema):
    """Per-agent overrides of the provider defaults."""

    model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, gt=0)


class Agent(BaseSchema):
    id: str = Field(default_factory=_new_id)
    owner_id: str
    name: str = Field(min_length=1)
    description: str = ""
    system_prompt: str = ""
    tool_ids: List[str] = Field(default_factory=list)
    knowledge_scope: Optional[str] = None
    model_parameters: ModelParameters = Field(default_factory=ModelParameters)
    is_public: bool = False
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    def visible_to(self, user_id: str) -> bool:
        return self.owner_id == user_id or self.is_public


class AgentExport(BaseSchema):
    """Portable agent definition; ids, ownership, visibility and timestamps are not carried."""

    format_version: Literal[1] = 1
    exported_at: datetime = Field(default_factory=_utc_now)
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    system_prompt: str = ""
    tool_ids: List[str] = Field(default_factory=list)
    knowledge_scope: Optional[str] = None
    model_parameters: ModelParameters = Field(default_factory=ModelParameters)

    @classmethod
    def from_agent(cls, agent: Agent) -> "AgentExport":
        return cls(
            name=agent.name,
            description=agent.description,
            system_prompt=agent.system_prompt,
            tool_ids=list(agent.tool_ids),
            knowledge_scope=agent.knowledge_scope,
            model_parameters=agent.model_parameters.model_copy(),
        )


class BuiltinBinding(BaseSchema):
    kind: Literal["builtin"] = "builtin"
    handler: str


class HttpBinding(BaseSchema):
    kind: Literal["http"] = "http"
    url: str
    method: Literal["GET", "POST"] = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)
    timeout_seconds: Optional[float] = Field(default=None, gt=0)


ToolBinding = Annotated[Union[BuiltinBinding, HttpBinding], Field(discriminator="kind")]


class ToolDescriptor(BaseSchema):
    id: str
    # providers restrict function names to this alphabet
    name: str = Field(pattern=r"^[a-zA-Z0-9_-]{1,64}$")
    description: str = ""
    parameters: ObjectParameter = Field(default_factory=ObjectParameter)
    binding: ToolBinding

    def declaration(self) -> Dict[str, Any]:
        """Return the ``{name, description, parameters}`` function declaration."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters.to_json_schema(),
        }


class StepError(BaseSchema):
    type: str
    message: str
    details: Optional[List[str]] = None


class _StepBase(BaseSchema):
    id: str = Field(default_factory=_new_id)
    run_id: str
    index: int = Field(ge=0)
    created_at: datetime = Field(default_factory=_utc_now)


class LLMRequestStep(_StepBase):
    kind: Literal["llm_request"] = "llm_request"
    iteration: int
    message_count: int
    tool_names: List[str] = Field(default_factory=list)
    model: Optional[str] = None
    duration_ms: Optional[float] = None
    error: Optional[StepError] = None


class ToolCallStep(_StepBase):
    kind: Literal["tool_call"] = "tool_call"
    tool_id: Optional[str] = None
    tool_name: str
    call_id: Optional[str] = None
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolResultStep(_StepBase):
    kind: Literal["tool_result"] = "tool_result"
    tool_id: Optional[str] = None
    tool_name: str
    call_id: Optional[str] = None
    output: Any = None
    error: Optional[StepError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class FinalAnswerStep(_StepBase):
    kind: Literal["final_answer"] = "final_answer"
    text: str


Step = Annotated[
    Union[LLMRequestStep, ToolCallStep, ToolResultStep, FinalAnswerStep],
    Field(discriminator="kind"),
]


class ExecutionRun(BaseSchema):
    id: str = Field(default_factory=_new_id)
    agent_id: str
    user_id: str
    input: str
    steps: List[Step] = Field(default_factory=list)
    status: RunStatus = RunStatus.pending
    failure_reason: Optional[FailureReason] = None
    error: Optional[StepError] = None
    created_at: datetime = Field(default_factory=_utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (RunStatus.succeeded, RunStatus.failed)

    @property
    def final_answer(self) -> Optional[str]:
        for step in reversed(self.steps):
            if isinstance(step, FinalAnswerStep):
                return step.text
        return None
