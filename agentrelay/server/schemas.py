"""
API Request/Response Schemas.

Request bodies reject unknown fields; responses are built from the domain
models so that the JSON shape stays snake_case throughout.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from agentrelay.agent_core.schemas.domain import (
    Agent,
    AgentExport,
    ExecutionRun,
    FailureReason,
    ModelParameters,
    RunStatus,
    Step,
    StepError,
)
from agentrelay.repos.interfaces import RunStats
from agentrelay.webhooks.models import DEFAULT_EVENTS, DeliveryAttempt, WebhookSubscription


class _Request(BaseModel):
    model_config = ConfigDict(extra="forbid")


# =====================================================================
# Agents
# =====================================================================


class AgentCreate(_Request):
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    system_prompt: str = ""
    tool_ids: List[str] = Field(default_factory=list)
    knowledge_scope: Optional[str] = None
    model_parameters: ModelParameters = Field(default_factory=ModelParameters)
    is_public: bool = False


class AgentUpdate(_Request):
    """Partial update; omitted (``None``) fields stay unchanged."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    system_prompt: Optional[str] = None
    tool_ids: Optional[List[str]] = None
    knowledge_scope: Optional[str] = None
    model_parameters: Optional[ModelParameters] = None
    is_public: Optional[bool] = None


class AgentOut(BaseModel):
    id: str
    owner_id: str
    name: str
    description: str
    system_prompt: str
    tool_ids: List[str]
    knowledge_scope: Optional[str]
    model_parameters: ModelParameters
    is_public: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, agent: Agent) -> "AgentOut":
        return cls.model_validate(agent.model_dump())


class AgentCloneIn(_Request):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)


class AgentAnalyticsOut(BaseModel):
    agent_id: str
    name: str
    timeframe: str
    total_runs: int
    status_counts: Dict[str, int]
    failure_reasons: Dict[str, int]
    runs_by_day: Dict[str, int]
    success_rate: Optional[float] = None
    failure_rate: Optional[float] = None
    average_duration_seconds: Optional[float] = None

    @classmethod
    def from_stats(cls, agent: Agent, timeframe: str, stats: RunStats) -> "AgentAnalyticsOut":
        return cls(
            agent_id=agent.id,
            name=agent.name,
            timeframe=timeframe,
            total_runs=stats.total,
            status_counts={s.value: stats.status_counts.get(s.value, 0) for s in RunStatus},
            failure_reasons=dict(stats.failure_reasons),
            runs_by_day=dict(stats.runs_by_day),
            success_rate=stats.success_rate,
            failure_rate=stats.failure_rate,
            average_duration_seconds=stats.average_duration_seconds,
        )


# =====================================================================
# Runs and logs
# =====================================================================


class RunRequest(_Request):
    input: str = Field(min_length=1)


class RunOut(BaseModel):
    run_id: str
    agent_id: str
    user_id: str
    input: str
    status: RunStatus
    failure_reason: Optional[FailureReason] = None
    error: Optional[StepError] = None
    final_answer: Optional[str] = None
    steps: List[Step] = Field(default_factory=list)
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, run: ExecutionRun) -> "RunOut":
        return cls(
            run_id=run.id,
            agent_id=run.agent_id,
            user_id=run.user_id,
            input=run.input,
            status=run.status,
            failure_reason=run.failure_reason,
            error=run.error,
            final_answer=run.final_answer,
            steps=list(run.steps),
            created_at=run.created_at,
            started_at=run.started_at,
            completed_at=run.completed_at,
        )


class CancelOut(BaseModel):
    run_id: str
    cancelled: bool


class StepPageOut(BaseModel):
    steps: List[Step]
    next_cursor: Optional[str] = None


# =====================================================================
# Webhooks
# =====================================================================


class WebhookCreate(_Request):
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    target_url: str
    events: List[str] = Field(default_factory=lambda: list(DEFAULT_EVENTS))
    headers: Dict[str, str] = Field(default_factory=dict)
    is_active: bool = True


class WebhookUpdate(_Request):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    target_url: Optional[str] = None
    events: Optional[List[str]] = None
    headers: Optional[Dict[str, str]] = None
    is_active: Optional[bool] = None


class WebhookOut(BaseModel):
    """A subscription as returned by reads; the secret is never included."""

    id: str
    owner_id: str
    name: str
    description: Optional[str] = None
    target_url: str
    events: List[str]
    is_active: bool
    headers: Dict[str, str]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, webhook: WebhookSubscription) -> "WebhookOut":
        return cls.model_validate(webhook.model_dump(exclude={"secret"}))


class WebhookCreated(WebhookOut):
    """Returned once on creation and on secret rotation."""

    secret: str

    @classmethod
    def from_domain(cls, webhook: WebhookSubscription) -> "WebhookCreated":
        return cls.model_validate(webhook.model_dump())


class DeliveryAttemptOut(BaseModel):
    id: str
    webhook_id: str
    event_id: str
    event_type: str
    idempotency_key: str
    attempt_number: int
    response_status: Optional[int] = None
    outcome: str
    error: Optional[str] = None
    duration_ms: Optional[float] = None
    created_at: datetime

    @classmethod
    def from_domain(cls, attempt: DeliveryAttempt) -> "DeliveryAttemptOut":
        return cls.model_validate(attempt.model_dump(mode="json", exclude={"request_signature"}))


# =====================================================================
# Workflows
# =====================================================================


class WorkflowEventIn(_Request):
    status: Literal["completed", "failed"]
    execution_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class WorkflowEventOut(BaseModel):
    event_id: str
    event_type: str
    idempotency_key: str
