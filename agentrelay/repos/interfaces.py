from __future__ import annotations

"""Repository interface contracts.

The engine, the dispatcher and the API depend on these Protocols instead of
concrete persistence implementations.

Contract guidelines
-------------------

- All methods are async.
- Implementations must not leak sessions/transactions to callers.
- The step log and the delivery-attempt log are append-only.
- A run whose status is terminal is immutable: appending a step to it is an
  error and finishing it again is a no-op.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Protocol

from ..agent_core.schemas.domain import Agent, ExecutionRun, FailureReason, RunStatus, Step, StepError
from ..webhooks.models import DeliveryAttempt, WebhookSubscription


@dataclass(frozen=True)
class StepPage:
    """One page of execution-log steps plus the cursor of the next page."""

    steps: List[Step] = field(default_factory=list)
    next_cursor: Optional[str] = None


@dataclass(frozen=True)
class RunStats:
    """
    Aggregate view over the runs of one agent.

    ``status_counts`` is keyed by ``RunStatus`` value and ``failure_reasons``
    by ``FailureReason`` value (failed runs without a reason are not counted
    there). ``runs_by_day`` is keyed by the ISO date of ``created_at`` in UTC.
    """

    total: int = 0
    status_counts: Dict[str, int] = field(default_factory=dict)
    failure_reasons: Dict[str, int] = field(default_factory=dict)
    runs_by_day: Dict[str, int] = field(default_factory=dict)
    average_duration_seconds: Optional[float] = None

    @property
    def finished(self) -> int:
        return self.status_counts.get(RunStatus.succeeded.value, 0) + self.status_counts.get(RunStatus.failed.value, 0)

    @property
    def success_rate(self) -> Optional[float]:
        if not self.finished:
            return None
        return self.status_counts.get(RunStatus.succeeded.value, 0) / self.finished

    @property
    def failure_rate(self) -> Optional[float]:
        if not self.finished:
            return None
        return self.status_counts.get(RunStatus.failed.value, 0) / self.finished


class AgentRepository(Protocol):
    """CRUD over agent definitions."""

    async def create(self, agent: Agent) -> None: ...

    async def get(self, agent_id: str) -> Optional[Agent]: ...

    async def list(self, owner_id: str, *, include_public: bool = False) -> List[Agent]:
        """
        List agents owned by ``owner_id``.

        Args:
            owner_id: The owner to filter by.
            include_public: Also return other owners' public agents.
        """
        ...

    async def update(self, agent: Agent) -> None: ...

    async def delete(self, agent_id: str) -> bool: ...


class ExecutionLogRepository(Protocol):
    """Persist and query execution runs and their step audit trail."""

    async def create(self, run: ExecutionRun) -> None:
        """
        Create a new run record (steps, if any, are ignored).

        Args:
            run: The initial run state to persist.
        """
        ...

    async def mark_running(self, run_id: str, *, started_at: datetime) -> None: ...

    async def append_step(self, step: Step) -> None:
        """
        Append one step to its run's trail.

        Raises:
            ValueError: If the run is unknown or already terminal.
        """
        ...

    async def finish(
        self,
        run_id: str,
        *,
        status: RunStatus,
        completed_at: datetime,
        failure_reason: Optional[FailureReason] = None,
        error: Optional[StepError] = None,
    ) -> None: ...

    async def get(self, run_id: str) -> Optional[ExecutionRun]:
        """
        Retrieve a run with all its steps in append order.

        Returns:
            The ExecutionRun if found, else None.
        """
        ...

    async def list_runs(self, agent_id: str, *, user_id: Optional[str] = None, limit: int = 50) -> List[ExecutionRun]: ...

    async def list_steps(
        self,
        agent_id: str,
        *,
        user_id: Optional[str] = None,
        cursor: Optional[str] = None,
        limit: int = 50,
    ) -> StepPage:
        """
        Page through the steps of all runs of an agent in append order.

        Args:
            agent_id: Agent whose runs are queried.
            user_id: Restrict to runs triggered by this user.
            cursor: Opaque cursor returned by a previous page.
            limit: Max number of steps to return.
        """
        ...

    async def run_stats(
        self,
        agent_id: str,
        *,
        user_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> RunStats:
        """
        Aggregate the runs of an agent.

        Args:
            agent_id: Agent whose runs are aggregated.
            user_id: Restrict to runs triggered by this user.
            since: Only count runs created at or after this instant.

        Returns:
            Counts per status and failure reason, runs per day and the mean
            wall-clock duration of finished runs.
        """
        ...


class WebhookRepository(Protocol):
    """CRUD over webhook subscriptions."""

    async def create(self, webhook: WebhookSubscription) -> None: ...

    async def get(self, webhook_id: str) -> Optional[WebhookSubscription]: ...

    async def list(self, owner_id: str) -> List[WebhookSubscription]: ...

    async def list_matching(self, event_type: str, *, owner_id: Optional[str] = None) -> List[WebhookSubscription]:
        """
        Return active subscriptions that listen to ``event_type``.

        Args:
            event_type: The event type value, e.g. ``agent.completed``.
            owner_id: Restrict to this owner's subscriptions when given.
        """
        ...

    async def update(self, webhook: WebhookSubscription) -> None: ...

    async def delete(self, webhook_id: str) -> bool: ...


class DeliveryAttemptRepository(Protocol):
    """Append-only record of webhook delivery attempts."""

    async def append(self, attempt: DeliveryAttempt) -> None: ...

    async def list_for_webhook(self, webhook_id: str, *, limit: int = 100) -> List[DeliveryAttempt]:
        """Return attempts for a subscription, newest first."""
        ...

    async def list_for_event(self, event_id: str) -> List[DeliveryAttempt]:
        """Return attempts for an event in the order they were made."""
        ...
