from __future__ import annotations

"""SQLAlchemy async repository implementations.

This module provides the SQL persistence implementation for the repository
interfaces defined in ``agentrelay.repos.interfaces``. Postgres (asyncpg) is
the production target; SQLite (aiosqlite) is used for tests and local
development.

Usage
-----

- Create an async engine with ``create_engine``.
- Create tables with ``create_all`` (tests/dev; production uses the alembic
  migrations).
- Create a session factory with ``create_sessionmaker``.
- Build repository instances with ``build_sql_repos``.

Transaction model
-----------------

Each repository method opens an ``AsyncSession``, performs its operation, and
commits, so every appended step or delivery attempt is durable when the method
returns.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import TypeAdapter
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..agent_core.schemas.domain import (
    Agent,
    ExecutionRun,
    FailureReason,
    ModelParameters,
    RunStatus,
    Step,
    StepError,
)
from ..core.errors import ValidationError
from ..webhooks.models import DeliveryAttempt, DeliveryOutcome, WebhookSubscription
from .interfaces import (
    AgentRepository,
    DeliveryAttemptRepository,
    ExecutionLogRepository,
    RunStats,
    StepPage,
    WebhookRepository,
)
from .models import AgentRow, Base, DeliveryAttemptRow, RunRow, StepRow, WebhookRow

_step_adapter: TypeAdapter[Any] = TypeAdapter(Step)

_TERMINAL = {RunStatus.succeeded.value, RunStatus.failed.value}


def create_engine(db_url: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    The helper normalizes Postgres URLs to ensure the async driver is used.
    For example, it rewrites ``postgresql://`` and other variants to
    ``postgresql+asyncpg://``.
    """
    url = re.sub(r"^postgres(?:ql)?(?:\+[a-z0-9_]+)?://", "postgresql+asyncpg://", db_url, count=1)
    return create_async_engine(url, pool_pre_ping=True)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create all tables for the current ORM metadata.

    This is mainly intended for tests and local development.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def _aware(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo; every stored timestamp is UTC.
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _agent_from_row(row: AgentRow) -> Agent:
    return Agent(
        id=row.id,
        owner_id=row.owner_id,
        name=row.name,
        description=row.description or "",
        system_prompt=row.system_prompt or "",
        tool_ids=list(row.tool_ids or []),
        knowledge_scope=row.knowledge_scope,
        model_parameters=ModelParameters.model_validate(row.model_parameters or {}),
        is_public=bool(row.is_public),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _run_from_row(row: RunRow, steps: List[Step]) -> ExecutionRun:
    return ExecutionRun(
        id=row.id,
        agent_id=row.agent_id,
        user_id=row.user_id,
        input=row.input,
        steps=steps,
        status=RunStatus(row.status),
        failure_reason=FailureReason(row.failure_reason) if row.failure_reason else None,
        error=StepError.model_validate(row.error) if row.error else None,
        created_at=_aware(row.created_at),
        started_at=_aware(row.started_at),
        completed_at=_aware(row.completed_at),
    )


def _webhook_from_row(row: WebhookRow) -> WebhookSubscription:
    return WebhookSubscription(
        id=row.id,
        owner_id=row.owner_id,
        name=row.name,
        description=row.description,
        target_url=row.target_url,
        events=list(row.events or []),
        secret=row.secret,
        is_active=bool(row.is_active),
        headers=dict(row.headers or {}),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _attempt_from_row(row: DeliveryAttemptRow) -> DeliveryAttempt:
    return DeliveryAttempt(
        id=row.id,
        webhook_id=row.webhook_id,
        event_id=row.event_id,
        event_type=row.event_type,
        idempotency_key=row.idempotency_key,
        attempt_number=row.attempt_number,
        request_signature=row.request_signature,
        response_status=row.response_status,
        outcome=DeliveryOutcome(row.outcome),
        error=row.error,
        duration_ms=row.duration_ms,
        created_at=_aware(row.created_at),
    )


@dataclass(frozen=True)
class SqlAgentRepository(AgentRepository):
    """SQL implementation of ``AgentRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def create(self, agent: Agent) -> None:
        async with self.session_factory() as s:
            s.add(
                AgentRow(
                    id=agent.id,
                    owner_id=agent.owner_id,
                    name=agent.name,
                    description=agent.description,
                    system_prompt=agent.system_prompt,
                    tool_ids=list(agent.tool_ids),
                    knowledge_scope=agent.knowledge_scope,
                    model_parameters=agent.model_parameters.model_dump(exclude_none=True),
                    is_public=agent.is_public,
                    created_at=agent.created_at,
                    updated_at=agent.updated_at,
                )
            )
            await s.commit()

    async def get(self, agent_id: str) -> Optional[Agent]:
        async with self.session_factory() as s:
            row = await s.get(AgentRow, agent_id)
            return _agent_from_row(row) if row is not None else None

    async def list(self, owner_id: str, *, include_public: bool = False) -> List[Agent]:
        async with self.session_factory() as s:
            stmt = select(AgentRow)
            if include_public:
                stmt = stmt.where(or_(AgentRow.owner_id == owner_id, AgentRow.is_public.is_(True)))
            else:
                stmt = stmt.where(AgentRow.owner_id == owner_id)
            res = await s.execute(stmt.order_by(AgentRow.created_at))
            return [_agent_from_row(r) for r in res.scalars().all()]

    async def update(self, agent: Agent) -> None:
        """Overwrite mutable fields of an existing agent; unknown ids are a no-op."""
        async with self.session_factory() as s:
            row = await s.get(AgentRow, agent.id)
            if row is None:
                return
            row.name = agent.name
            row.description = agent.description
            row.system_prompt = agent.system_prompt
            row.tool_ids = list(agent.tool_ids)
            row.knowledge_scope = agent.knowledge_scope
            row.model_parameters = agent.model_parameters.model_dump(exclude_none=True)
            row.is_public = agent.is_public
            row.updated_at = _utc_now()
            await s.commit()

    async def delete(self, agent_id: str) -> bool:
        async with self.session_factory() as s:
            row = await s.get(AgentRow, agent_id)
            if row is None:
                return False
            await s.delete(row)
            await s.commit()
            return True


@dataclass(frozen=True)
class SqlExecutionLogRepository(ExecutionLogRepository):
    """SQL implementation of ``ExecutionLogRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def create(self, run: ExecutionRun) -> None:
        async with self.session_factory() as s:
            s.add(
                RunRow(
                    id=run.id,
                    agent_id=run.agent_id,
                    user_id=run.user_id,
                    input=run.input,
                    status=run.status.value,
                    failure_reason=run.failure_reason.value if run.failure_reason else None,
                    error=run.error.model_dump() if run.error else None,
                    created_at=run.created_at,
                    started_at=run.started_at,
                    completed_at=run.completed_at,
                )
            )
            await s.commit()

    async def mark_running(self, run_id: str, *, started_at: datetime) -> None:
        async with self.session_factory() as s:
            row = await s.get(RunRow, run_id)
            if row is None or row.status in _TERMINAL:
                return
            row.status = RunStatus.running.value
            row.started_at = started_at
            await s.commit()

    async def append_step(self, step: Step) -> None:
        async with self.session_factory() as s:
            run = await s.get(RunRow, step.run_id)
            if run is None:
                raise ValueError(f"run not found: {step.run_id}")
            if run.status in _TERMINAL:
                raise ValueError(f"run {step.run_id} is {run.status}; steps are immutable")
            s.add(
                StepRow(
                    id=step.id,
                    run_id=step.run_id,
                    agent_id=run.agent_id,
                    user_id=run.user_id,
                    step_index=step.index,
                    kind=step.kind,
                    data=step.model_dump(mode="json"),
                    created_at=step.created_at,
                )
            )
            await s.commit()

    async def finish(
        self,
        run_id: str,
        *,
        status: RunStatus,
        completed_at: datetime,
        failure_reason: Optional[FailureReason] = None,
        error: Optional[StepError] = None,
    ) -> None:
        async with self.session_factory() as s:
            row = await s.get(RunRow, run_id)
            if row is None or row.status in _TERMINAL:
                return
            row.status = status.value
            row.completed_at = completed_at
            row.failure_reason = failure_reason.value if failure_reason else None
            row.error = error.model_dump() if error else None
            await s.commit()

    async def _steps_for(self, s: AsyncSession, run_id: str) -> List[Step]:
        res = await s.execute(select(StepRow).where(StepRow.run_id == run_id).order_by(StepRow.seq))
        return [_step_adapter.validate_python(r.data) for r in res.scalars().all()]

    async def get(self, run_id: str) -> Optional[ExecutionRun]:
        async with self.session_factory() as s:
            row = await s.get(RunRow, run_id)
            if row is None:
                return None
            return _run_from_row(row, await self._steps_for(s, run_id))

    async def list_runs(self, agent_id: str, *, user_id: Optional[str] = None, limit: int = 50) -> List[ExecutionRun]:
        async with self.session_factory() as s:
            stmt = select(RunRow).where(RunRow.agent_id == agent_id)
            if user_id is not None:
                stmt = stmt.where(RunRow.user_id == user_id)
            res = await s.execute(stmt.order_by(RunRow.created_at.desc()).limit(limit))
            return [_run_from_row(r, await self._steps_for(s, r.id)) for r in res.scalars().all()]

    async def list_steps(
        self,
        agent_id: str,
        *,
        user_id: Optional[str] = None,
        cursor: Optional[str] = None,
        limit: int = 50,
    ) -> StepPage:
        after = 0
        if cursor:
            try:
                after = int(cursor)
            except ValueError as e:
                raise ValidationError(f"invalid cursor: '{cursor}'") from e

        async with self.session_factory() as s:
            stmt = select(StepRow).where(StepRow.agent_id == agent_id, StepRow.seq > after)
            if user_id is not None:
                stmt = stmt.where(StepRow.user_id == user_id)
            res = await s.execute(stmt.order_by(StepRow.seq).limit(limit + 1))
            rows = list(res.scalars().all())

        page = rows[:limit]
        next_cursor = str(page[-1].seq) if len(rows) > limit and page else None
        return StepPage(steps=[_step_adapter.validate_python(r.data) for r in page], next_cursor=next_cursor)

    async def run_stats(
        self,
        agent_id: str,
        *,
        user_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> RunStats:
        filters = [RunRow.agent_id == agent_id]
        if user_id is not None:
            filters.append(RunRow.user_id == user_id)
        if since is not None:
            filters.append(RunRow.created_at >= since)

        async with self.session_factory() as s:
            grouped = await s.execute(
                select(RunRow.status, RunRow.failure_reason, func.count())
                .where(*filters)
                .group_by(RunRow.status, RunRow.failure_reason)
            )
            counts = grouped.all()
            timings = await s.execute(select(RunRow.created_at, RunRow.started_at, RunRow.completed_at).where(*filters))
            times = timings.all()

        status_counts: Dict[str, int] = {}
        failure_reasons: Dict[str, int] = {}
        for status, reason, n in counts:
            status_counts[status] = status_counts.get(status, 0) + n
            if reason:
                failure_reasons[reason] = failure_reasons.get(reason, 0) + n

        runs_by_day: Dict[str, int] = {}
        durations: List[float] = []
        for created_at, started_at, completed_at in times:
            day = _aware(created_at).date().isoformat()
            runs_by_day[day] = runs_by_day.get(day, 0) + 1
            if completed_at is not None:
                durations.append((_aware(completed_at) - _aware(started_at or created_at)).total_seconds())

        return RunStats(
            total=len(times),
            status_counts=status_counts,
            failure_reasons=failure_reasons,
            runs_by_day=dict(sorted(runs_by_day.items())),
            average_duration_seconds=sum(durations) / len(durations) if durations else None,
        )


@dataclass(frozen=True)
class SqlWebhookRepository(WebhookRepository):
    """SQL implementation of ``WebhookRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def create(self, webhook: WebhookSubscription) -> None:
        async with self.session_factory() as s:
            s.add(
                WebhookRow(
                    id=webhook.id,
                    owner_id=webhook.owner_id,
                    name=webhook.name,
                    description=webhook.description,
                    target_url=webhook.target_url,
                    events=list(webhook.events),
                    secret=webhook.secret,
                    is_active=webhook.is_active,
                    headers=dict(webhook.headers),
                    created_at=webhook.created_at,
                    updated_at=webhook.updated_at,
                )
            )
            await s.commit()

    async def get(self, webhook_id: str) -> Optional[WebhookSubscription]:
        async with self.session_factory() as s:
            row = await s.get(WebhookRow, webhook_id)
            return _webhook_from_row(row) if row is not None else None

    async def list(self, owner_id: str) -> List[WebhookSubscription]:
        async with self.session_factory() as s:
            res = await s.execute(
                select(WebhookRow).where(WebhookRow.owner_id == owner_id).order_by(WebhookRow.created_at.desc())
            )
            return [_webhook_from_row(r) for r in res.scalars().all()]

    async def list_matching(self, event_type: str, *, owner_id: Optional[str] = None) -> List[WebhookSubscription]:
        async with self.session_factory() as s:
            stmt = select(WebhookRow).where(WebhookRow.is_active.is_(True))
            if owner_id is not None:
                stmt = stmt.where(WebhookRow.owner_id == owner_id)
            res = await s.execute(stmt)
            rows = res.scalars().all()
        # JSON containment differs per dialect; the event list is tiny
        return [_webhook_from_row(r) for r in rows if event_type in (r.events or [])]

    async def update(self, webhook: WebhookSubscription) -> None:
        async with self.session_factory() as s:
            row = await s.get(WebhookRow, webhook.id)
            if row is None:
                return
            row.name = webhook.name
            row.description = webhook.description
            row.target_url = webhook.target_url
            row.events = list(webhook.events)
            row.secret = webhook.secret
            row.is_active = webhook.is_active
            row.headers = dict(webhook.headers)
            row.updated_at = webhook.updated_at
            await s.commit()

    async def delete(self, webhook_id: str) -> bool:
        async with self.session_factory() as s:
            row = await s.get(WebhookRow, webhook_id)
            if row is None:
                return False
            await s.delete(row)
            await s.commit()
            return True


@dataclass(frozen=True)
class SqlDeliveryAttemptRepository(DeliveryAttemptRepository):
    """SQL implementation of ``DeliveryAttemptRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def append(self, attempt: DeliveryAttempt) -> None:
        async with self.session_factory() as s:
            s.add(
                DeliveryAttemptRow(
                    id=attempt.id,
                    webhook_id=attempt.webhook_id,
                    event_id=attempt.event_id,
                    event_type=attempt.event_type,
                    idempotency_key=attempt.idempotency_key,
                    attempt_number=attempt.attempt_number,
                    request_signature=attempt.request_signature,
                    response_status=attempt.response_status,
                    outcome=attempt.outcome.value,
                    error=attempt.error,
                    duration_ms=attempt.duration_ms,
                    created_at=attempt.created_at,
                )
            )
            await s.commit()

    async def list_for_webhook(self, webhook_id: str, *, limit: int = 100) -> List[DeliveryAttempt]:
        async with self.session_factory() as s:
            res = await s.execute(
                select(DeliveryAttemptRow)
                .where(DeliveryAttemptRow.webhook_id == webhook_id)
                .order_by(DeliveryAttemptRow.created_at.desc(), DeliveryAttemptRow.attempt_number.desc())
                .limit(limit)
            )
            return [_attempt_from_row(r) for r in res.scalars().all()]

    async def list_for_event(self, event_id: str) -> List[DeliveryAttempt]:
        async with self.session_factory() as s:
            res = await s.execute(
                select(DeliveryAttemptRow)
                .where(DeliveryAttemptRow.event_id == event_id)
                .order_by(DeliveryAttemptRow.webhook_id, DeliveryAttemptRow.attempt_number)
            )
            return [_attempt_from_row(r) for r in res.scalars().all()]


@dataclass(frozen=True)
class SqlRepoBundle:
    """Convenience bundle of all SQL repositories for dependency injection."""

    agents: SqlAgentRepository
    logs: SqlExecutionLogRepository
    webhooks: SqlWebhookRepository
    deliveries: SqlDeliveryAttemptRepository


def build_sql_repos(*, session_factory: async_sessionmaker[AsyncSession]) -> SqlRepoBundle:
    """Build a ``SqlRepoBundle`` from a session factory."""
    return SqlRepoBundle(
        agents=SqlAgentRepository(session_factory=session_factory),
        logs=SqlExecutionLogRepository(session_factory=session_factory),
        webhooks=SqlWebhookRepository(session_factory=session_factory),
        deliveries=SqlDeliveryAttemptRepository(session_factory=session_factory),
    )
