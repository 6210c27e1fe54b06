"""Repository interfaces and SQL implementations.

The repository layer is the persistence boundary of agentrelay.

- ``interfaces`` defines the async Protocols the engine, dispatcher and API
  depend on (agents, execution logs, webhooks, delivery attempts).
- ``models`` holds the SQLAlchemy ORM rows.
- ``sql`` implements the Protocols on async SQLAlchemy, committing at
  repository-method boundaries.

In-memory fakes implementing the same Protocols are used in unit tests.
"""

from .interfaces import (
    AgentRepository,
    DeliveryAttemptRepository,
    ExecutionLogRepository,
    RunStats,
    StepPage,
    WebhookRepository,
)

__all__ = [
    "AgentRepository",
    "DeliveryAttemptRepository",
    "ExecutionLogRepository",
    "RunStats",
    "StepPage",
    "WebhookRepository",
]
