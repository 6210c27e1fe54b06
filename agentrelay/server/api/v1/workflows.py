"""
Workflow Events API Endpoints.

External workflow executors report a finished execution here; the report is
published as ``workflow.completed`` or ``workflow.failed`` and delivered to
the caller's webhook subscriptions.
"""

from fastapi import APIRouter

from agentrelay.core.logging_config import get_logger
from agentrelay.server.auth import CurrentUserDep
from agentrelay.server.schemas import WorkflowEventIn, WorkflowEventOut
from agentrelay.server.services.deps import PlatformDep

logger = get_logger(__name__)
router = APIRouter()


@router.post(
    "/{workflow_id}/events",
    response_model=WorkflowEventOut,
    status_code=202,
    summary="Report Workflow Outcome",
    description="Publish a workflow completion or failure event to webhook subscribers.",
)
async def report_workflow_event(
    workflow_id: str,
    event_in: WorkflowEventIn,
    platform: PlatformDep,
    user: CurrentUserDep,
):
    event = await platform.publish_workflow_event(
        workflow_id,
        user.id,
        status=event_in.status,
        data=event_in.data,
        execution_id=event_in.execution_id,
    )
    return WorkflowEventOut(event_id=event.id, event_type=event.type.value, idempotency_key=event.idempotency_key)
