import uuid
from typing import Any

from fastapi import APIRouter

from app.api.deps import CurrentActor, SessionDep
from app.models import AuditLogPublic, AuditLogsPublic
from app.services.audit import list_audit_logs

router = APIRouter(prefix="/audit-logs", tags=["audit-logs"])


@router.get("/", response_model=AuditLogsPublic)
def read_audit_logs(
    session: SessionDep,
    actor: CurrentActor,
    action: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    actor_user_id: uuid.UUID | None = None,
    skip: int = 0,
    limit: int = 100,
) -> Any:
    logs, count = list_audit_logs(
        session,
        actor=actor,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        actor_user_id=actor_user_id,
        skip=skip,
        limit=limit,
    )
    return AuditLogsPublic(
        data=[AuditLogPublic.model_validate(log) for log in logs], count=count
    )
