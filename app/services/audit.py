import uuid
from collections.abc import Sequence
from typing import Any

from sqlmodel import Session, col, func, select

from app.models import ApplicationRecord, AuditLog, StatusTransition
from app.services.errors import NotFound
from app.services.permissions import Actor, Capability, require_capability


def record_audit_event(
    *,
    session: Session,
    action: str,
    resource_type: str,
    resource_id: int | uuid.UUID | str | None,
    actor: Actor | None,
    details: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> None:
    """Stage an audit log row; the caller's commit persists it."""
    audit_event = AuditLog(
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id),
        actor_user_id=actor.user_id if actor else None,
        actor_role=actor.role.value if actor else None,
        details=details,
        event_metadata=metadata or {},
    )
    session.add(audit_event)


def get_history(session: Session, record_id: int) -> Sequence[StatusTransition]:
    """Status transitions of an application, oldest first.

    Ordering uses the per-record sequence number assigned inside the
    transition's write, never a client supplied time.
    """
    if not session.get(ApplicationRecord, record_id):
        raise NotFound(f"Application {record_id} not found")
    statement = (
        select(StatusTransition)
        .where(StatusTransition.application_id == record_id)
        .order_by(col(StatusTransition.sequence).asc())
    )
    return session.exec(statement).all()


def list_audit_logs(
    session: Session,
    *,
    actor: Actor,
    action: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    actor_user_id: uuid.UUID | None = None,
    skip: int = 0,
    limit: int = 100,
) -> tuple[Sequence[AuditLog], int]:
    require_capability(actor, Capability.READ_AUDIT_LOGS)

    conditions = []
    if action:
        conditions.append(AuditLog.action == action)
    if resource_type:
        conditions.append(AuditLog.resource_type == resource_type)
    if resource_id:
        conditions.append(AuditLog.resource_id == resource_id)
    if actor_user_id:
        conditions.append(AuditLog.actor_user_id == actor_user_id)

    count = session.exec(
        select(func.count()).select_from(AuditLog).where(*conditions)
    ).one()
    statement = (
        select(AuditLog)
        .where(*conditions)
        .order_by(col(AuditLog.created_at).desc(), col(AuditLog.id).desc())
        .offset(skip)
        .limit(limit)
    )
    return session.exec(statement).all(), count
