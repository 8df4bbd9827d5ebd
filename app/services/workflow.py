"""Transition authority for application records.

The workflow graph is a fixed table (``ALLOWED_TRANSITIONS``) and every
status change goes through ``request_transition``, which validates the edge,
checks the actor's role against ``ROLE_EDGES`` and then applies the change
with a compare-and-set on the record's version. The status update and the
history row are written in the same database transaction.
"""

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, func, select

from app.models import (
    ApplicationRecord,
    ApplicationStatus,
    StatusTransition,
    UserRole,
)
from app.services.errors import (
    ConcurrentModification,
    InvalidTransition,
    PermissionDenied,
)
from app.services.permissions import (
    ALLOWED_TRANSITIONS,
    OWNER_SCOPED_ROLES,
    TERMINAL_STATUSES,
    Actor,
    Capability,
    Edge,
    can_traverse,
    ensure_record_access,
    has_capability,
    is_owner,
)
from app.services.records import compare_and_set, conflict_error, get_record

logger = logging.getLogger(__name__)


def validate_edge(
    current_status: ApplicationStatus, to_status: ApplicationStatus
) -> Edge:
    if current_status in TERMINAL_STATUSES:
        raise InvalidTransition(
            f"Application is '{current_status.value}', a terminal status; "
            f"it cannot move to '{to_status.value}'"
        )
    edge = (current_status, to_status)
    if edge not in ALLOWED_TRANSITIONS:
        allowed = sorted(target.value for source, target in ALLOWED_TRANSITIONS if source == current_status)
        raise InvalidTransition(
            f"Transition '{current_status.value}' -> '{to_status.value}' is not allowed; "
            f"from '{current_status.value}' the application can move to: {', '.join(allowed)}"
        )
    return edge


def ensure_edge_permission(actor: Actor, record: ApplicationRecord, edge: Edge) -> None:
    if not can_traverse(actor.role, edge):
        raise PermissionDenied(
            f"Role '{actor.role.value}' may not perform transition "
            f"'{edge[0].value}' -> '{edge[1].value}'"
        )
    ensure_record_access(actor, record, Capability.TRANSITION_APPLICATIONS)


def allowed_targets(actor: Actor, record: ApplicationRecord) -> list[ApplicationStatus]:
    """Statuses the actor could move the record to right now."""
    if record.archived or not has_capability(actor.role, Capability.TRANSITION_APPLICATIONS):
        return []
    if actor.role in OWNER_SCOPED_ROLES and not is_owner(actor, record):
        return []
    current_status = ApplicationStatus(record.status)
    return [
        target
        for target in ApplicationStatus
        if (current_status, target) in ALLOWED_TRANSITIONS
        and can_traverse(actor.role, (current_status, target))
    ]


def request_transition(
    session: Session,
    *,
    record_id: int,
    to_status: ApplicationStatus,
    actor: Actor,
    expected_version: int,
    notes: str | None = None,
) -> ApplicationRecord:
    record = get_record(session, record_id)
    current_status = ApplicationStatus(record.status)

    if record.archived:
        raise InvalidTransition(
            f"Application {record_id} is archived; restore it before moving "
            f"'{current_status.value}' -> '{to_status.value}'"
        )
    edge = validate_edge(current_status, to_status)
    ensure_edge_permission(actor, record, edge)
    if record.version != expected_version:
        raise ConcurrentModification(
            record_id=record_id,
            expected_version=expected_version,
            current_version=record.version,
        )

    values: dict[str, Any] = {"status": to_status.value}
    # Record notes are reviewer-authored; agent notes only live on the history row.
    if notes is not None and actor.role != UserRole.AGENT:
        values["notes"] = notes

    try:
        applied = compare_and_set(
            session,
            record_id=record_id,
            expected_version=expected_version,
            values=values,
            expected_status=current_status,
        )
        if not applied:
            session.rollback()
            logger.info(
                "Lost version race on application %s (expected version %s)",
                record_id,
                expected_version,
            )
            raise conflict_error(
                session, record_id=record_id, expected_version=expected_version
            )

        last_sequence = session.exec(
            select(func.max(StatusTransition.sequence)).where(
                StatusTransition.application_id == record_id
            )
        ).one()
        session.add(
            StatusTransition(
                application_id=record_id,
                sequence=(last_sequence or 0) + 1,
                from_status=current_status.value,
                to_status=to_status.value,
                actor_user_id=actor.user_id,
                actor_role=actor.role.value,
                notes=notes,
            )
        )
        session.commit()
    except IntegrityError:
        session.rollback()
        raise conflict_error(
            session, record_id=record_id, expected_version=expected_version
        )

    session.refresh(record)
    logger.info(
        "Application %s moved %s -> %s by %s (%s), version %s",
        record_id,
        current_status.value,
        to_status.value,
        actor.user_id,
        actor.role.value,
        record.version,
    )
    return record
