import logging
from collections.abc import Sequence
from typing import Any

from sqlalchemy import or_, update
from sqlmodel import Session, col, func, select

from app.models import (
    ApplicationCreate,
    ApplicationRecord,
    ApplicationStatus,
    Program,
    User,
    UserRole,
    get_datetime_utc,
)
from app.services.audit import record_audit_event
from app.services.errors import ConcurrentModification, NotFound, WorkflowError
from app.services.permissions import (
    OWNER_SCOPED_ROLES,
    Actor,
    Capability,
    require_capability,
)

logger = logging.getLogger(__name__)


def get_record(session: Session, record_id: int) -> ApplicationRecord:
    record = session.get(ApplicationRecord, record_id)
    if not record:
        raise NotFound(f"Application {record_id} not found")
    return record


def create_application(
    session: Session, *, application_in: ApplicationCreate, actor: Actor
) -> ApplicationRecord:
    require_capability(actor, Capability.CREATE_APPLICATIONS)

    if actor.role in OWNER_SCOPED_ROLES:
        agent_id = actor.user_id
    else:
        agent_id = application_in.agent_id
        if agent_id is not None:
            agent = session.get(User, agent_id)
            if not agent or agent.role != UserRole.AGENT.value:
                raise NotFound(f"Agent {agent_id} not found")

    if not session.get(Program, application_in.program_id):
        raise NotFound(f"Program {application_in.program_id} not found")

    record = ApplicationRecord.model_validate(
        application_in,
        update={"agent_id": agent_id, "status": ApplicationStatus.DRAFT.value},
    )
    session.add(record)
    session.flush()
    record_audit_event(
        session=session,
        action="application_created",
        resource_type="application",
        resource_id=record.id,
        actor=actor,
        details="Application created in draft",
        metadata={"program_id": record.program_id, "agent_id": str(agent_id) if agent_id else None},
    )
    session.commit()
    session.refresh(record)
    logger.info("Application %s created by %s (%s)", record.id, actor.user_id, actor.role.value)
    return record


def list_applications(
    session: Session,
    *,
    actor: Actor,
    status: ApplicationStatus | None = None,
    degree_level: str | None = None,
    search: str | None = None,
    archived: bool | None = False,
    skip: int = 0,
    limit: int = 100,
) -> tuple[Sequence[ApplicationRecord], int]:
    require_capability(actor, Capability.READ_APPLICATIONS)

    conditions = []
    if actor.role in OWNER_SCOPED_ROLES:
        conditions.append(ApplicationRecord.agent_id == actor.user_id)
    if status is not None:
        conditions.append(ApplicationRecord.status == status.value)
    if archived is not None:
        conditions.append(ApplicationRecord.archived == archived)
    if degree_level:
        conditions.append(col(Program.degree_level).ilike(degree_level))
    if search:
        term = f"%{search.strip().lower()}%"
        conditions.append(
            or_(
                func.lower(ApplicationRecord.student_first_name).like(term),
                func.lower(ApplicationRecord.student_last_name).like(term),
                func.lower(ApplicationRecord.student_email).like(term),
            )
        )

    count_statement = (
        select(func.count())
        .select_from(ApplicationRecord)
        .join(Program, col(Program.id) == col(ApplicationRecord.program_id))
        .where(*conditions)
    )
    count = session.exec(count_statement).one()
    statement = (
        select(ApplicationRecord)
        .join(Program, col(Program.id) == col(ApplicationRecord.program_id))
        .where(*conditions)
        .order_by(col(ApplicationRecord.updated_at).desc(), col(ApplicationRecord.id).desc())
        .offset(skip)
        .limit(limit)
    )
    return session.exec(statement).all(), count


def compare_and_set(
    session: Session,
    *,
    record_id: int,
    expected_version: int,
    values: dict[str, Any],
    expected_status: ApplicationStatus | None = None,
) -> bool:
    """Apply ``values`` only if the row still carries ``expected_version``.

    Bumps the version and ``updated_at``. Does not commit, so callers can
    stage dependent rows in the same transaction. Returns False when another
    writer got there first.
    """
    conditions = [
        ApplicationRecord.id == record_id,
        ApplicationRecord.version == expected_version,
    ]
    if expected_status is not None:
        conditions.append(ApplicationRecord.status == expected_status.value)
    statement = (
        update(ApplicationRecord)
        .where(*conditions)
        .values(
            **values,
            version=expected_version + 1,
            updated_at=get_datetime_utc(),
        )
    )
    result = session.exec(statement)  # type: ignore[call-overload]
    return bool(result.rowcount == 1)


def current_version(session: Session, record_id: int) -> int | None:
    return session.exec(
        select(ApplicationRecord.version).where(ApplicationRecord.id == record_id)
    ).first()


def conflict_error(
    session: Session, *, record_id: int, expected_version: int
) -> WorkflowError:
    """Error for a compare-and-set that matched no row.

    A record that vanished in the meantime was hard-deleted, so retrying
    cannot succeed.
    """
    latest_version = current_version(session, record_id)
    if latest_version is None:
        return NotFound(f"Application {record_id} not found")
    return ConcurrentModification(
        record_id=record_id,
        expected_version=expected_version,
        current_version=latest_version,
    )
