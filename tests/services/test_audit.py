import pytest
from sqlmodel import Session

from app.models import ApplicationStatus, Program, UserRole
from app.services import workflow
from app.services.audit import get_history, list_audit_logs
from app.services.errors import NotFound, PermissionDenied
from tests.utils.application import create_application
from tests.utils.user import create_random_actor


def test_history_empty_for_new_record(db: Session, program: Program) -> None:
    agent = create_random_actor(db, role=UserRole.AGENT)
    record = create_application(db, actor=agent, program=program)
    assert get_history(db, record.id) == []


def test_history_unknown_record(db: Session) -> None:
    with pytest.raises(NotFound):
        get_history(db, 987_654)


def test_creation_is_audited(db: Session, program: Program) -> None:
    agent = create_random_actor(db, role=UserRole.AGENT)
    admin = create_random_actor(db, role=UserRole.ADMIN)
    record = create_application(db, actor=agent, program=program)

    logs, count = list_audit_logs(
        db, actor=admin, action="application_created", resource_id=str(record.id)
    )
    assert count == 1
    assert logs[0].actor_user_id == agent.user_id
    assert logs[0].actor_role == "agent"
    assert logs[0].event_metadata["program_id"] == program.id


def test_filter_by_actor(db: Session, program: Program) -> None:
    agent = create_random_actor(db, role=UserRole.AGENT)
    admin = create_random_actor(db, role=UserRole.ADMIN)
    record = create_application(db, actor=agent, program=program)
    workflow.request_transition(
        db,
        record_id=record.id,
        to_status=ApplicationStatus.SUBMITTED,
        actor=agent,
        expected_version=1,
    )

    logs, count = list_audit_logs(db, actor=admin, actor_user_id=agent.user_id)
    assert count == len(logs) >= 1
    assert all(log.actor_user_id == agent.user_id for log in logs)


@pytest.mark.parametrize("role", [UserRole.AGENT, UserRole.SUB_ADMIN])
def test_audit_log_requires_admin(db: Session, role: UserRole) -> None:
    actor = create_random_actor(db, role=role)
    with pytest.raises(PermissionDenied):
        list_audit_logs(db, actor=actor)
