import io
import zipfile
from pathlib import Path

import pytest
from sqlmodel import Session, select

from app.models import (
    ApplicationDocument,
    ApplicationRecord,
    ApplicationStatus,
    AuditLog,
    Program,
    StatusTransition,
    UserRole,
)
from app.services import lifecycle, workflow
from app.services.audit import get_history
from app.services.documents import DocumentDeletionResult, LocalDocumentStore
from app.services.errors import (
    NoDocuments,
    NotFound,
    PartialCascadeFailure,
    PermissionDenied,
)
from app.services.permissions import Actor
from app.services.records import get_record
from tests.utils.application import create_application
from tests.utils.user import create_random_actor


class FlakyDocumentStore(LocalDocumentStore):
    """Reports every file as undeletable until ``healthy`` is set."""

    healthy = False

    def delete_documents(self, record_id: int) -> DocumentDeletionResult:
        if self.healthy:
            return super().delete_documents(record_id)
        return DocumentDeletionResult(
            failed=[document.id for document in self.list_documents(record_id)]
        )


@pytest.fixture
def store(db: Session, tmp_path: Path) -> LocalDocumentStore:
    return LocalDocumentStore(session=db, root=tmp_path)


def _attach(
    db: Session, store: LocalDocumentStore, record_id: int, actor: Actor, name: str
) -> ApplicationDocument:
    return lifecycle.attach_document(
        db,
        store,
        record_id=record_id,
        actor=actor,
        document_type="passport",
        filename=name,
        mime_type="application/pdf",
        content=b"%PDF-1.4 " + name.encode(),
    )


def test_archive_and_restore_keep_status(db: Session, program: Program) -> None:
    agent = create_random_actor(db, role=UserRole.AGENT)
    record = create_application(db, actor=agent, program=program)
    workflow.request_transition(
        db,
        record_id=record.id,
        to_status=ApplicationStatus.SUBMITTED,
        actor=agent,
        expected_version=1,
    )

    archived = lifecycle.archive(db, record_id=record.id, actor=agent)
    assert archived.archived is True
    assert archived.status == ApplicationStatus.SUBMITTED.value
    assert archived.version == 3

    restored = lifecycle.restore(db, record_id=record.id, actor=agent)
    assert restored.archived is False
    assert restored.status == ApplicationStatus.SUBMITTED.value
    assert restored.version == 4
    assert len(restored.transitions) == 1


def test_archive_is_idempotent(db: Session, program: Program) -> None:
    agent = create_random_actor(db, role=UserRole.AGENT)
    record = create_application(db, actor=agent, program=program)
    lifecycle.archive(db, record_id=record.id, actor=agent)
    again = lifecycle.archive(db, record_id=record.id, actor=agent)
    assert again.archived is True
    assert again.version == 2


def test_sub_admin_cannot_archive(db: Session, program: Program) -> None:
    agent = create_random_actor(db, role=UserRole.AGENT)
    sub_admin = create_random_actor(db, role=UserRole.SUB_ADMIN)
    record = create_application(db, actor=agent, program=program)
    with pytest.raises(PermissionDenied):
        lifecycle.archive(db, record_id=record.id, actor=sub_admin)


def test_archive_writes_audit_event(db: Session, program: Program) -> None:
    agent = create_random_actor(db, role=UserRole.AGENT)
    record = create_application(db, actor=agent, program=program)
    lifecycle.archive(db, record_id=record.id, actor=agent)
    events = db.exec(
        select(AuditLog).where(
            AuditLog.resource_id == str(record.id),
            AuditLog.action == "application_archived",
        )
    ).all()
    assert len(events) == 1
    assert events[0].actor_user_id == agent.user_id


@pytest.mark.parametrize("archived", [False, True])
def test_sub_admin_never_hard_deletes(
    db: Session, program: Program, store: LocalDocumentStore, archived: bool
) -> None:
    agent = create_random_actor(db, role=UserRole.AGENT)
    sub_admin = create_random_actor(db, role=UserRole.SUB_ADMIN)
    record = create_application(db, actor=agent, program=program)
    if archived:
        lifecycle.archive(db, record_id=record.id, actor=agent)

    with pytest.raises(PermissionDenied):
        lifecycle.hard_delete(db, store, record_id=record.id, actor=sub_admin)
    assert get_record(db, record.id).id == record.id


def test_agent_cannot_hard_delete_own_record(
    db: Session, program: Program, store: LocalDocumentStore
) -> None:
    agent = create_random_actor(db, role=UserRole.AGENT)
    record = create_application(db, actor=agent, program=program)
    with pytest.raises(PermissionDenied):
        lifecycle.hard_delete(db, store, record_id=record.id, actor=agent)


def test_hard_delete_removes_everything(
    db: Session, program: Program, store: LocalDocumentStore, tmp_path: Path
) -> None:
    agent = create_random_actor(db, role=UserRole.AGENT)
    admin = create_random_actor(db, role=UserRole.ADMIN)
    record = create_application(db, actor=agent, program=program)
    record_id = record.id
    workflow.request_transition(
        db,
        record_id=record_id,
        to_status=ApplicationStatus.SUBMITTED,
        actor=agent,
        expected_version=1,
    )
    first = _attach(db, store, record_id, agent, "passport.pdf")
    second = _attach(db, store, record_id, agent, "transcript.pdf")
    stored_paths = [Path(first.storage_path), Path(second.storage_path)]
    assert all(path.exists() for path in stored_paths)

    lifecycle.hard_delete(db, store, record_id=record_id, actor=admin)

    assert db.get(ApplicationRecord, record_id) is None
    assert not db.exec(
        select(StatusTransition).where(StatusTransition.application_id == record_id)
    ).all()
    assert not db.exec(
        select(ApplicationDocument).where(
            ApplicationDocument.application_id == record_id
        )
    ).all()
    assert not any(path.exists() for path in stored_paths)
    assert not (tmp_path / str(record_id)).exists()

    event = db.exec(
        select(AuditLog).where(
            AuditLog.resource_id == str(record_id),
            AuditLog.action == "application_hard_deleted",
        )
    ).one()
    assert event.event_metadata["document_count"] == 2
    assert event.event_metadata["transition_count"] == 1

    with pytest.raises(NotFound):
        lifecycle.hard_delete(db, store, record_id=record_id, actor=admin)


def test_partial_failure_keeps_record_and_retry_completes(
    db: Session, program: Program, tmp_path: Path
) -> None:
    agent = create_random_actor(db, role=UserRole.AGENT)
    admin = create_random_actor(db, role=UserRole.SUPER_ADMIN)
    record = create_application(db, actor=agent, program=program)
    record_id = record.id
    store = FlakyDocumentStore(session=db, root=tmp_path)
    document = _attach(db, store, record_id, agent, "passport.pdf")

    with pytest.raises(PartialCascadeFailure) as exc_info:
        lifecycle.hard_delete(db, store, record_id=record_id, actor=admin)
    assert exc_info.value.retryable is True
    assert exc_info.value.failed_document_ids == [str(document.id)]
    assert get_record(db, record_id).id == record_id
    assert len(store.list_documents(record_id)) == 1

    store.healthy = True
    lifecycle.hard_delete(db, store, record_id=record_id, actor=admin)
    assert db.get(ApplicationRecord, record_id) is None


def test_missing_file_counts_as_deleted(
    db: Session, program: Program, store: LocalDocumentStore
) -> None:
    agent = create_random_actor(db, role=UserRole.AGENT)
    admin = create_random_actor(db, role=UserRole.ADMIN)
    record = create_application(db, actor=agent, program=program)
    record_id = record.id
    document = _attach(db, store, record_id, agent, "passport.pdf")
    Path(document.storage_path).unlink()

    lifecycle.hard_delete(db, store, record_id=record_id, actor=admin)
    assert db.get(ApplicationRecord, record_id) is None


def test_bulk_export_requires_documents(
    db: Session, program: Program, store: LocalDocumentStore
) -> None:
    agent = create_random_actor(db, role=UserRole.AGENT)
    record = create_application(db, actor=agent, program=program)
    with pytest.raises(NoDocuments):
        lifecycle.bulk_export_documents(db, store, record_id=record.id, actor=agent)


def test_bulk_export_zip_contents(
    db: Session, program: Program, store: LocalDocumentStore
) -> None:
    agent = create_random_actor(db, role=UserRole.AGENT)
    record = create_application(db, actor=agent, program=program)
    _attach(db, store, record.id, agent, "passport.pdf")
    _attach(db, store, record.id, agent, "transcript.pdf")

    stream, filename = lifecycle.bulk_export_documents(
        db, store, record_id=record.id, actor=agent
    )
    assert filename == f"application-{record.id}-documents.zip"
    with zipfile.ZipFile(io.BytesIO(stream.read())) as archive:
        names = archive.namelist()
        assert names == ["01_passport_passport.pdf", "02_passport_transcript.pdf"]
        assert archive.read(names[0]) == b"%PDF-1.4 passport.pdf"


def test_foreign_agent_cannot_attach(
    db: Session, program: Program, store: LocalDocumentStore
) -> None:
    owner = create_random_actor(db, role=UserRole.AGENT)
    other = create_random_actor(db, role=UserRole.AGENT)
    record = create_application(db, actor=owner, program=program)
    with pytest.raises(PermissionDenied):
        _attach(db, store, record.id, other, "passport.pdf")
    assert store.list_documents(record.id) == []


class LateUploadDocumentStore(LocalDocumentStore):
    """Stores one more document right after removing the existing files."""

    late_document: ApplicationDocument | None = None

    def delete_documents(self, record_id: int) -> DocumentDeletionResult:
        result = super().delete_documents(record_id)
        if self.late_document is None:
            self.late_document = self.save_document(
                record_id=record_id,
                document_type="transcript",
                filename="late.pdf",
                mime_type="application/pdf",
                content=b"%PDF-1.4 late",
            )
        return result


def test_document_added_during_delete_is_not_orphaned(
    db: Session, program: Program, tmp_path: Path
) -> None:
    agent = create_random_actor(db, role=UserRole.AGENT)
    admin = create_random_actor(db, role=UserRole.ADMIN)
    record = create_application(db, actor=agent, program=program)
    record_id = record.id
    store = LateUploadDocumentStore(session=db, root=tmp_path)
    _attach(db, store, record_id, agent, "passport.pdf")

    with pytest.raises(PartialCascadeFailure) as exc_info:
        lifecycle.hard_delete(db, store, record_id=record_id, actor=admin)

    late = store.late_document
    assert late is not None
    late_path = Path(late.storage_path)
    assert exc_info.value.failed_document_ids == [str(late.id)]
    assert get_record(db, record_id).id == record_id
    assert late_path.exists()
    assert late.id in {document.id for document in store.list_documents(record_id)}

    lifecycle.hard_delete(db, store, record_id=record_id, actor=admin)
    assert db.get(ApplicationRecord, record_id) is None
    assert not late_path.exists()
    assert not db.exec(
        select(ApplicationDocument).where(
            ApplicationDocument.application_id == record_id
        )
    ).all()


def test_mixed_partial_failure_keeps_rows_and_retry_completes(
    db: Session,
    program: Program,
    store: LocalDocumentStore,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    agent = create_random_actor(db, role=UserRole.AGENT)
    admin = create_random_actor(db, role=UserRole.ADMIN)
    record = create_application(db, actor=agent, program=program)
    record_id = record.id
    workflow.request_transition(
        db,
        record_id=record_id,
        to_status=ApplicationStatus.SUBMITTED,
        actor=agent,
        expected_version=1,
    )
    removable = _attach(db, store, record_id, agent, "passport.pdf")
    stuck = _attach(db, store, record_id, agent, "transcript.pdf")
    removable_path = Path(removable.storage_path)
    stuck_path = Path(stuck.storage_path)

    original_unlink = Path.unlink

    def unlink_except_stuck(self: Path, missing_ok: bool = False) -> None:
        if self == stuck_path:
            raise PermissionError(f"read-only: {self}")
        original_unlink(self, missing_ok=missing_ok)

    monkeypatch.setattr(Path, "unlink", unlink_except_stuck)
    with pytest.raises(PartialCascadeFailure) as exc_info:
        lifecycle.hard_delete(db, store, record_id=record_id, actor=admin)
    monkeypatch.undo()

    assert exc_info.value.failed_document_ids == [str(stuck.id)]
    assert not removable_path.exists()
    assert stuck_path.exists()
    assert get_record(db, record_id).id == record_id
    assert len(get_history(db, record_id)) == 1
    assert {document.id for document in store.list_documents(record_id)} == {
        removable.id,
        stuck.id,
    }

    lifecycle.hard_delete(db, store, record_id=record_id, actor=admin)
    assert db.get(ApplicationRecord, record_id) is None
    assert not stuck_path.exists()
    assert not db.exec(
        select(StatusTransition).where(StatusTransition.application_id == record_id)
    ).all()
