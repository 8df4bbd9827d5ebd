"""Lifecycle operations that change a record's existence or document set.

Archive and restore flip the ``archived`` flag without touching status or
history. Hard delete spans two stores: document files are removed first and
the database rows only once every file is confirmed gone, so a failure
leaves the record whole and the delete can simply be retried.
"""

import io
import logging

from sqlmodel import Session, col, delete, func, select

from app.models import (
    ApplicationDocument,
    ApplicationRecord,
    StatusTransition,
)
from app.services.audit import record_audit_event
from app.services.documents import DocumentStore
from app.services.errors import NoDocuments, PartialCascadeFailure
from app.services.permissions import (
    Actor,
    Capability,
    ensure_record_access,
    require_capability,
)
from app.services.records import compare_and_set, conflict_error, get_record

logger = logging.getLogger(__name__)


def _set_archived(
    session: Session, *, record_id: int, actor: Actor, archived: bool
) -> ApplicationRecord:
    record = get_record(session, record_id)
    ensure_record_access(actor, record, Capability.ARCHIVE_APPLICATIONS)
    if record.archived == archived:
        return record

    expected_version = record.version
    if not compare_and_set(
        session,
        record_id=record_id,
        expected_version=expected_version,
        values={"archived": archived},
    ):
        session.rollback()
        raise conflict_error(
            session, record_id=record_id, expected_version=expected_version
        )
    action = "application_archived" if archived else "application_restored"
    record_audit_event(
        session=session,
        action=action,
        resource_type="application",
        resource_id=record_id,
        actor=actor,
        details=f"Application {'archived' if archived else 'restored'} with status '{record.status}'",
        metadata={"status": record.status},
    )
    session.commit()
    session.refresh(record)
    logger.info("%s: application %s by %s (%s)", action, record_id, actor.user_id, actor.role.value)
    return record


def archive(session: Session, *, record_id: int, actor: Actor) -> ApplicationRecord:
    return _set_archived(session, record_id=record_id, actor=actor, archived=True)


def restore(session: Session, *, record_id: int, actor: Actor) -> ApplicationRecord:
    return _set_archived(session, record_id=record_id, actor=actor, archived=False)


def hard_delete(
    session: Session, store: DocumentStore, *, record_id: int, actor: Actor
) -> None:
    # Role check first: a sub_admin is refused whatever state the record is in.
    require_capability(actor, Capability.HARD_DELETE_APPLICATIONS)
    record = get_record(session, record_id)

    outcome = store.delete_documents(record_id)
    if not outcome.complete:
        logger.warning(
            "Hard delete of application %s left %d document(s) behind: %s",
            record_id,
            len(outcome.failed),
            ", ".join(str(document_id) for document_id in outcome.failed),
        )
        raise PartialCascadeFailure(
            record_id=record_id,
            failed_document_ids=[str(document_id) for document_id in outcome.failed],
        )

    # Lock the record row so no document reference can be added under it
    # while phase two runs.
    session.exec(
        select(ApplicationRecord.id)
        .where(ApplicationRecord.id == record_id)
        .with_for_update()
    ).first()
    late_documents = session.exec(
        select(ApplicationDocument.id).where(
            ApplicationDocument.application_id == record_id,
            col(ApplicationDocument.id).not_in(outcome.deleted),
        )
    ).all()
    if late_documents:
        session.rollback()
        logger.warning(
            "Hard delete of application %s found %d document(s) added after file removal: %s",
            record_id,
            len(late_documents),
            ", ".join(str(document_id) for document_id in late_documents),
        )
        raise PartialCascadeFailure(
            record_id=record_id,
            failed_document_ids=[str(document_id) for document_id in late_documents],
        )

    transition_count = session.exec(
        select(func.count())
        .select_from(StatusTransition)
        .where(StatusTransition.application_id == record_id)
    ).one()
    metadata = {
        "status": record.status,
        "archived": record.archived,
        "program_id": record.program_id,
        "agent_id": str(record.agent_id) if record.agent_id else None,
        "student_email": record.student_email,
        "transition_count": transition_count,
        "document_count": len(outcome.deleted),
    }

    session.exec(delete(StatusTransition).where(StatusTransition.application_id == record_id))  # type: ignore[call-overload]
    session.exec(delete(ApplicationDocument).where(col(ApplicationDocument.id).in_(outcome.deleted)))  # type: ignore[call-overload]
    session.exec(delete(ApplicationRecord).where(ApplicationRecord.id == record_id))  # type: ignore[call-overload]
    record_audit_event(
        session=session,
        action="application_hard_deleted",
        resource_type="application",
        resource_id=record_id,
        actor=actor,
        details="Application, status history and documents permanently deleted",
        metadata=metadata,
    )
    session.commit()
    logger.info(
        "Application %s hard-deleted by %s (%s): %d transition(s), %d document(s)",
        record_id,
        actor.user_id,
        actor.role.value,
        transition_count,
        len(outcome.deleted),
    )


def attach_document(
    session: Session,
    store: DocumentStore,
    *,
    record_id: int,
    actor: Actor,
    document_type: str,
    filename: str,
    mime_type: str,
    content: bytes,
) -> ApplicationDocument:
    record = get_record(session, record_id)
    ensure_record_access(actor, record, Capability.CREATE_APPLICATIONS)
    record_audit_event(
        session=session,
        action="document_uploaded",
        resource_type="application",
        resource_id=record_id,
        actor=actor,
        details="New document uploaded",
        metadata={
            "document_type": document_type,
            "original_filename": filename,
            "mime_type": mime_type,
        },
    )
    return store.save_document(
        record_id=record_id,
        document_type=document_type,
        filename=filename,
        mime_type=mime_type,
        content=content,
    )


def bulk_export_documents(
    session: Session, store: DocumentStore, *, record_id: int, actor: Actor
) -> tuple[io.BytesIO, str]:
    record = get_record(session, record_id)
    ensure_record_access(actor, record, Capability.EXPORT_DOCUMENTS)
    if not store.list_documents(record_id):
        raise NoDocuments(f"Application {record_id} has no documents to export")
    return store.export_zip(record_id), f"application-{record_id}-documents.zip"
