import uuid
from typing import Any

from fastapi import APIRouter, File, Form, HTTPException, Response, UploadFile
from fastapi.responses import FileResponse, StreamingResponse
from sqlmodel import Session

from app.api.deps import CurrentActor, DocumentStoreDep, SessionDep
from app.models import (
    ApplicationCreate,
    ApplicationDetailPublic,
    ApplicationDocumentPublic,
    ApplicationDocumentsPublic,
    ApplicationHistoryPublic,
    ApplicationPublic,
    ApplicationRecord,
    ApplicationsPublic,
    ApplicationStatus,
    ProgramPublic,
    StatusTransitionPublic,
    StatusTransitionRequest,
)
from app.services import lifecycle, records, workflow
from app.services.audit import get_history
from app.services.documents import ALLOWED_CONTENT_TYPES
from app.services.errors import NotFound
from app.services.permissions import Actor, Capability, ensure_record_access

router = APIRouter(prefix="/applications", tags=["applications"])


def get_accessible_application(
    *, session: Session, actor: Actor, application_id: int
) -> ApplicationRecord:
    application = records.get_record(session, application_id)
    ensure_record_access(actor, application, Capability.READ_APPLICATIONS)
    return application


@router.post("/", response_model=ApplicationPublic)
def create_application(
    *, session: SessionDep, actor: CurrentActor, application_in: ApplicationCreate
) -> Any:
    return records.create_application(
        session, application_in=application_in, actor=actor
    )


@router.get("/", response_model=ApplicationsPublic)
def read_applications(
    session: SessionDep,
    actor: CurrentActor,
    status: ApplicationStatus | None = None,
    degree_level: str | None = None,
    search: str | None = None,
    archived: bool | None = False,
    skip: int = 0,
    limit: int = 100,
) -> Any:
    applications, count = records.list_applications(
        session,
        actor=actor,
        status=status,
        degree_level=degree_level,
        search=search,
        archived=archived,
        skip=skip,
        limit=limit,
    )
    return ApplicationsPublic(data=applications, count=count)


@router.get("/{application_id}", response_model=ApplicationDetailPublic)
def read_application(
    session: SessionDep,
    actor: CurrentActor,
    store: DocumentStoreDep,
    application_id: int,
) -> Any:
    application = get_accessible_application(
        session=session, actor=actor, application_id=application_id
    )
    history = get_history(session, application_id)
    documents = store.list_documents(application_id)
    return ApplicationDetailPublic.model_validate(
        application,
        update={
            "program": (
                ProgramPublic.model_validate(application.program)
                if application.program
                else None
            ),
            "history": [StatusTransitionPublic.model_validate(row) for row in history],
            "documents": [
                ApplicationDocumentPublic.model_validate(document)
                for document in documents
            ],
            "available_transitions": workflow.allowed_targets(actor, application),
        },
    )


@router.patch("/{application_id}/status", response_model=ApplicationPublic)
def update_application_status(
    *,
    session: SessionDep,
    actor: CurrentActor,
    application_id: int,
    transition_in: StatusTransitionRequest,
) -> Any:
    return workflow.request_transition(
        session,
        record_id=application_id,
        to_status=transition_in.to_status,
        actor=actor,
        expected_version=transition_in.expected_version,
        notes=transition_in.notes,
    )


@router.patch("/{application_id}/archive", response_model=ApplicationPublic)
def archive_application(
    session: SessionDep, actor: CurrentActor, application_id: int
) -> Any:
    return lifecycle.archive(session, record_id=application_id, actor=actor)


@router.patch("/{application_id}/restore", response_model=ApplicationPublic)
def restore_application(
    session: SessionDep, actor: CurrentActor, application_id: int
) -> Any:
    return lifecycle.restore(session, record_id=application_id, actor=actor)


@router.delete("/{application_id}", status_code=204)
def delete_application(
    session: SessionDep,
    actor: CurrentActor,
    store: DocumentStoreDep,
    application_id: int,
) -> Response:
    lifecycle.hard_delete(session, store, record_id=application_id, actor=actor)
    return Response(status_code=204)


@router.get("/{application_id}/history", response_model=ApplicationHistoryPublic)
def read_application_history(
    session: SessionDep, actor: CurrentActor, application_id: int
) -> Any:
    get_accessible_application(
        session=session, actor=actor, application_id=application_id
    )
    history = get_history(session, application_id)
    return ApplicationHistoryPublic(
        application_id=application_id,
        data=[StatusTransitionPublic.model_validate(row) for row in history],
        count=len(history),
    )


@router.post("/{application_id}/documents", response_model=ApplicationDocumentPublic)
async def upload_application_document(
    *,
    session: SessionDep,
    actor: CurrentActor,
    store: DocumentStoreDep,
    application_id: int,
    file: UploadFile = File(...),
    document_type: str = Form(...),
) -> Any:
    if file.content_type not in ALLOWED_CONTENT_TYPES:
        raise HTTPException(
            status_code=400,
            detail="Unsupported file type. Allowed: PDF, JPEG, PNG, WEBP",
        )

    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    return lifecycle.attach_document(
        session,
        store,
        record_id=application_id,
        actor=actor,
        document_type=document_type,
        filename=file.filename or "uploaded-document",
        mime_type=file.content_type,
        content=content,
    )


@router.get("/{application_id}/documents", response_model=ApplicationDocumentsPublic)
def read_application_documents(
    session: SessionDep,
    actor: CurrentActor,
    store: DocumentStoreDep,
    application_id: int,
) -> Any:
    get_accessible_application(
        session=session, actor=actor, application_id=application_id
    )
    documents = store.list_documents(application_id)
    return ApplicationDocumentsPublic(data=documents, count=len(documents))


# Declared before the single-document route so "bulk" is not parsed as an id.
@router.get("/{application_id}/documents/bulk")
def export_application_documents(
    session: SessionDep,
    actor: CurrentActor,
    store: DocumentStoreDep,
    application_id: int,
) -> StreamingResponse:
    archive_stream, filename = lifecycle.bulk_export_documents(
        session, store, record_id=application_id, actor=actor
    )
    return StreamingResponse(
        archive_stream,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{application_id}/documents/{document_id}")
def download_application_document(
    session: SessionDep,
    actor: CurrentActor,
    store: DocumentStoreDep,
    application_id: int,
    document_id: uuid.UUID,
) -> FileResponse:
    get_accessible_application(
        session=session, actor=actor, application_id=application_id
    )
    document, path = store.open_document(document_id)
    if document.application_id != application_id:
        raise NotFound(f"Document {document_id} not found")
    return FileResponse(
        path, media_type=document.mime_type, filename=document.original_filename
    )
