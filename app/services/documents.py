import io
import logging
import uuid
import zipfile
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from sqlmodel import Session, col, select

from app.models import ApplicationDocument
from app.services.errors import NotFound

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = {
    "application/pdf",
    "image/jpeg",
    "image/png",
    "image/webp",
}


@dataclass
class DocumentDeletionResult:
    deleted: list[uuid.UUID] = field(default_factory=list)
    failed: list[uuid.UUID] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed


class DocumentStore:
    """Files attached to applications, addressed by record id.

    References to stored files live in ``application_document``; this store
    only manages the bytes behind them. Removing the reference rows is left
    to the caller deleting the owning record.
    """

    def save_document(
        self,
        *,
        record_id: int,
        document_type: str,
        filename: str,
        mime_type: str,
        content: bytes,
    ) -> ApplicationDocument:
        raise NotImplementedError

    def list_documents(self, record_id: int) -> Sequence[ApplicationDocument]:
        raise NotImplementedError

    def open_document(self, document_id: uuid.UUID) -> tuple[ApplicationDocument, Path]:
        raise NotImplementedError

    def delete_documents(self, record_id: int) -> DocumentDeletionResult:
        raise NotImplementedError

    def export_zip(self, record_id: int) -> io.BytesIO:
        raise NotImplementedError


class LocalDocumentStore(DocumentStore):
    def __init__(self, *, session: Session, root: Path) -> None:
        self._session = session
        self._root = Path(root)

    def _record_dir(self, record_id: int) -> Path:
        return self._root / str(record_id)

    def save_document(
        self,
        *,
        record_id: int,
        document_type: str,
        filename: str,
        mime_type: str,
        content: bytes,
    ) -> ApplicationDocument:
        safe_name = Path(filename or "uploaded-document").name
        storage_dir = self._record_dir(record_id)
        storage_dir.mkdir(parents=True, exist_ok=True)
        storage_path = storage_dir / f"{uuid.uuid4()}_{safe_name}"
        storage_path.write_bytes(content)

        document = ApplicationDocument(
            application_id=record_id,
            document_type=document_type,
            original_filename=safe_name,
            mime_type=mime_type,
            file_size_bytes=len(content),
            storage_path=str(storage_path),
        )
        self._session.add(document)
        try:
            self._session.commit()
        except Exception:
            self._session.rollback()
            storage_path.unlink(missing_ok=True)
            raise
        self._session.refresh(document)
        return document

    def list_documents(self, record_id: int) -> Sequence[ApplicationDocument]:
        statement = (
            select(ApplicationDocument)
            .where(ApplicationDocument.application_id == record_id)
            .order_by(col(ApplicationDocument.created_at).asc())
        )
        return self._session.exec(statement).all()

    def open_document(self, document_id: uuid.UUID) -> tuple[ApplicationDocument, Path]:
        document = self._session.get(ApplicationDocument, document_id)
        if not document:
            raise NotFound(f"Document {document_id} not found")
        path = Path(document.storage_path)
        if not path.exists():
            raise NotFound(f"Stored file for document {document_id} no longer exists")
        return document, path

    def delete_documents(self, record_id: int) -> DocumentDeletionResult:
        result = DocumentDeletionResult()
        for document in self.list_documents(record_id):
            try:
                # Already missing files count as deleted so a retry can finish the job.
                Path(document.storage_path).unlink(missing_ok=True)
            except OSError as exc:
                logger.error(
                    "Could not delete document %s of application %s: %s",
                    document.id,
                    record_id,
                    exc,
                )
                result.failed.append(document.id)
            else:
                result.deleted.append(document.id)

        storage_dir = self._record_dir(record_id)
        if result.complete and storage_dir.is_dir() and not any(storage_dir.iterdir()):
            storage_dir.rmdir()
        return result

    def export_zip(self, record_id: int) -> io.BytesIO:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, mode="w", compression=zipfile.ZIP_DEFLATED) as archive:
            for index, document in enumerate(self.list_documents(record_id), start=1):
                path = Path(document.storage_path)
                if not path.exists():
                    raise NotFound(
                        f"Stored file for document {document.id} no longer exists"
                    )
                archive.write(
                    path,
                    arcname=f"{index:02d}_{document.document_type}_{document.original_filename}",
                )
        buffer.seek(0)
        return buffer
