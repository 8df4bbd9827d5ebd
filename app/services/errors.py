from __future__ import annotations


class WorkflowError(Exception):
    code = "workflow_error"
    http_status = 400
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(WorkflowError):
    code = "not_found"
    http_status = 404


class InvalidTransition(WorkflowError):
    code = "invalid_transition"
    http_status = 409


class PermissionDenied(WorkflowError):
    code = "permission_denied"
    http_status = 403


class ConcurrentModification(WorkflowError):
    code = "concurrent_modification"
    http_status = 409

    def __init__(self, *, record_id: int, expected_version: int, current_version: int | None) -> None:
        super().__init__(
            f"Application {record_id} was modified by another request "
            f"(expected version {expected_version}, current version "
            f"{current_version if current_version is not None else 'unknown'}). "
            "Reload the application and retry."
        )
        self.record_id = record_id
        self.expected_version = expected_version
        self.current_version = current_version


class NoDocuments(WorkflowError):
    code = "no_documents"
    http_status = 404


class PartialCascadeFailure(WorkflowError):
    code = "partial_cascade_failure"
    http_status = 503
    retryable = True

    def __init__(self, *, record_id: int, failed_document_ids: list[str]) -> None:
        super().__init__(
            f"Hard delete of application {record_id} is incomplete: "
            f"{len(failed_document_ids)} document(s) could not be removed. "
            "The application was kept; retry the delete."
        )
        self.record_id = record_id
        self.failed_document_ids = failed_document_ids


class Unauthenticated(WorkflowError):
    code = "unauthenticated"
    http_status = 401
