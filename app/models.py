import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from pydantic import EmailStr
from sqlalchemy import JSON, DateTime, UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel


def get_datetime_utc() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, Enum):
    AGENT = "agent"
    SUB_ADMIN = "sub_admin"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class ApplicationStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under-review"
    APPROVED = "approved"
    REJECTED = "rejected"
    INCOMPLETE = "incomplete"


# Shared properties
class UserBase(SQLModel):
    email: EmailStr = Field(unique=True, index=True, max_length=255)
    is_active: bool = True
    full_name: str | None = Field(default=None, max_length=255)


# Properties to receive via API on creation
class UserCreate(UserBase):
    password: str = Field(min_length=8, max_length=128)
    role: UserRole = UserRole.AGENT


class UserActiveUpdate(SQLModel):
    is_active: bool


# Database model, database table inferred from class name
class User(UserBase, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    hashed_password: str
    role: str = Field(default=UserRole.AGENT.value, max_length=32)
    created_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    applications: list["ApplicationRecord"] = Relationship(back_populates="agent")


# Properties to return via API, id is always required
class UserPublic(UserBase):
    id: uuid.UUID
    role: UserRole
    created_at: datetime | None = None


# Catalog entry, owned by the catalog service and read-only here
class Program(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(max_length=255)
    university_name: str = Field(max_length=255)
    degree_level: str = Field(index=True, max_length=64)
    study_field: str | None = Field(default=None, max_length=128)


class ProgramPublic(SQLModel):
    id: int
    name: str
    university_name: str
    degree_level: str
    study_field: str | None = None


class ApplicationBase(SQLModel):
    student_first_name: str = Field(min_length=1, max_length=128)
    student_last_name: str = Field(min_length=1, max_length=128)
    student_email: EmailStr = Field(max_length=255)
    student_phone: str | None = Field(default=None, max_length=64)
    student_date_of_birth: date | None = Field(default=None)
    student_nationality: str | None = Field(default=None, max_length=128)
    student_gender: str | None = Field(default=None, max_length=32)
    highest_qualification: str = Field(min_length=1, max_length=128)
    qualification_name: str = Field(min_length=1, max_length=255)
    institution_name: str = Field(min_length=1, max_length=255)
    graduation_year: int | None = Field(default=None, ge=1950, le=2100)
    cgpa: float | None = Field(default=None, ge=0)
    program_id: int = Field(foreign_key="program.id", nullable=False)


class ApplicationCreate(ApplicationBase):
    # Only honoured for administrative callers; agents always own what they create.
    agent_id: uuid.UUID | None = None


class ApplicationRecord(ApplicationBase, table=True):
    __tablename__ = "application"

    id: int | None = Field(default=None, primary_key=True)
    status: str = Field(default=ApplicationStatus.DRAFT.value, max_length=32, index=True)
    archived: bool = Field(default=False, index=True)
    notes: str | None = Field(default=None, max_length=2000)
    version: int = Field(default=1, nullable=False)
    created_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    updated_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    agent_id: uuid.UUID | None = Field(
        default=None, foreign_key="user.id", nullable=True, ondelete="SET NULL"
    )

    agent: User | None = Relationship(back_populates="applications")
    program: Program | None = Relationship()
    transitions: list["StatusTransition"] = Relationship(
        back_populates="application",
        sa_relationship_kwargs={"order_by": "StatusTransition.sequence"},
    )
    documents: list["ApplicationDocument"] = Relationship(back_populates="application")


class ApplicationPublic(ApplicationBase):
    id: int
    status: ApplicationStatus
    archived: bool
    notes: str | None = None
    version: int
    created_at: datetime | None = None
    updated_at: datetime | None = None
    agent_id: uuid.UUID | None = None


class ApplicationsPublic(SQLModel):
    data: list[ApplicationPublic]
    count: int


class StatusTransition(SQLModel, table=True):
    __tablename__ = "application_status_transition"
    __table_args__ = (
        UniqueConstraint(
            "application_id", "sequence", name="uq_status_transition_sequence"
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    sequence: int = Field(nullable=False)
    from_status: str = Field(max_length=32)
    to_status: str = Field(max_length=32)
    actor_user_id: uuid.UUID | None = Field(
        default=None, foreign_key="user.id", nullable=True, ondelete="SET NULL"
    )
    actor_role: str = Field(max_length=32)
    notes: str | None = Field(default=None, max_length=2000)
    created_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    application_id: int = Field(
        foreign_key="application.id", nullable=False, ondelete="CASCADE", index=True
    )

    application: ApplicationRecord | None = Relationship(back_populates="transitions")


class StatusTransitionPublic(SQLModel):
    sequence: int
    from_status: ApplicationStatus
    to_status: ApplicationStatus
    actor_user_id: uuid.UUID | None = None
    actor_role: UserRole
    notes: str | None = None
    created_at: datetime | None = None


class ApplicationHistoryPublic(SQLModel):
    application_id: int
    data: list[StatusTransitionPublic]
    count: int


class StatusTransitionRequest(SQLModel):
    to_status: ApplicationStatus
    notes: str | None = Field(default=None, max_length=2000)
    expected_version: int = Field(ge=1)


class ApplicationDocument(SQLModel, table=True):
    __tablename__ = "application_document"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    document_type: str = Field(min_length=1, max_length=80)
    original_filename: str = Field(max_length=255)
    mime_type: str = Field(max_length=100)
    file_size_bytes: int
    storage_path: str = Field(max_length=1024)
    created_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    application_id: int = Field(
        foreign_key="application.id", nullable=False, ondelete="CASCADE", index=True
    )

    application: ApplicationRecord | None = Relationship(back_populates="documents")


class ApplicationDocumentPublic(SQLModel):
    id: uuid.UUID
    document_type: str
    original_filename: str
    mime_type: str
    file_size_bytes: int
    created_at: datetime | None = None
    application_id: int


class ApplicationDocumentsPublic(SQLModel):
    data: list[ApplicationDocumentPublic]
    count: int


class ApplicationDetailPublic(ApplicationPublic):
    program: ProgramPublic | None = None
    history: list[StatusTransitionPublic]
    documents: list[ApplicationDocumentPublic]
    available_transitions: list[ApplicationStatus]


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_log"

    id: int | None = Field(default=None, primary_key=True)
    action: str = Field(max_length=64, index=True)
    resource_type: str = Field(max_length=32)
    resource_id: str = Field(max_length=64, index=True)
    actor_user_id: uuid.UUID | None = Field(
        default=None, foreign_key="user.id", nullable=True, ondelete="SET NULL"
    )
    actor_role: str | None = Field(default=None, max_length=32)
    details: str | None = Field(default=None, max_length=1000)
    event_metadata: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    created_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )


class AuditLogPublic(SQLModel):
    id: int
    action: str
    resource_type: str
    resource_id: str
    actor_user_id: uuid.UUID | None = None
    actor_role: str | None = None
    details: str | None = None
    event_metadata: dict[str, Any]
    created_at: datetime | None = None


class AuditLogsPublic(SQLModel):
    data: list[AuditLogPublic]
    count: int


# Generic message
class Message(SQLModel):
    message: str


# JSON payload containing access token
class Token(SQLModel):
    access_token: str
    token_type: str = "bearer"


# Contents of JWT token
class TokenPayload(SQLModel):
    sub: str | None = None
