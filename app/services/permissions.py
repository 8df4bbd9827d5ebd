"""Role policy for the application workflow.

Two explicit lookups drive every authorization decision:

* ``ROLE_CAPABILITIES`` maps a role to the coarse operations it may perform
  (read, archive, hard delete, account management, ...).
* ``ROLE_EDGES`` maps a role to the workflow edges it may traverse.

Agents are additionally scoped to the records they own; that check lives in
``ensure_record_access``. Every function takes the acting ``Actor``
explicitly so the same policy applies to API calls and direct service use.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum

from app.models import ApplicationRecord, ApplicationStatus, User, UserRole
from app.services.errors import PermissionDenied

Edge = tuple[ApplicationStatus, ApplicationStatus]


@dataclass(frozen=True)
class Actor:
    user_id: uuid.UUID
    role: UserRole

    @classmethod
    def from_user(cls, user: User) -> Actor:
        return cls(user_id=user.id, role=UserRole(user.role))


class Capability(str, Enum):
    READ_APPLICATIONS = "read_applications"
    CREATE_APPLICATIONS = "create_applications"
    TRANSITION_APPLICATIONS = "transition_applications"
    ARCHIVE_APPLICATIONS = "archive_applications"
    HARD_DELETE_APPLICATIONS = "hard_delete_applications"
    EXPORT_DOCUMENTS = "export_documents"
    MANAGE_CATALOG = "manage_catalog"
    CREATE_AGENTS = "create_agents"
    CREATE_SUB_ADMINS = "create_sub_admins"
    MANAGE_ADMIN_ACCOUNTS = "manage_admin_accounts"
    MANAGE_SYSTEM_CONFIG = "manage_system_config"
    READ_AUDIT_LOGS = "read_audit_logs"


SUBMISSION_EDGES: frozenset[Edge] = frozenset(
    {
        (ApplicationStatus.DRAFT, ApplicationStatus.SUBMITTED),
        (ApplicationStatus.INCOMPLETE, ApplicationStatus.SUBMITTED),
    }
)

REVIEW_EDGES: frozenset[Edge] = frozenset(
    {
        (ApplicationStatus.SUBMITTED, ApplicationStatus.UNDER_REVIEW),
        (ApplicationStatus.UNDER_REVIEW, ApplicationStatus.APPROVED),
        (ApplicationStatus.UNDER_REVIEW, ApplicationStatus.REJECTED),
        (ApplicationStatus.UNDER_REVIEW, ApplicationStatus.INCOMPLETE),
    }
)

ALLOWED_TRANSITIONS: frozenset[Edge] = SUBMISSION_EDGES | REVIEW_EDGES

TERMINAL_STATUSES: frozenset[ApplicationStatus] = frozenset(
    {ApplicationStatus.APPROVED, ApplicationStatus.REJECTED}
)

ROLE_EDGES: dict[UserRole, frozenset[Edge]] = {
    UserRole.AGENT: SUBMISSION_EDGES,
    UserRole.SUB_ADMIN: REVIEW_EDGES,
    UserRole.ADMIN: REVIEW_EDGES | SUBMISSION_EDGES,
    UserRole.SUPER_ADMIN: ALLOWED_TRANSITIONS,
}

ROLE_CAPABILITIES: dict[UserRole, frozenset[Capability]] = {
    UserRole.AGENT: frozenset(
        {
            Capability.READ_APPLICATIONS,
            Capability.CREATE_APPLICATIONS,
            Capability.TRANSITION_APPLICATIONS,
            Capability.ARCHIVE_APPLICATIONS,
            Capability.EXPORT_DOCUMENTS,
        }
    ),
    UserRole.SUB_ADMIN: frozenset(
        {
            Capability.READ_APPLICATIONS,
            Capability.TRANSITION_APPLICATIONS,
            Capability.EXPORT_DOCUMENTS,
            Capability.MANAGE_CATALOG,
            Capability.CREATE_AGENTS,
        }
    ),
    UserRole.ADMIN: frozenset(Capability) - {Capability.MANAGE_SYSTEM_CONFIG},
    UserRole.SUPER_ADMIN: frozenset(Capability),
}

# Roles restricted to the applications they own.
OWNER_SCOPED_ROLES: frozenset[UserRole] = frozenset({UserRole.AGENT})


def has_capability(role: UserRole, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES.get(role, frozenset())


def require_capability(actor: Actor, capability: Capability) -> None:
    if not has_capability(actor.role, capability):
        raise PermissionDenied(
            f"Role '{actor.role.value}' lacks the '{capability.value}' permission"
        )


def can_traverse(role: UserRole, edge: Edge) -> bool:
    return edge in ROLE_EDGES.get(role, frozenset())


def is_owner(actor: Actor, record: ApplicationRecord) -> bool:
    return record.agent_id is not None and record.agent_id == actor.user_id


def ensure_record_access(
    actor: Actor, record: ApplicationRecord, capability: Capability
) -> None:
    require_capability(actor, capability)
    if actor.role in OWNER_SCOPED_ROLES and not is_owner(actor, record):
        raise PermissionDenied(
            f"Role '{actor.role.value}' may only access its own applications; "
            f"application {record.id} belongs to another agent"
        )


def ensure_can_create_account(actor: Actor, target_role: UserRole) -> None:
    if target_role == UserRole.AGENT:
        require_capability(actor, Capability.CREATE_AGENTS)
    elif target_role == UserRole.SUB_ADMIN:
        require_capability(actor, Capability.CREATE_SUB_ADMINS)
    else:
        require_capability(actor, Capability.MANAGE_ADMIN_ACCOUNTS)
        if target_role == UserRole.SUPER_ADMIN and actor.role != UserRole.SUPER_ADMIN:
            raise PermissionDenied("Only a super_admin may create super_admin accounts")


def ensure_can_set_active(actor: Actor, target: User) -> None:
    target_role = UserRole(target.role)
    if target.id == actor.user_id:
        raise PermissionDenied("Users cannot change their own active status")
    if target_role in {UserRole.ADMIN, UserRole.SUPER_ADMIN}:
        require_capability(actor, Capability.MANAGE_ADMIN_ACCOUNTS)
        if target_role == UserRole.SUPER_ADMIN and actor.role != UserRole.SUPER_ADMIN:
            raise PermissionDenied("Only a super_admin may change a super_admin account")
    elif target_role == UserRole.SUB_ADMIN:
        require_capability(actor, Capability.CREATE_SUB_ADMINS)
    else:
        require_capability(actor, Capability.CREATE_AGENTS)
