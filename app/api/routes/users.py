import logging
import uuid
from typing import Any

from fastapi import APIRouter, HTTPException

from app import crud
from app.api.deps import CurrentActor, CurrentUser, SessionDep
from app.models import User, UserActiveUpdate, UserCreate, UserPublic, UserRole
from app.services.audit import record_audit_event
from app.services.errors import NotFound
from app.services.permissions import ensure_can_create_account, ensure_can_set_active

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=UserPublic)
def read_user_me(current_user: CurrentUser) -> Any:
    return current_user


@router.post("/", response_model=UserPublic)
def create_user(*, session: SessionDep, actor: CurrentActor, user_in: UserCreate) -> Any:
    ensure_can_create_account(actor, user_in.role)
    if crud.get_user_by_email(session=session, email=user_in.email):
        raise HTTPException(
            status_code=400,
            detail="The user with this email already exists in the system.",
        )
    user = crud.create_user(session=session, user_create=user_in)
    record_audit_event(
        session=session,
        action="user_created",
        resource_type="user",
        resource_id=user.id,
        actor=actor,
        details=f"Created {user_in.role.value} account {user_in.email}",
        metadata={"role": user_in.role.value},
    )
    session.commit()
    session.refresh(user)
    logger.info("User %s (%s) created by %s", user.email, user.role, actor.user_id)
    return user


@router.patch("/{user_id}/active", response_model=UserPublic)
def update_user_active(
    *,
    session: SessionDep,
    actor: CurrentActor,
    user_id: uuid.UUID,
    update_in: UserActiveUpdate,
) -> Any:
    user = session.get(User, user_id)
    if not user:
        raise NotFound(f"User {user_id} not found")
    ensure_can_set_active(actor, user)
    user.is_active = update_in.is_active
    session.add(user)
    record_audit_event(
        session=session,
        action="activate_user" if update_in.is_active else "deactivate_user",
        resource_type="user",
        resource_id=user.id,
        actor=actor,
        details=f"{'Activated' if update_in.is_active else 'Deactivated'} {UserRole(user.role).value} {user.email}",
    )
    session.commit()
    session.refresh(user)
    return user
