import uuid
from collections.abc import Generator
from typing import Annotated

import jwt
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jwt.exceptions import InvalidTokenError
from pydantic import ValidationError
from sqlmodel import Session

from app.core import security
from app.core.config import settings
from app.core.db import engine
from app.models import TokenPayload, User
from app.services.documents import DocumentStore, LocalDocumentStore
from app.services.errors import Unauthenticated
from app.services.permissions import Actor

reusable_oauth2 = OAuth2PasswordBearer(
    tokenUrl=f"{settings.API_V1_STR}/login/access-token", auto_error=False
)


def get_db() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


SessionDep = Annotated[Session, Depends(get_db)]
TokenDep = Annotated[str | None, Depends(reusable_oauth2)]


def get_current_user(session: SessionDep, token: TokenDep) -> User:
    if not token:
        raise Unauthenticated("Not authenticated")
    try:
        payload = jwt.decode(
            token, settings.SECRET_KEY, algorithms=[security.ALGORITHM]
        )
        token_data = TokenPayload(**payload)
        user_id = uuid.UUID(token_data.sub or "")
    except (InvalidTokenError, ValidationError, ValueError):
        raise Unauthenticated("Could not validate credentials")
    user = session.get(User, user_id)
    if not user:
        raise Unauthenticated("User not found")
    if not user.is_active:
        raise Unauthenticated("Inactive user")
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


def resolve_actor(current_user: CurrentUser) -> Actor:
    return Actor.from_user(current_user)


CurrentActor = Annotated[Actor, Depends(resolve_actor)]


def get_document_store(session: SessionDep) -> DocumentStore:
    return LocalDocumentStore(session=session, root=settings.DOCUMENT_STORAGE_ROOT)


DocumentStoreDep = Annotated[DocumentStore, Depends(get_document_store)]
