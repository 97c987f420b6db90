"""FastAPI dependencies for the API layer."""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from chatter.realtime import TransportUnavailableError, get_coordinator
from chatter.realtime.store import ChatStore

from app.core.security import decode_access_token, token_subject
from app.database import get_db
from app.models import User
from app.services import MembershipService, SqlChatStore

# Tokens are issued elsewhere; this service only verifies them.
bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    """Retrieve the current user from the JWT token."""

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return get_user_from_token(credentials.credentials, db)


def get_user_from_token(token: str, db: Session) -> User:
    """Resolve a user from a JWT token or raise an HTTP 401 error."""

    user_id = token_subject(decode_access_token(token))
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )

    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    return user


def get_chat_store() -> ChatStore:
    """Share the realtime layer's store so both surfaces see one database."""

    try:
        return get_coordinator().store
    except TransportUnavailableError:
        return SqlChatStore()


def get_membership_service(store: ChatStore = Depends(get_chat_store)) -> MembershipService:
    return MembershipService(store)
