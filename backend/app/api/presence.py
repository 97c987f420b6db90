"""Presence snapshot endpoint."""

from fastapi import APIRouter, Depends

from chatter.realtime import get_coordinator

from app.api.deps import get_current_user
from app.models import User
from app.schemas import PresenceSnapshot

router = APIRouter(tags=["presence"])


@router.get("/presence", response_model=PresenceSnapshot)
def read_presence(current_user: User = Depends(get_current_user)) -> PresenceSnapshot:
    """Users with at least one open connection on this process."""

    return PresenceSnapshot(online=get_coordinator().online_users())
