"""Channel membership endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from app.api.deps import get_current_user, get_membership_service
from app.models import User
from app.schemas import (
    ChannelCreate,
    ChannelMembersRead,
    ChannelRead,
    JoinRequestStatus,
    LeaveResult,
    MemberRead,
)
from app.services import MembershipService

router = APIRouter(prefix="/channels", tags=["channels"])


@router.post("", response_model=ChannelRead, status_code=status.HTTP_201_CREATED, response_model_by_alias=True)
async def create_channel(
    payload: ChannelCreate,
    current_user: User = Depends(get_current_user),
    service: MembershipService = Depends(get_membership_service),
) -> ChannelRead:
    """Create a channel owned by the current user."""

    channel = await service.create_channel(current_user.id, payload.name, is_private=payload.is_private)
    return ChannelRead.from_record(channel)


@router.post("/{channel_id}/join", response_model=ChannelRead, response_model_by_alias=True)
async def join_channel(
    channel_id: str,
    current_user: User = Depends(get_current_user),
    service: MembershipService = Depends(get_membership_service),
) -> ChannelRead:
    channel = await service.join_channel(channel_id, current_user.id)
    return ChannelRead.from_record(channel)


@router.post("/{channel_id}/leave", response_model=LeaveResult, response_model_by_alias=True)
async def leave_channel(
    channel_id: str,
    current_user: User = Depends(get_current_user),
    service: MembershipService = Depends(get_membership_service),
) -> LeaveResult:
    left = await service.leave_channel(channel_id, current_user.id)
    return LeaveResult(channel_id=channel_id, left=left)


@router.get("/{channel_id}/members", response_model=ChannelMembersRead, response_model_by_alias=True)
async def list_channel_members(
    channel_id: str,
    current_user: User = Depends(get_current_user),
    service: MembershipService = Depends(get_membership_service),
) -> ChannelMembersRead:
    """Return resolved members and pending join requests."""

    listing = await service.list_members(channel_id)
    return ChannelMembersRead(
        channel_id=channel_id,
        members=[MemberRead.from_record(member) for member in listing.members],
        pending_requests=[MemberRead.from_record(member) for member in listing.pending_requests],
    )


@router.post("/{channel_id}/requests", response_model=JoinRequestStatus)
async def request_join(
    channel_id: str,
    current_user: User = Depends(get_current_user),
    service: MembershipService = Depends(get_membership_service),
) -> JoinRequestStatus:
    status_value = await service.request_join(channel_id, current_user.id, current_user.name)
    return JoinRequestStatus(status=status_value)


@router.post(
    "/{channel_id}/requests/{user_id}/approve",
    response_model=ChannelRead,
    response_model_by_alias=True,
)
async def approve_join_request(
    channel_id: str,
    user_id: str,
    current_user: User = Depends(get_current_user),
    service: MembershipService = Depends(get_membership_service),
) -> ChannelRead:
    channel = await service.approve_request(channel_id, current_user.id, user_id)
    return ChannelRead.from_record(channel)


@router.post("/{channel_id}/requests/{user_id}/reject", status_code=status.HTTP_204_NO_CONTENT)
async def reject_join_request(
    channel_id: str,
    user_id: str,
    current_user: User = Depends(get_current_user),
    service: MembershipService = Depends(get_membership_service),
) -> Response:
    await service.reject_request(channel_id, current_user.id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{channel_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_channel_member(
    channel_id: str,
    user_id: str,
    current_user: User = Depends(get_current_user),
    service: MembershipService = Depends(get_membership_service),
) -> Response:
    await service.remove_member(channel_id, current_user.id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{channel_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_channel(
    channel_id: str,
    current_user: User = Depends(get_current_user),
    service: MembershipService = Depends(get_membership_service),
) -> Response:
    """Delete a channel with its messages, members and requests."""

    await service.delete_channel(channel_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
