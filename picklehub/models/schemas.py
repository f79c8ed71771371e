"""
Pydantic models for API request/response validation.
"""

from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str


class ErrorResponse(BaseModel):
    """Body of every domain error response."""

    error: str
    detail: Optional[str] = None


# Auth schemas

class GoogleAuthRequest(BaseModel):
    """Sign in with a Google ID token."""

    id_token: str = Field(min_length=1)


class AppleAuthRequest(BaseModel):
    """
    Sign in with an Apple identity token.

    Apple only shares email and name on the first authorization, so the
    client forwards them alongside the token.
    """

    identity_token: str = Field(min_length=1)
    email: Optional[str] = None
    full_name: Optional[str] = None


class UserSummary(BaseModel):
    id: int
    name: Optional[str] = None
    nickname: Optional[str] = None
    profile_image: Optional[str] = None


class UserResponse(BaseModel):
    """User information response."""

    model_config = ConfigDict(extra="allow")
    id: int
    email: Optional[str] = None
    name: Optional[str] = None
    nickname: Optional[str] = None
    profile_image: Optional[str] = None
    is_profile_complete: bool = False
    created_at: Optional[str] = None


class AuthResponse(BaseModel):
    """Authentication response with access token."""

    user: UserResponse
    token: str
    is_new_user: bool


class UserUpdate(BaseModel):
    """Request to update the current user's profile. Only sent fields change."""

    name: Optional[str] = None
    nickname: Optional[str] = None
    profile_image: Optional[str] = None
    bio: Optional[str] = None
    region: Optional[str] = None
    gender: Optional[str] = None
    age_group: Optional[str] = None
    skill_level: Optional[str] = None
    pickleball_experience: Optional[str] = None
    dupr_doubles: Optional[float] = None
    dupr_singles: Optional[float] = None
    my_paddle: Optional[str] = None
    battle_record: Optional[str] = None
    instagram_url: Optional[str] = None
    twitter_url: Optional[str] = None
    tiktok_url: Optional[str] = None
    line_url: Optional[str] = None


# Team schemas

class TeamBase(BaseModel):
    description: Optional[str] = None
    icon_image: Optional[str] = None
    header_image: Optional[str] = None
    region: Optional[str] = None
    instagram_url: Optional[str] = None
    twitter_url: Optional[str] = None
    tiktok_url: Optional[str] = None
    line_url: Optional[str] = None


class TeamCreate(TeamBase):
    """Request to create a team. The creator becomes its owner."""

    name: str = Field(min_length=1, max_length=100)
    visibility: str = "public"


class TeamUpdate(TeamBase):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    visibility: Optional[str] = None


class TeamMemberResponse(BaseModel):
    id: int
    team_id: int
    user_id: int
    role: str
    joined_at: Optional[str] = None
    user: Optional[UserSummary] = None


class JoinRequestResponse(BaseModel):
    id: int
    team_id: int
    user_id: int
    status: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    user: Optional[UserSummary] = None


class ResolveJoinRequest(BaseModel):
    """Approve or reject a pending join request."""

    action: str = Field(pattern="^(approve|reject)$")


class ChangeRoleRequest(BaseModel):
    role: str = Field(pattern="^(owner|admin|member)$")


class InviteResponse(BaseModel):
    model_config = ConfigDict(extra="allow")
    id: int
    team_id: int
    token: str
    url: str
    expires_at: str
    used: bool
    is_valid: bool


class InviteValidationResponse(BaseModel):
    """Preview of an invite link before redeeming it."""

    valid: bool
    reason: Optional[str] = None
    expires_at: Optional[str] = None
    team: Optional[dict] = None


# Event schemas

class EventBase(BaseModel):
    description: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    region: Optional[str] = None
    max_participants: Optional[int] = Field(default=None, ge=1)
    skill_level: Optional[str] = None
    price: Optional[int] = Field(default=None, ge=0)


class EventCreate(EventBase):
    """Request to create an event. Times are ISO 8601; naive values are taken as UTC."""

    title: str = Field(min_length=1, max_length=200)
    location: str = Field(min_length=1, max_length=200)
    start_time: datetime
    end_time: datetime


class EventUpdate(EventBase):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    location: Optional[str] = Field(default=None, min_length=1, max_length=200)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


class TeamEventCreate(EventCreate):
    visibility: str = "private"


class TeamEventUpdate(EventUpdate):
    visibility: Optional[str] = None


class EventResponse(BaseModel):
    model_config = ConfigDict(extra="allow")
    id: int
    title: str
    status: str
    start_time: str
    end_time: str
    max_participants: Optional[int] = None
    available_spots: Optional[int] = None
    is_full: bool


class ReservationResponse(BaseModel):
    id: int
    event_id: int
    user_id: int
    created_at: Optional[str] = None
    user: Optional[UserSummary] = None


class ReserveResponse(BaseModel):
    reservation: ReservationResponse
    event: EventResponse


# Chat schemas

class SendMessageRequest(BaseModel):
    content: str = Field(min_length=1, max_length=2000)


class ChatMessageResponse(BaseModel):
    id: int
    room_type: str
    room_id: int
    user_id: Optional[int] = None
    user: Optional[UserSummary] = None
    content: str
    created_at: str


class ChatHistoryResponse(BaseModel):
    messages: List[ChatMessageResponse]
    has_more: bool


# Notification schemas

class NotificationResponse(BaseModel):
    """Notification response."""

    id: int
    user_id: int
    type: str
    title: str
    message: str
    related_id: Optional[str] = None
    is_read: bool
    read_at: Optional[str] = None
    created_at: str


class NotificationListResponse(BaseModel):
    """Paginated notification list response."""

    notifications: List[NotificationResponse]
    total_count: int
    unread_count: int
    has_more: bool


class UnreadCountResponse(BaseModel):
    """Unread notification count response."""

    unread_count: int


class MarkAllReadResponse(BaseModel):
    updated: int


class UploadResponse(BaseModel):
    url: str


class StatsResponse(BaseModel):
    """Site-wide counts shown on the landing page."""

    event_count: int
    team_count: int
