"""
SQLAlchemy ORM models for the PickleHub community platform.
"""

import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    Float,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from picklehub.database.db import Base


class TeamRole(str, enum.Enum):
    """Role of a user inside a team. Ordered from most to least privileged."""

    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class Visibility(str, enum.Enum):
    """Visibility of a team or team event."""

    PUBLIC = "public"
    PRIVATE = "private"


class JoinRequestStatus(str, enum.Enum):
    """Team join request status enum."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class EventStatus(str, enum.Enum):
    """Event lifecycle status. COMPLETED and CANCELLED are terminal."""

    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class NotificationType(str, enum.Enum):
    """Notification type enum."""

    EVENT_JOINED = "event_joined"
    EVENT_CANCELLED = "event_cancelled"
    EVENT_UPDATED = "event_updated"
    EVENT_CANCELLED_BY_CREATOR = "event_cancelled_by_creator"
    EVENT_REMINDER = "event_reminder"
    EVENT_CHAT_MESSAGE = "event_chat_message"
    TEAM_JOIN_REQUEST = "team_join_request"
    TEAM_MEMBER_LEFT = "team_member_left"
    TEAM_JOIN_APPROVED = "team_join_approved"
    TEAM_JOIN_REJECTED = "team_join_rejected"
    TEAM_ROLE_CHANGED = "team_role_changed"
    TEAM_EVENT_CREATED = "team_event_created"
    TEAM_CHAT_MESSAGE = "team_chat_message"


class User(Base):
    """User accounts authenticated through Google or Apple sign-in."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=True)
    nickname = Column(String(50), nullable=True)
    profile_image = Column(String(500), nullable=True)
    bio = Column(Text, nullable=True)
    region = Column(String(100), nullable=True)
    gender = Column(String(20), nullable=True)
    age_group = Column(String(20), nullable=True)
    skill_level = Column(String(50), nullable=True)
    pickleball_experience = Column(String(50), nullable=True)
    dupr_doubles = Column(Float, nullable=True)
    dupr_singles = Column(Float, nullable=True)
    my_paddle = Column(String(200), nullable=True)
    battle_record = Column(Text, nullable=True)  # Free-form tournament results
    instagram_url = Column(String(500), nullable=True)
    twitter_url = Column(String(500), nullable=True)
    tiktok_url = Column(String(500), nullable=True)
    line_url = Column(String(500), nullable=True)
    google_id = Column(String, nullable=True, unique=True)
    apple_id = Column(String, nullable=True, unique=True)
    is_profile_complete = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (Index("idx_users_region", "region"),)


class Team(Base):
    """Teams (circles) that players can join."""

    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    visibility = Column(String(20), default=Visibility.PUBLIC.value, nullable=False)
    icon_image = Column(String(500), nullable=True)
    header_image = Column(String(500), nullable=True)
    region = Column(String(100), nullable=True)
    instagram_url = Column(String(500), nullable=True)
    twitter_url = Column(String(500), nullable=True)
    tiktok_url = Column(String(500), nullable=True)
    line_url = Column(String(500), nullable=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("visibility IN ('public', 'private')", name="ck_teams_visibility"),
        Index("idx_teams_visibility_region", "visibility", "region"),
    )


class TeamMember(Base):
    """Membership of a user in a team with a role."""

    __tablename__ = "team_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role = Column(String(20), default=TeamRole.MEMBER.value, nullable=False)
    joined_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    team = relationship("Team")
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint("team_id", "user_id", name="uq_team_members_team_user"),
        CheckConstraint("role IN ('owner', 'admin', 'member')", name="ck_team_members_role"),
        # At most one owner row per team
        Index(
            "uq_team_members_single_owner",
            "team_id",
            unique=True,
            postgresql_where=text("role = 'owner'"),
            sqlite_where=text("role = 'owner'"),
        ),
        Index("idx_team_members_user", "user_id"),
    )


class TeamJoinRequest(Base):
    """Request from a user to join a public team."""

    __tablename__ = "team_join_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), default=JoinRequestStatus.PENDING.value, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    user = relationship("User")

    __table_args__ = (
        # One pending request per (team, user); resolved rows are kept as history
        Index(
            "uq_team_join_requests_pending",
            "team_id",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("idx_team_join_requests_team_status", "team_id", "status"),
    )


class TeamInviteUrl(Base):
    """Single-use, time-limited invite token for a team."""

    __tablename__ = "team_invite_urls"

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    token = Column(String(64), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used = Column(Boolean, default=False, nullable=False)
    used_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    used_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("idx_team_invite_urls_team", "team_id"),)


class Event(Base):
    """Open pickleball events that any user can reserve a spot in."""

    __tablename__ = "events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    creator_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String(200), nullable=False)
    address = Column(String(500), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    region = Column(String(100), nullable=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    max_participants = Column(Integer, nullable=True)  # NULL = unlimited
    reserved_count = Column(Integer, default=0, nullable=False)  # Admission counter, see event_service.reserve
    skill_level = Column(String(50), nullable=True)
    price = Column(Integer, nullable=True)  # NULL = free
    status = Column(String(20), default=EventStatus.ACTIVE.value, nullable=False)
    reminder_sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    creator = relationship("User")

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_events_time_order"),
        CheckConstraint("reserved_count >= 0", name="ck_events_reserved_count"),
        CheckConstraint(
            "max_participants IS NULL OR reserved_count <= max_participants",
            name="ck_events_capacity",
        ),
        Index("idx_events_status_start", "status", "start_time"),
        Index("idx_events_creator", "creator_id"),
    )


class Reservation(Base):
    """A user's confirmed spot in an Event."""

    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_reservations_event_user"),
        Index("idx_reservations_user", "user_id"),
    )


class TeamEvent(Base):
    """Events organized by a team. Public ones are open to everyone."""

    __tablename__ = "team_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    creator_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String(200), nullable=False)
    address = Column(String(500), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    region = Column(String(100), nullable=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    max_participants = Column(Integer, nullable=True)  # NULL = unlimited
    participant_count = Column(Integer, default=0, nullable=False)
    skill_level = Column(String(50), nullable=True)
    price = Column(Integer, nullable=True)
    visibility = Column(String(20), default=Visibility.PRIVATE.value, nullable=False)
    status = Column(String(20), default=EventStatus.ACTIVE.value, nullable=False)
    reminder_sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    team = relationship("Team")
    creator = relationship("User")

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_team_events_time_order"),
        CheckConstraint("participant_count >= 0", name="ck_team_events_participant_count"),
        CheckConstraint(
            "max_participants IS NULL OR participant_count <= max_participants",
            name="ck_team_events_capacity",
        ),
        Index("idx_team_events_team_start", "team_id", "start_time"),
        Index("idx_team_events_visibility_start", "visibility", "start_time"),
    )


class TeamEventParticipant(Base):
    """A user's spot in a TeamEvent."""

    __tablename__ = "team_event_participants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey("team_events.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    joined_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_team_event_participants_event_user"),
        Index("idx_team_event_participants_user", "user_id"),
    )


class ChatRoom(Base):
    """Chat room attached to an Event."""

    __tablename__ = "chat_rooms"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(
        Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Message(Base):
    """Message posted in an event chat room."""

    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chat_room_id = Column(
        Integer, ForeignKey("chat_rooms.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    user = relationship("User")

    __table_args__ = (Index("idx_messages_room_id", "chat_room_id", "id"),)


class TeamChatRoom(Base):
    """Chat room attached to a Team."""

    __tablename__ = "team_chat_rooms"

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(
        Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class TeamMessage(Base):
    """Message posted in a team chat room."""

    __tablename__ = "team_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chat_room_id = Column(
        Integer, ForeignKey("team_chat_rooms.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    user = relationship("User")

    __table_args__ = (Index("idx_team_messages_room_id", "chat_room_id", "id"),)


class Notification(Base):
    """User notifications for in-app messaging."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type = Column(String, nullable=False)  # NotificationType enum value
    related_id = Column(String(100), nullable=True)  # Event id, team id, or "team_id:event_id"
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_notifications_user_unread", "user_id", "is_read", "created_at"),
        Index("idx_notifications_user_created", "user_id", "created_at"),
    )
