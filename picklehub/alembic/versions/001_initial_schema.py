"""001_initial_schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000

Initial PickleHub schema - creates all tables from scratch.

Creates all tables based on current models including:
- Identity: users
- Membership: teams, team_members, team_join_requests, team_invite_urls
- Events: events, reservations, team_events, team_event_participants
- Chat: chat_rooms, messages, team_chat_rooms, team_messages
- Notifications: notifications
- Partial unique indexes for the single owner per team and one pending join request
"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables from scratch."""
    from picklehub.database.db import Base
    from picklehub.database import models  # noqa: F401

    bind = op.get_bind()
    Base.metadata.create_all(bind=bind, checkfirst=True)


def downgrade() -> None:
    """Drop all tables."""
    from picklehub.database.db import Base
    from picklehub.database import models  # noqa: F401

    bind = op.get_bind()
    Base.metadata.drop_all(bind=bind, checkfirst=True)
