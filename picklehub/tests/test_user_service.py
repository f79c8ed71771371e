"""
Tests for user_service: sign-in account resolution, profiles and account deletion.
"""

import pytest
from sqlalchemy import select, func

from picklehub.database.models import (
    Event,
    Message,
    Notification,
    NotificationType,
    Reservation,
    Team,
    User,
)
from picklehub.services import chat_service, event_service, team_service, user_service
from picklehub.services.exceptions import ConflictError, UserNotFound, ValidationError
from picklehub.services.websocket_manager import WebSocketManager
from picklehub.tests.factories import create_user, create_event_row, create_team_with_members


@pytest.mark.asyncio
async def test_google_sign_in_creates_then_reuses_account(db_session):
    user, is_new = await user_service.find_or_create_google_user(
        db_session, "google-1", "Player@Example.com", name="Pat Player"
    )
    assert is_new is True
    assert user.email == "player@example.com"
    assert user.is_profile_complete is False

    again, is_new = await user_service.find_or_create_google_user(
        db_session, "google-1", "player@example.com"
    )
    assert is_new is False
    assert again.id == user.id


@pytest.mark.asyncio
async def test_google_sign_in_links_existing_email(db_session):
    existing = await create_user(db_session, "pat@example.com")

    user, is_new = await user_service.find_or_create_google_user(
        db_session, "google-2", " PAT@example.com "
    )

    assert is_new is False
    assert user.id == existing.id
    assert user.google_id == "google-2"


@pytest.mark.asyncio
async def test_apple_first_sign_in_requires_email(db_session):
    with pytest.raises(ValidationError):
        await user_service.find_or_create_apple_user(db_session, "apple-1")

    user, is_new = await user_service.find_or_create_apple_user(
        db_session, "apple-1", email="apple@example.com", full_name="Alex Apple"
    )
    assert is_new is True

    # Later sign-ins carry no email
    again, is_new = await user_service.find_or_create_apple_user(db_session, "apple-1")
    assert is_new is False
    assert again.id == user.id


@pytest.mark.asyncio
async def test_update_profile(db_session):
    user = await create_user(db_session, "pat@example.com")

    updated = await user_service.update_profile(
        db_session, user.id, {"nickname": "  Dinker  ", "dupr_doubles": 4.25, "region": "Osaka"}
    )

    assert updated["nickname"] == "Dinker"
    assert updated["dupr_doubles"] == 4.25
    assert updated["is_profile_complete"] is True


@pytest.mark.asyncio
async def test_update_profile_validation(db_session):
    user = await create_user(db_session, "pat@example.com")

    with pytest.raises(ValidationError):
        await user_service.update_profile(db_session, user.id, {"nickname": "   "})
    with pytest.raises(ValidationError):
        await user_service.update_profile(db_session, user.id, {"dupr_singles": 9.5})
    with pytest.raises(ValidationError):
        await user_service.update_profile(db_session, user.id, {"email": "new@example.com"})


@pytest.mark.asyncio
async def test_public_profile_hides_email(db_session):
    user = await create_user(db_session, "pat@example.com")
    profile = user_service.public_profile(await user_service.get_user(db_session, user.id))
    assert "email" not in profile

    with pytest.raises(UserNotFound):
        await user_service.get_user(db_session, 9999)


@pytest.mark.asyncio
async def test_get_user_teams(db_session):
    user = await create_user(db_session, "pat@example.com")
    other = await create_user(db_session, "sam@example.com")
    team = await create_team_with_members(db_session, other.id, members=[user.id])

    teams = await user_service.get_user_teams(db_session, user.id)

    assert teams == [
        {
            "id": team.id,
            "name": team.name,
            "icon_image": None,
            "visibility": "public",
            "region": None,
            "role": "member",
        }
    ]


@pytest.mark.asyncio
async def test_delete_account_refused_without_successor(db_session):
    owner = await create_user(db_session, "owner@example.com")
    member = await create_user(db_session, "member@example.com")
    await create_team_with_members(db_session, owner.id, members=[member.id])

    with pytest.raises(ConflictError):
        await user_service.delete_account(db_session, owner.id)


@pytest.mark.asyncio
async def test_delete_account_promotes_admin(db_session):
    owner = await create_user(db_session, "owner@example.com")
    admin = await create_user(db_session, "admin@example.com")
    team = await create_team_with_members(db_session, owner.id, admins=[admin.id])

    await user_service.delete_account(db_session, owner.id)

    assert await team_service.get_user_role(db_session, team.id, admin.id) == "owner"
    assert await team_service.get_user_role(db_session, team.id, owner.id) is None

    changed = (
        await db_session.execute(
            select(Notification).where(
                Notification.user_id == admin.id,
                Notification.type == NotificationType.TEAM_ROLE_CHANGED.value,
            )
        )
    ).scalars().all()
    assert len(changed) == 1
    assert changed[0].message == f"You are now owner of {team.name}"
    assert changed[0].related_id == str(team.id)


@pytest.mark.asyncio
async def test_delete_account_cleans_up(db_session):
    user = await create_user(db_session, "pat@example.com")
    host = await create_user(db_session, "host@example.com")
    solo_team = await create_team_with_members(db_session, user.id, name="Just Me")
    own_event = await create_event_row(db_session, user.id)
    hosted = await create_event_row(db_session, host.id, max_participants=4)
    await event_service.reserve(db_session, hosted.id, user.id)
    await chat_service.send_message(
        db_session, "event", hosted.id, user.id, "Count me in", manager=WebSocketManager()
    )

    await user_service.delete_account(db_session, user.id)

    assert (await db_session.execute(select(User).where(User.id == user.id))).scalar_one_or_none() is None
    assert (await db_session.execute(select(Team).where(Team.id == solo_team.id))).scalar_one_or_none() is None
    assert (await db_session.execute(select(Event).where(Event.id == own_event.id))).scalar_one_or_none() is None

    reservations = await db_session.execute(
        select(func.count()).select_from(Reservation).where(Reservation.event_id == hosted.id)
    )
    assert reservations.scalar_one() == 0
    reserved_count = await db_session.execute(
        select(Event.reserved_count).where(Event.id == hosted.id)
    )
    assert reserved_count.scalar_one() == 0

    message = (await db_session.execute(select(Message))).scalar_one()
    await db_session.refresh(message)
    assert message.user_id is None


@pytest.mark.asyncio
async def test_user_rankings_by_dupr(db_session):
    strong = await create_user(db_session, "strong@example.com", nickname="Strong")
    steady = await create_user(db_session, "steady@example.com")
    singles_only = await create_user(db_session, "singles@example.com")
    await create_user(db_session, "unrated@example.com")
    strong.dupr_doubles, strong.dupr_singles = 5.1, 3.2
    steady.dupr_doubles = 3.75
    singles_only.dupr_singles = 4.4
    await db_session.flush()

    doubles = await user_service.get_user_rankings(db_session)
    assert [u["id"] for u in doubles] == [strong.id, steady.id]
    assert doubles[0] == {
        "id": strong.id,
        "name": "strong",
        "nickname": "Strong",
        "profile_image": None,
        "region": None,
        "skill_level": None,
        "dupr_doubles": 5.1,
        "dupr_singles": 3.2,
        "rank": 1,
    }
    assert "email" not in doubles[1]

    singles = await user_service.get_user_rankings(db_session, "singles")
    assert [(u["id"], u["rank"]) for u in singles] == [(singles_only.id, 1), (strong.id, 2)]

    with pytest.raises(ValidationError):
        await user_service.get_user_rankings(db_session, "mixed")
