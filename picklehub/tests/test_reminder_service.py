"""
Tests for the event reminder worker.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select, and_

from picklehub.database.models import Notification, NotificationType
from picklehub.services import event_service, reminder_service
from picklehub.services.reminder_service import EventReminderService
from picklehub.tests.factories import (
    create_user,
    create_event_row,
    create_team_with_members,
    create_team_event_row,
)


async def _reminders(session, user_id):
    result = await session.execute(
        select(Notification).where(
            and_(
                Notification.user_id == user_id,
                Notification.type == NotificationType.EVENT_REMINDER.value,
            )
        )
    )
    return result.scalars().all()


@pytest.mark.asyncio
async def test_reminds_creator_and_holders_once(db_session):
    host = await create_user(db_session, "host@example.com")
    guest = await create_user(db_session, "guest@example.com")
    soon = await create_event_row(db_session, host.id, starts_in=timedelta(hours=3))
    await create_event_row(db_session, host.id, starts_in=timedelta(days=3))
    await event_service.reserve(db_session, soon.id, guest.id)

    assert await reminder_service.send_due_reminders(db_session) == 1

    for user in (host, guest):
        reminders = await _reminders(db_session, user.id)
        assert len(reminders) == 1
        assert reminders[0].title == "Upcoming event"
        assert reminders[0].related_id == str(soon.id)

    assert await reminder_service.send_due_reminders(db_session) == 0
    assert len(await _reminders(db_session, guest.id)) == 1


@pytest.mark.asyncio
async def test_skips_started_and_closed_events(db_session):
    host = await create_user(db_session, "host@example.com")
    await create_event_row(db_session, host.id, starts_in=-timedelta(minutes=10))
    closed = await create_event_row(db_session, host.id, starts_in=timedelta(hours=2))
    await event_service.close_event(db_session, closed.id, host.id)

    assert await reminder_service.send_due_reminders(db_session) == 0
    assert await _reminders(db_session, host.id) == []


@pytest.mark.asyncio
async def test_team_event_reminders(db_session):
    owner = await create_user(db_session, "owner@example.com")
    member = await create_user(db_session, "member@example.com")
    team = await create_team_with_members(db_session, owner.id, members=[member.id])
    team_event = await create_team_event_row(
        db_session, team.id, owner.id, starts_in=timedelta(hours=5)
    )
    await event_service.join_team_event(db_session, team.id, team_event.id, member.id)

    assert await reminder_service.send_due_reminders(db_session) == 1

    reminders = await _reminders(db_session, member.id)
    assert reminders[0].related_id == f"{team.id}:{team_event.id}"
    assert len(await _reminders(db_session, owner.id)) == 1


@pytest.mark.asyncio
async def test_run_once_uses_own_session(db_session):
    host = await create_user(db_session, "host@example.com")
    await create_event_row(db_session, host.id, starts_in=timedelta(hours=1))
    await db_session.commit()

    service = EventReminderService(poll_interval_seconds=3600)
    assert await service.run_once() == 1
    assert await service.run_once() == 0
