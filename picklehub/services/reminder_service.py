"""
Event reminder service: notifies participants of events starting soon.

Background worker that polls every REMINDER_POLL_INTERVAL_SECONDS. Active
events and team events starting within the next REMINDER_WINDOW_HOURS that
have not been reminded yet get one event_reminder notification per
participant (creator included). The reminder is claimed with a conditional
update on ``reminder_sent_at`` so several API instances never send it twice.
"""

import asyncio
import logging
import os
from datetime import timedelta
from typing import List, Optional

from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from picklehub.database import db
from picklehub.database.models import Event, EventStatus, TeamEvent
from picklehub.services import notification_service
from picklehub.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

# Events starting within this window get a reminder
REMINDER_WINDOW_HOURS = 24

# How often the worker checks for upcoming events (seconds)
POLL_INTERVAL_SECONDS = int(os.getenv("REMINDER_POLL_INTERVAL_SECONDS", "600"))


async def _claim_reminder(session: AsyncSession, model, event_id: int) -> bool:
    result = await session.execute(
        update(model)
        .where(and_(model.id == event_id, model.reminder_sent_at.is_(None)))
        .values(reminder_sent_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _due(session: AsyncSession, model) -> List:
    now = utcnow()
    result = await session.execute(
        select(model)
        .where(
            and_(
                model.status == EventStatus.ACTIVE.value,
                model.reminder_sent_at.is_(None),
                model.start_time > now,
                model.start_time <= now + timedelta(hours=REMINDER_WINDOW_HOURS),
            )
        )
        .order_by(model.start_time)
    )
    return list(result.scalars().all())


async def send_due_reminders(session: AsyncSession) -> int:
    """
    Send reminders for every due event and team event.

    Each event is committed on its own so one failure does not block the rest.

    Returns:
        Number of events reminded
    """
    reminded = 0

    for event in await _due(session, Event):
        if not await _claim_reminder(session, Event, event.id):
            continue
        holder_ids = await notification_service.get_event_holder_user_ids(session, event.id)
        await notification_service.notify_event_reminder(
            session, event, [event.creator_id] + holder_ids
        )
        await session.commit()
        reminded += 1

    for team_event in await _due(session, TeamEvent):
        if not await _claim_reminder(session, TeamEvent, team_event.id):
            continue
        participant_ids = await notification_service.get_team_event_participant_user_ids(
            session, team_event.id
        )
        await notification_service.notify_event_reminder(
            session, team_event, [team_event.creator_id] + participant_ids
        )
        await session.commit()
        reminded += 1

    if reminded:
        logger.info(f"Sent reminders for {reminded} upcoming event(s)")
    return reminded


class EventReminderService:
    """Background service that sends reminders for upcoming events."""

    def __init__(self, poll_interval_seconds: int = POLL_INTERVAL_SECONDS):
        self.poll_interval_seconds = poll_interval_seconds
        self._worker_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    def start(self) -> None:
        """Start the background reminder worker."""
        if self._worker_task is None or self._worker_task.done():
            self._stop_event.clear()
            self._worker_task = asyncio.create_task(self._poll_loop())
            logger.info("Event reminder worker started")

    def stop(self) -> None:
        """Stop the background reminder worker."""
        self._stop_event.set()
        if self._worker_task and not self._worker_task.done():
            self._worker_task.cancel()
            logger.info("Event reminder worker stopped")

    async def _poll_loop(self) -> None:
        """Main loop: send due reminders, then sleep. Repeats until stopped."""
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error in event reminder worker: {e}", exc_info=True)

            # Wait for poll interval or until stop is signalled
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.poll_interval_seconds
                )
                break
            except asyncio.TimeoutError:
                pass

    async def run_once(self) -> int:
        async with db.AsyncSessionLocal() as session:
            try:
                return await send_due_reminders(session)
            except Exception:
                await session.rollback()
                raise


# Global reminder service instance
_reminder_service: Optional[EventReminderService] = None


def get_reminder_service() -> EventReminderService:
    global _reminder_service
    if _reminder_service is None:
        _reminder_service = EventReminderService()
    return _reminder_service
