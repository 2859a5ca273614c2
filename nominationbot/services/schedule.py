"""Queue-position based scheduling for nominees.

All functions here are pure except ``apply_queue_schedule`` which persists the
recomputed queue. Timestamps go in and come out as naive UTC datetimes; the
weekly anchor is evaluated in the configured civil time zone.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, time, timedelta

from sqlalchemy.orm import Session

from nominationbot.config import LOGGER, SETTINGS, NominationSettings
from nominationbot.constants import VOTE_FINALIZATION_BUFFER_MINUTES, NomineeState
from nominationbot.models.nominee import Nominee, utcnow
from nominationbot.services.nominee import find_in_progress, list_queue

QUEUE_SLOT = timedelta(days=7)


@dataclass(frozen=True)
class Schedule:
    discussion_start: datetime
    vote_start: datetime
    cleanup_start: datetime


def _as_aware_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def next_anchor(from_time: datetime, settings: NominationSettings = SETTINGS) -> datetime:
    """
    Get the next weekly anchor (configured weekday and hour in the configured
    time zone) at or after ``from_time``. An instant that sits exactly on an
    anchor is returned unchanged.
    """
    tz = settings.anchor_timezone
    origin = _as_aware_utc(from_time)
    local = origin.astimezone(tz)

    days_ahead = (settings.anchor_weekday - local.weekday()) % 7
    anchor_date = local.date() + timedelta(days=days_ahead)
    candidate = datetime.combine(anchor_date, time(hour=settings.anchor_hour), tzinfo=tz)
    if candidate.astimezone(UTC) < origin:
        candidate = datetime.combine(
            anchor_date + timedelta(days=7), time(hour=settings.anchor_hour), tzinfo=tz
        )

    return candidate.astimezone(UTC).replace(tzinfo=None)


def discussion_start_for(
    queue_position: int,
    now: datetime | None = None,
    settings: NominationSettings = SETTINGS,
) -> datetime:
    """Position 1 gets the next anchor; each later position is one week after."""
    now = now or utcnow()
    offset = max(queue_position - 1, 0)
    return next_anchor(now, settings) + offset * QUEUE_SLOT


def schedule_from_discussion(
    discussion_start: datetime, settings: NominationSettings = SETTINGS
) -> Schedule:
    vote_start = discussion_start + timedelta(
        minutes=settings.discussion_duration_minutes
    )
    cleanup_start = vote_start + timedelta(minutes=settings.vote_duration_minutes)
    return Schedule(discussion_start, vote_start, cleanup_start)


def schedule_for(
    queue_position: int,
    now: datetime | None = None,
    settings: NominationSettings = SETTINGS,
) -> Schedule:
    return schedule_from_discussion(
        discussion_start_for(queue_position, now, settings), settings
    )


def projected_end(nominee: Nominee, settings: NominationSettings = SETTINGS) -> datetime | None:
    """When the nominee's cleanup period is expected to finish, from whatever is set."""
    cleanup = timedelta(minutes=settings.cleanup_duration_minutes)
    if nominee.cleanup_start is not None:
        return nominee.cleanup_start + cleanup
    if nominee.vote_start is not None:
        return nominee.vote_start + timedelta(minutes=settings.vote_duration_minutes) + cleanup
    if nominee.discussion_start is not None:
        return schedule_from_discussion(nominee.discussion_start, settings).cleanup_start + cleanup
    return None


def queue_base_time(
    now: datetime,
    in_flight: Nominee | None = None,
    settings: NominationSettings = SETTINGS,
) -> datetime:
    """The instant queue scheduling counts from: now, or the in-flight nominee's end."""
    if in_flight is None:
        return now
    end = projected_end(in_flight, settings)
    if end is None or end < now:
        return now
    return end


def recompute_queue(
    active_nominees: list[Nominee],
    now: datetime | None = None,
    in_flight: Nominee | None = None,
    settings: NominationSettings = SETTINGS,
    keep_due_head: bool = True,
) -> list[tuple[Nominee, Schedule]]:
    """
    Assign ``schedule_for(i + 1)`` to the i-th queued nominee.

    Only ACTIVE nominees take part; they are ordered by creation time. The
    result depends only on the inputs, so calling it twice with nothing
    changed in between yields identical schedules.

    With nothing in flight, a head whose discussion start has already passed
    is waiting for the next transition sweep to promote it; ``keep_due_head``
    keeps that start instead of moving the whole queue to the next anchor.
    Pass False right after an in-flight nominee finishes, when the head's
    stored start is stale.
    """
    now = now or utcnow()
    queued = sorted(
        (n for n in active_nominees if n.state == NomineeState.ACTIVE),
        key=lambda n: (n.created_at, n.id),
    )
    head_start = queued[0].discussion_start if queued else None
    if keep_due_head and in_flight is None and head_start is not None and head_start <= now:
        first_anchor = head_start
    else:
        base = queue_base_time(now, in_flight, settings)
        first_anchor = next_anchor(base, settings)

    results = []
    for index, nominee in enumerate(queued):
        schedule = schedule_from_discussion(first_anchor + index * QUEUE_SLOT, settings)
        results.append((nominee, schedule))
        LOGGER.debug(
            f"Nominee {nominee.id} ({nominee.name}) queue position {index + 1}: "
            f"discussion {schedule.discussion_start}, vote {schedule.vote_start}, "
            f"cleanup {schedule.cleanup_start}"
        )
    return results


def apply_queue_schedule(
    session: Session,
    community_id: int,
    now: datetime | None = None,
    settings: NominationSettings = SETTINGS,
    keep_due_head: bool = True,
) -> list[tuple[Nominee, Schedule]]:
    """Recompute and persist the schedules of every queued nominee in a community."""
    now = now or utcnow()
    queued = list_queue(session, community_id)
    in_flight = find_in_progress(session, community_id)
    results = recompute_queue(queued, now, in_flight, settings, keep_due_head)

    changed = 0
    for nominee, schedule in results:
        if (
            nominee.discussion_start != schedule.discussion_start
            or nominee.vote_start != schedule.vote_start
            or nominee.cleanup_start != schedule.cleanup_start
        ):
            nominee.discussion_start = schedule.discussion_start
            nominee.vote_start = schedule.vote_start
            nominee.cleanup_start = schedule.cleanup_start
            changed += 1
    session.flush()

    if changed:
        LOGGER.info(
            f"Recalculated schedules in community {community_id}: "
            f"{changed} of {len(results)} queued nominees changed"
        )
    return results


def cascade_discussion_override(
    nominee: Nominee, hours: float, settings: NominationSettings = SETTINGS
) -> tuple[datetime, datetime]:
    """New (vote_start, cleanup_start) after overriding the discussion length."""
    if nominee.discussion_start is None:
        raise ValueError(f"Nominee {nominee.id} has no discussion start")
    vote_start = nominee.discussion_start + timedelta(hours=hours)
    cleanup_start = vote_start + timedelta(minutes=settings.vote_duration_minutes)
    return vote_start, cleanup_start


def is_due_for_discussion(nominee: Nominee, now: datetime) -> bool:
    return (
        nominee.state == NomineeState.ACTIVE
        and nominee.discussion_start is not None
        and nominee.discussion_start <= now
    )


def is_due_for_vote(nominee: Nominee, now: datetime) -> bool:
    return (
        nominee.state == NomineeState.DISCUSSION
        and nominee.vote_start is not None
        and nominee.vote_start <= now
    )


def is_vote_expired(nominee: Nominee, now: datetime) -> bool:
    """The vote window closed and the finalization buffer for late tallies has passed."""
    buffer = timedelta(minutes=VOTE_FINALIZATION_BUFFER_MINUTES)
    return (
        nominee.state == NomineeState.VOTE
        and nominee.cleanup_start is not None
        and nominee.cleanup_start + buffer <= now
    )


def is_cleanup_finished(
    nominee: Nominee, now: datetime, settings: NominationSettings = SETTINGS
) -> bool:
    if nominee.state != NomineeState.CLEANUP or nominee.cleanup_start is None:
        return False
    cleanup_end = nominee.cleanup_start + timedelta(
        minutes=settings.cleanup_duration_minutes
    )
    return now >= cleanup_end
