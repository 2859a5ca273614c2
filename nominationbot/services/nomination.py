"""Database side of the /nominate commands.

Functions here run inside a caller-owned session and never talk to Discord;
side effects that follow from them are handled by the scheduler.
"""

from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy.orm import Session
from table2ascii import Alignment, PresetStyle, table2ascii

from nominationbot.config import LOGGER, SETTINGS, NominationSettings
from nominationbot.constants import MAX_NAME_LENGTH, MIN_NAME_LENGTH, NomineeState
from nominationbot.errors import (
    MissingPrecondition,
    NotFound,
    Result,
    ValidationError,
)
from nominationbot.models.nominee import Nominee, utcnow
from nominationbot.services.nominee import (
    create_nominee,
    delete_nominee,
    find_by_name,
    find_in_state,
    list_active,
    list_queue,
    update_nominee,
)
from nominationbot.services.schedule import apply_queue_schedule, cascade_discussion_override
from nominationbot.services.state_machine import transition


@dataclass(frozen=True)
class RemovedNomination:
    """What is left to clean up on Discord after a nominee was removed."""

    name: str
    community_id: int
    was_in_progress: bool
    discussion_channel_id: int | None = None
    vote_channel_id: int | None = None


@dataclass(frozen=True)
class DiscussionOverride:
    nominee: Nominee
    hours: float
    vote_start: datetime
    cleanup_start: datetime
    # The new discussion length already elapsed, so voting should open now
    vote_due: bool


def validate_name(name: str) -> ValidationError | None:
    name = name.strip()
    if len(name) < MIN_NAME_LENGTH:
        return ValidationError(f"Name must be at least {MIN_NAME_LENGTH} characters.")
    if len(name) > MAX_NAME_LENGTH:
        return ValidationError(f"Name must be at most {MAX_NAME_LENGTH} characters.")
    return None


def start_nomination(
    session: Session,
    community_id: int,
    name: str,
    nominator: str,
    now: datetime | None = None,
    settings: NominationSettings = SETTINGS,
) -> Result[Nominee]:
    """
    Add a nominee to the back of the queue and schedule it.

    Parameters
    ----------
    session: Session
        The database session
    community_id: int
        The Discord guild the nomination is made in
    name: str
        The candidate's name; must be unique among the guild's open nominations
    nominator: str
        Who made the nomination (a moderator may nominate on someone's behalf)

    Returns
    -------
    Result[Nominee]
        The new nominee with its queue schedule already assigned
    """
    error = validate_name(name)
    if error is not None:
        return Result.failure(error)

    name = name.strip()
    if find_by_name(session, community_id, name) is not None:
        return Result.failure(
            ValidationError(f"{name} has already been nominated.")
        )

    now = now or utcnow()
    nominee = create_nominee(session, community_id, name, nominator, created_at=now)
    apply_queue_schedule(session, community_id, now, settings)
    LOGGER.info(
        f"{nominator} nominated {name} in community {community_id}; "
        f"discussion scheduled for {nominee.discussion_start}"
    )
    return Result.success(nominee)


def queue_position(session: Session, nominee: Nominee) -> int | None:
    """1-based position of an ACTIVE nominee in its community's queue."""
    for index, queued in enumerate(list_queue(session, nominee.community_id)):
        if queued.id == nominee.id:
            return index + 1
    return None


def list_nominations(session: Session, community_id: int) -> list[Nominee]:
    return list_active(session, community_id)


def next_milestone(nominee: Nominee) -> tuple[str, datetime | None]:
    """The next thing that happens to a nominee and when it is due."""
    if nominee.state == NomineeState.ACTIVE:
        return "Discussion", nominee.discussion_start
    if nominee.state == NomineeState.DISCUSSION:
        return "Vote", nominee.vote_start
    if nominee.state == NomineeState.VOTE:
        return "Vote closes", nominee.cleanup_start
    if nominee.state == NomineeState.CLEANUP:
        return "Results posted", None
    return "-", None


def format_nomination_list(
    nominees: list[Nominee], settings: NominationSettings = SETTINGS
) -> str:
    """
    Render open nominations as a plain-text table for a Discord code block.

    Times are shown in the anchor timezone, since code blocks cannot
    render Discord timestamp tags.
    """
    body = []
    for position, nominee in enumerate(nominees, start=1):
        milestone, due = next_milestone(nominee)
        when = (
            due.replace(tzinfo=UTC)
            .astimezone(settings.anchor_timezone)
            .strftime("%m/%d/%Y %H:%M %Z")
            if due is not None
            else "-"
        )
        body.append([position, nominee.name, nominee.state.name.title(), milestone, when])

    return table2ascii(
        header=["#", "Name", "Stage", "Next", "When"],
        body=body,
        style=PresetStyle.borderless,
        alignments=[Alignment.LEFT] * 5,
    )


def remove_nomination(
    session: Session,
    community_id: int,
    name: str,
    now: datetime | None = None,
    settings: NominationSettings = SETTINGS,
) -> Result[RemovedNomination]:
    """Withdraw a nomination.

    A queued nominee is deleted outright. One that has already started is
    archived instead, leaving its channels for the caller to clean up.
    """
    nominee = find_by_name(session, community_id, name)
    if nominee is None:
        return Result.failure(NotFound(f"Nominee {name.strip()}"))

    now = now or utcnow()
    removed = RemovedNomination(
        name=nominee.name,
        community_id=community_id,
        was_in_progress=nominee.is_in_progress,
        discussion_channel_id=nominee.discussion_channel_id,
        vote_channel_id=nominee.vote_channel_id,
    )

    if nominee.state == NomineeState.ACTIVE:
        delete_nominee(session, nominee.id)
        apply_queue_schedule(session, community_id, now, settings)
    else:
        result = transition(session, nominee.id, NomineeState.PAST)
        if not result.ok:
            return Result.failure(result.error or NotFound(f"Nominee {name.strip()}"))
        apply_queue_schedule(session, community_id, now, settings, keep_due_head=False)

    LOGGER.info(
        f"Removed nominee {removed.name} from community {community_id} "
        f"(was in progress: {removed.was_in_progress})"
    )
    return Result.success(removed)


def override_discussion_duration(
    session: Session,
    community_id: int,
    hours: float,
    now: datetime | None = None,
    settings: NominationSettings = SETTINGS,
) -> Result[DiscussionOverride]:
    """Change how long the current discussion lasts, counted from its start.

    If the new length has already elapsed nothing is written and
    ``vote_due`` is set so the caller can open the vote right away.
    Otherwise the vote and cleanup starts move, and when the vote moves
    later the queue behind it is pushed back too.
    """
    if hours < 0:
        return Result.failure(ValidationError("Hours must be a positive number."))

    nominee = find_in_state(session, community_id, NomineeState.DISCUSSION)
    if nominee is None:
        return Result.failure(NotFound("Nominee in discussion"))
    if nominee.discussion_start is None or nominee.vote_start is None:
        return Result.failure(
            MissingPrecondition("Discussion period data is incomplete for this nominee.")
        )

    now = now or utcnow()
    vote_start, cleanup_start = cascade_discussion_override(nominee, hours, settings)
    if vote_start <= now:
        LOGGER.info(
            f"Discussion override of {hours}h for {nominee.name} already elapsed"
        )
        return Result.success(
            DiscussionOverride(nominee, hours, vote_start, cleanup_start, vote_due=True)
        )

    previous_vote_start = nominee.vote_start
    updated = update_nominee(
        session, nominee.id, vote_start=vote_start, cleanup_start=cleanup_start
    )
    if updated is None:
        return Result.failure(NotFound(f"Nominee {nominee.id}"))

    if vote_start > previous_vote_start:
        apply_queue_schedule(session, community_id, now, settings)

    LOGGER.info(
        f"Discussion for {nominee.name} set to {hours}h; vote now starts {vote_start}"
    )
    return Result.success(
        DiscussionOverride(updated, hours, vote_start, cleanup_start, vote_due=False)
    )
