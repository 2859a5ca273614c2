"""Validated state transitions for nominees.

Every change of ``Nominee.state`` goes through :func:`transition` so the
single-in-flight rule and the timestamp ordering rules live in one place.
"""

from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session, aliased

from nominationbot.config import LOGGER
from nominationbot.constants import IN_PROGRESS_STATES, VALID_TRANSITIONS, NomineeState
from nominationbot.errors import (
    InProgressConflict,
    InvalidTransition,
    MissingPrecondition,
    NominationError,
    NotFound,
    Result,
)
from nominationbot.models.nominee import Nominee
from nominationbot.services.nominee import UPDATABLE_FIELDS, find_in_progress


def can_transition(source: NomineeState, target: NomineeState) -> bool:
    return target in VALID_TRANSITIONS[source]


def validate_transition(
    session: Session,
    nominee: Nominee,
    target: NomineeState,
    fields: dict[str, Any],
) -> NominationError | None:
    """Check a transition against the table and the target's preconditions."""
    if not can_transition(nominee.state, target):
        return InvalidTransition(source=nominee.state, target=target)

    if target == NomineeState.DISCUSSION:
        blocking = find_in_progress(session, nominee.community_id, exclude_id=nominee.id)
        if blocking is not None:
            return InProgressConflict(
                blocking_name=blocking.name, blocking_state=blocking.state
            )

    elif target == NomineeState.VOTE:
        discussion_start = fields.get("discussion_start", nominee.discussion_start)
        if discussion_start is None:
            return MissingPrecondition(
                "Discussion start time must be set before starting vote."
            )

    elif target == NomineeState.CLEANUP:
        vote_start = fields.get("vote_start", nominee.vote_start)
        if vote_start is None:
            return MissingPrecondition(
                "Vote start time must be set before starting cleanup."
            )

    return None


def _conditional_update(
    session: Session,
    nominee: Nominee,
    expected: NomineeState,
    target: NomineeState,
    fields: dict[str, Any],
) -> int:
    """UPDATE guarded on the state we validated against; returns affected rows."""
    stmt = (
        update(Nominee)
        .where(Nominee.id == nominee.id, Nominee.state == expected)
        .values(state=target, **fields)
        .execution_options(synchronize_session=False)
    )
    if target == NomineeState.DISCUSSION:
        other = aliased(Nominee)
        blocker = (
            select(other.id)
            .where(
                other.community_id == nominee.community_id,
                other.state.in_(sorted(IN_PROGRESS_STATES)),
                other.id != nominee.id,
            )
            .exists()
        )
        stmt = stmt.where(~blocker)
    return session.execute(stmt).rowcount


def transition(
    session: Session,
    nominee_id: int,
    target: NomineeState,
    **fields: Any,
) -> Result[Nominee]:
    """
    Move a nominee to ``target`` and persist any supplied fields with it.

    Parameters
    ----------
    session: Session
        The database session; the caller owns the surrounding transaction
    nominee_id: int
        The nominee to move
    target: NomineeState
        The state to move to
    **fields
        Column values written in the same UPDATE, typically a ``*_start``
        timestamp or tally results

    Returns
    -------
    Result[Nominee]
        The refreshed nominee, or the reason the transition was refused.
        The stored record is untouched whenever an error is returned.
    """
    unknown = set(fields) - UPDATABLE_FIELDS - {"state"}
    if unknown or "state" in fields:
        raise ValueError(f"Cannot set nominee fields in a transition: {sorted(fields)}")

    session.flush()
    nominee = session.get(Nominee, nominee_id)
    if nominee is None:
        return Result.failure(NotFound(f"Nominee {nominee_id}"))

    # Re-read so a concurrent writer's change is seen before validating
    session.refresh(nominee)
    source = nominee.state

    error = validate_transition(session, nominee, target, fields)
    if error is not None:
        LOGGER.info(
            f"Refused transition of nominee {nominee.id} ({nominee.name}) "
            f"{source.name} -> {target.name}: {error.message}"
        )
        return Result.failure(error)

    if _conditional_update(session, nominee, source, target, fields) == 0:
        # Lost a race between the check above and the write
        session.refresh(nominee)
        LOGGER.warning(
            f"Transition of nominee {nominee.id} {source.name} -> {target.name} "
            f"lost a race; state is now {nominee.state.name}"
        )
        if nominee.state != source:
            return Result.failure(InvalidTransition(source=nominee.state, target=target))
        blocking = find_in_progress(session, nominee.community_id, exclude_id=nominee.id)
        if blocking is not None:
            session.refresh(blocking)
            return Result.failure(
                InProgressConflict(
                    blocking_name=blocking.name, blocking_state=blocking.state
                )
            )
        return Result.failure(InvalidTransition(source=source, target=target))

    session.refresh(nominee)
    LOGGER.info(
        f"Nominee {nominee.id} ({nominee.name}) transitioned "
        f"{source.name} -> {target.name} in community {nominee.community_id}"
    )
    return Result.success(nominee)
