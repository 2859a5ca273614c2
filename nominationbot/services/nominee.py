from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from nominationbot.config import LOGGER
from nominationbot.constants import IN_PROGRESS_STATES, NomineeState
from nominationbot.models.nominee import Nominee, utcnow

# Columns that may be patched through update_nominee
UPDATABLE_FIELDS = frozenset(
    {
        "state",
        "discussion_start",
        "vote_start",
        "cleanup_start",
        "discussion_channel_id",
        "vote_channel_id",
        "vote_yes_count",
        "vote_no_count",
        "vote_passed",
        "announcement_message_ids",
    }
)


def _queue_order() -> tuple:
    return (Nominee.created_at, Nominee.id)


def create_nominee(
    session: Session,
    community_id: int,
    name: str,
    nominator: str,
    created_at: datetime | None = None,
) -> Nominee:
    """Insert a new ACTIVE nominee and flush so it receives its id."""
    try:
        nominee = Nominee(
            community_id=community_id,
            name=name,
            nominator=nominator,
            state=NomineeState.ACTIVE,
            created_at=created_at or utcnow(),
        )
        session.add(nominee)
        session.flush()
        LOGGER.info(
            f"Created nominee {nominee.id} ({name}) in community {community_id}"
        )
        return nominee
    except Exception as e:
        LOGGER.error(f"Error creating nominee {name} in community {community_id}: {e!s}")
        raise


def get_nominee(session: Session, nominee_id: int) -> Nominee | None:
    return session.get(Nominee, nominee_id)


def find_by_name(
    session: Session, community_id: int, name: str, include_past: bool = False
) -> Nominee | None:
    """Find a nominee by name (case-insensitive), most recent first.

    Parameters
    ----------
    session: Session
        The database session
    community_id: int
        The Discord guild the nomination belongs to
    name: str
        The nominee name to look up
    include_past: bool
        Whether archived (PAST) nominees may match

    Returns
    -------
    Nominee | None
        The most recently created match, if any
    """
    query = select(Nominee).where(
        Nominee.community_id == community_id,
        func.lower(Nominee.name) == name.strip().lower(),
    )
    if not include_past:
        query = query.where(Nominee.state != NomineeState.PAST)
    query = query.order_by(Nominee.created_at.desc(), Nominee.id.desc())
    return session.execute(query).scalars().first()


def list_active(session: Session, community_id: int) -> list[Nominee]:
    """Get every non-archived nominee of a community in queue order."""
    try:
        query = (
            select(Nominee)
            .where(
                Nominee.community_id == community_id,
                Nominee.state != NomineeState.PAST,
            )
            .order_by(*_queue_order())
        )
        return list(session.execute(query).scalars().all())
    except Exception as e:
        LOGGER.error(f"Error listing nominees for community {community_id}: {e!s}")
        raise


def list_queue(session: Session, community_id: int) -> list[Nominee]:
    """Get the ACTIVE nominees of a community; index + 1 is the queue position."""
    query = (
        select(Nominee)
        .where(
            Nominee.community_id == community_id,
            Nominee.state == NomineeState.ACTIVE,
        )
        .order_by(*_queue_order())
    )
    return list(session.execute(query).scalars().all())


def find_in_state(
    session: Session, community_id: int, state: NomineeState
) -> Nominee | None:
    query = (
        select(Nominee)
        .where(Nominee.community_id == community_id, Nominee.state == state)
        .order_by(*_queue_order())
    )
    return session.execute(query).scalars().first()


def find_in_progress(
    session: Session, community_id: int, exclude_id: int | None = None
) -> Nominee | None:
    """Get the nominee currently in discussion, vote or cleanup, if any."""
    query = select(Nominee).where(
        Nominee.community_id == community_id,
        Nominee.state.in_(sorted(IN_PROGRESS_STATES)),
    )
    if exclude_id is not None:
        query = query.where(Nominee.id != exclude_id)
    return session.execute(query.order_by(*_queue_order())).scalars().first()


def list_communities(session: Session) -> list[int]:
    """Get every community that still has a non-archived nominee."""
    query = (
        select(Nominee.community_id)
        .where(Nominee.state != NomineeState.PAST)
        .distinct()
        .order_by(Nominee.community_id)
    )
    return list(session.execute(query).scalars().all())


def update_nominee(session: Session, nominee_id: int, **patch: Any) -> Nominee | None:
    """Apply a patch of column values to a nominee.

    Returns None when the nominee does not exist or is already PAST, since
    archived nominees are never modified.
    """
    unknown = set(patch) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update nominee fields: {sorted(unknown)}")

    nominee = session.get(Nominee, nominee_id)
    if nominee is None:
        LOGGER.warning(f"Tried to update missing nominee {nominee_id}")
        return None
    if nominee.state == NomineeState.PAST:
        LOGGER.warning(f"Refusing to update archived nominee {nominee_id}")
        return None

    for field, value in patch.items():
        setattr(nominee, field, value)
    session.flush()
    return nominee


def delete_nominee(session: Session, nominee_id: int) -> bool:
    nominee = session.get(Nominee, nominee_id)
    if nominee is None:
        return False
    session.delete(nominee)
    session.flush()
    LOGGER.info(f"Deleted nominee {nominee_id} ({nominee.name})")
    return True
