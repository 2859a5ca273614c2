from datetime import datetime, timedelta
from typing import Any

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from nominationbot.constants import NomineeState
from nominationbot.models.nominee import Nominee
from nominationbot.services.nominee import (
    create_nominee,
    delete_nominee,
    find_by_name,
    find_in_progress,
    find_in_state,
    get_nominee,
    list_active,
    list_communities,
    list_queue,
    update_nominee,
)
from tests.utils import GUILD_ID, OTHER_GUILD_ID

NOW = datetime(2024, 3, 13, 12, 0)


def test_create_nominee(db_session: Session) -> None:
    """Test adding a nominee to the queue."""
    nominee = create_nominee(db_session, GUILD_ID, "Alice", "<@12345>", created_at=NOW)
    db_session.commit()

    nominees = db_session.query(Nominee).all()
    assert len(nominees) == 1
    assert nominees[0].id == nominee.id
    assert nominees[0].state == NomineeState.ACTIVE
    assert nominees[0].nominator == "<@12345>"
    assert nominees[0].created_at == NOW
    assert nominees[0].discussion_start is None


def test_create_nominee_error_handling(
    db_session: Session, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Test that database errors propagate to the caller."""

    def mock_flush(*args: Any, **kwargs: Any) -> None:
        raise SQLAlchemyError("Database error")

    monkeypatch.setattr(db_session, "flush", mock_flush)

    with pytest.raises(SQLAlchemyError):
        create_nominee(db_session, GUILD_ID, "Alice", "<@12345>")


def test_get_nominee(db_session: Session) -> None:
    nominee = create_nominee(db_session, GUILD_ID, "Alice", "<@1>", created_at=NOW)
    assert get_nominee(db_session, nominee.id) is nominee
    assert get_nominee(db_session, 9999) is None


def test_find_by_name_is_case_insensitive(db_session: Session) -> None:
    nominee = create_nominee(db_session, GUILD_ID, "Alice Smith", "<@1>", created_at=NOW)

    assert find_by_name(db_session, GUILD_ID, "alice smith") is nominee
    assert find_by_name(db_session, GUILD_ID, "  ALICE SMITH ") is nominee
    assert find_by_name(db_session, OTHER_GUILD_ID, "Alice Smith") is None


def test_find_by_name_skips_past_unless_asked(db_session: Session) -> None:
    nominee = create_nominee(db_session, GUILD_ID, "Alice", "<@1>", created_at=NOW)
    nominee.state = NomineeState.PAST
    db_session.flush()

    assert find_by_name(db_session, GUILD_ID, "Alice") is None
    assert find_by_name(db_session, GUILD_ID, "Alice", include_past=True) is nominee


def test_list_active_and_queue(db_session: Session) -> None:
    second = create_nominee(
        db_session, GUILD_ID, "Bob", "<@1>", created_at=NOW + timedelta(minutes=5)
    )
    first = create_nominee(db_session, GUILD_ID, "Alice", "<@1>", created_at=NOW)
    voting = create_nominee(
        db_session, GUILD_ID, "Carol", "<@1>", created_at=NOW - timedelta(days=3)
    )
    archived = create_nominee(
        db_session, GUILD_ID, "Dave", "<@1>", created_at=NOW - timedelta(days=30)
    )
    create_nominee(db_session, OTHER_GUILD_ID, "Eve", "<@1>", created_at=NOW)
    voting.state = NomineeState.VOTE
    archived.state = NomineeState.PAST
    db_session.flush()

    assert list_active(db_session, GUILD_ID) == [voting, first, second]
    assert list_queue(db_session, GUILD_ID) == [first, second]


def test_find_in_state_and_in_progress(db_session: Session) -> None:
    queued = create_nominee(db_session, GUILD_ID, "Alice", "<@1>", created_at=NOW)
    cleaning = create_nominee(db_session, GUILD_ID, "Bob", "<@1>", created_at=NOW)
    cleaning.state = NomineeState.CLEANUP
    db_session.flush()

    assert find_in_state(db_session, GUILD_ID, NomineeState.ACTIVE) is queued
    assert find_in_state(db_session, GUILD_ID, NomineeState.VOTE) is None
    assert find_in_progress(db_session, GUILD_ID) is cleaning
    assert find_in_progress(db_session, GUILD_ID, exclude_id=cleaning.id) is None
    assert find_in_progress(db_session, OTHER_GUILD_ID) is None


def test_list_communities(db_session: Session) -> None:
    create_nominee(db_session, OTHER_GUILD_ID, "Alice", "<@1>", created_at=NOW)
    create_nominee(db_session, GUILD_ID, "Bob", "<@1>", created_at=NOW)
    done = create_nominee(db_session, 42, "Carol", "<@1>", created_at=NOW)
    done.state = NomineeState.PAST
    db_session.flush()

    assert list_communities(db_session) == [GUILD_ID, OTHER_GUILD_ID]


def test_update_nominee(db_session: Session) -> None:
    nominee = create_nominee(db_session, GUILD_ID, "Alice", "<@1>", created_at=NOW)

    updated = update_nominee(
        db_session, nominee.id, discussion_channel_id=111, announcement_message_ids=[1, 2]
    )

    assert updated is nominee
    db_session.expire_all()
    stored = get_nominee(db_session, nominee.id)
    assert stored is not None
    assert stored.discussion_channel_id == 111
    assert stored.announcement_message_ids == [1, 2]


def test_update_nominee_rejects_unknown_fields(db_session: Session) -> None:
    nominee = create_nominee(db_session, GUILD_ID, "Alice", "<@1>", created_at=NOW)
    with pytest.raises(ValueError):
        update_nominee(db_session, nominee.id, name="Mallory")


def test_update_nominee_never_touches_past(db_session: Session) -> None:
    nominee = create_nominee(db_session, GUILD_ID, "Alice", "<@1>", created_at=NOW)
    nominee.state = NomineeState.PAST
    db_session.flush()

    assert update_nominee(db_session, nominee.id, vote_channel_id=222) is None
    assert nominee.vote_channel_id is None
    assert update_nominee(db_session, 9999, vote_channel_id=222) is None


def test_delete_nominee(db_session: Session) -> None:
    nominee = create_nominee(db_session, GUILD_ID, "Alice", "<@1>", created_at=NOW)

    assert delete_nominee(db_session, nominee.id)
    assert get_nominee(db_session, nominee.id) is None
    assert not delete_nominee(db_session, nominee.id)


def test_vote_outcome_requires_full_tally(db_session: Session) -> None:
    nominee = create_nominee(db_session, GUILD_ID, "Alice", "<@1>", created_at=NOW)
    assert nominee.vote_outcome is None

    nominee.vote_yes_count = 12
    nominee.vote_no_count = 3
    assert nominee.vote_outcome is None

    nominee.vote_passed = True
    outcome = nominee.vote_outcome
    assert outcome is not None
    assert (outcome.yes_votes, outcome.no_votes, outcome.passed) == (12, 3, True)
