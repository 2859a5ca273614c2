from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from nominationbot.constants import IN_PROGRESS_STATES, VALID_TRANSITIONS, NomineeState
from nominationbot.errors import (
    InProgressConflict,
    InvalidTransition,
    MissingPrecondition,
    NotFound,
)
from nominationbot.models.nominee import Nominee
from nominationbot.services.nominee import create_nominee
from nominationbot.services import state_machine
from nominationbot.services.state_machine import can_transition, transition
from tests.utils import GUILD_ID, OTHER_GUILD_ID

NOW = datetime(2024, 3, 18, 13, 0)


def in_progress_count(session: Session, community_id: int = GUILD_ID) -> int:
    query = select(func.count(Nominee.id)).where(
        Nominee.community_id == community_id,
        Nominee.state.in_(sorted(IN_PROGRESS_STATES)),
    )
    return session.execute(query).scalar_one()


@pytest.fixture
def nominee(db_session: Session) -> Nominee:
    return create_nominee(db_session, GUILD_ID, "Alice", "<@1>", created_at=NOW)


@pytest.mark.parametrize("source", list(NomineeState))
@pytest.mark.parametrize("target", list(NomineeState))
def test_can_transition_matches_table(source: NomineeState, target: NomineeState) -> None:
    assert can_transition(source, target) == (target in VALID_TRANSITIONS[source])


def test_past_is_reachable_from_every_open_state() -> None:
    for state in NomineeState:
        if state != NomineeState.PAST:
            assert can_transition(state, NomineeState.PAST)
    assert not VALID_TRANSITIONS[NomineeState.PAST]


def test_transition_to_discussion(db_session: Session, nominee: Nominee) -> None:
    result = transition(
        db_session, nominee.id, NomineeState.DISCUSSION, discussion_start=NOW
    )

    assert result.ok
    assert result.value is not None
    assert result.value.state == NomineeState.DISCUSSION
    assert result.value.discussion_start == NOW


def test_skipping_discussion_is_rejected_without_mutation(
    db_session: Session, nominee: Nominee
) -> None:
    result = transition(db_session, nominee.id, NomineeState.VOTE, vote_start=NOW)

    assert not result.ok
    assert isinstance(result.error, InvalidTransition)
    db_session.refresh(nominee)
    assert nominee.state == NomineeState.ACTIVE
    assert nominee.vote_start is None


def test_vote_requires_discussion_start(db_session: Session, nominee: Nominee) -> None:
    transition(db_session, nominee.id, NomineeState.DISCUSSION)

    result = transition(db_session, nominee.id, NomineeState.VOTE)

    assert isinstance(result.error, MissingPrecondition)
    db_session.refresh(nominee)
    assert nominee.state == NomineeState.DISCUSSION


def test_cleanup_requires_vote_start(db_session: Session, nominee: Nominee) -> None:
    transition(db_session, nominee.id, NomineeState.DISCUSSION, discussion_start=NOW)
    voted = transition(db_session, nominee.id, NomineeState.VOTE, vote_start=NOW)
    assert voted.ok

    db_session.execute(
        Nominee.__table__.update().where(Nominee.id == nominee.id).values(vote_start=None)
    )
    result = transition(db_session, nominee.id, NomineeState.CLEANUP)

    assert isinstance(result.error, MissingPrecondition)


def test_full_lifecycle(db_session: Session, nominee: Nominee) -> None:
    steps = [
        (NomineeState.DISCUSSION, {"discussion_start": NOW}),
        (NomineeState.VOTE, {"vote_start": NOW + timedelta(days=2)}),
        (
            NomineeState.CLEANUP,
            {
                "cleanup_start": NOW + timedelta(days=7),
                "vote_yes_count": 12,
                "vote_no_count": 3,
                "vote_passed": True,
            },
        ),
        (NomineeState.PAST, {}),
    ]
    for target, fields in steps:
        result = transition(db_session, nominee.id, target, **fields)
        assert result.ok, result.error

    db_session.refresh(nominee)
    assert nominee.state == NomineeState.PAST
    assert nominee.vote_outcome is not None
    assert nominee.vote_outcome.passed


def test_second_discussion_conflicts(db_session: Session, nominee: Nominee) -> None:
    other = create_nominee(db_session, GUILD_ID, "Bob", "<@1>", created_at=NOW)
    transition(db_session, nominee.id, NomineeState.DISCUSSION, discussion_start=NOW)

    result = transition(db_session, other.id, NomineeState.DISCUSSION, discussion_start=NOW)

    assert isinstance(result.error, InProgressConflict)
    assert result.error.blocking_name == "Alice"
    assert result.error.blocking_state == NomineeState.DISCUSSION
    assert "Alice" in result.error.message
    db_session.refresh(other)
    assert other.state == NomineeState.ACTIVE
    assert in_progress_count(db_session) == 1


def test_conflict_is_per_community(db_session: Session, nominee: Nominee) -> None:
    elsewhere = create_nominee(db_session, OTHER_GUILD_ID, "Bob", "<@1>", created_at=NOW)
    transition(db_session, nominee.id, NomineeState.DISCUSSION, discussion_start=NOW)

    result = transition(db_session, elsewhere.id, NomineeState.DISCUSSION)

    assert result.ok


def test_single_in_flight_holds_through_any_sequence(db_session: Session) -> None:
    nominees = [
        create_nominee(db_session, GUILD_ID, f"Nominee {i}", "<@1>", created_at=NOW)
        for i in range(4)
    ]
    targets = [
        NomineeState.DISCUSSION,
        NomineeState.VOTE,
        NomineeState.CLEANUP,
        NomineeState.PAST,
    ]
    for target in targets:
        for n in nominees:
            transition(
                db_session,
                n.id,
                target,
                discussion_start=NOW,
                vote_start=NOW,
                cleanup_start=NOW,
            )
            assert in_progress_count(db_session) <= 1


def test_past_is_terminal(db_session: Session, nominee: Nominee) -> None:
    transition(db_session, nominee.id, NomineeState.PAST)

    for target in NomineeState:
        result = transition(db_session, nominee.id, target)
        assert isinstance(result.error, InvalidTransition)

    db_session.refresh(nominee)
    assert nominee.state == NomineeState.PAST


def test_unknown_nominee(db_session: Session) -> None:
    result = transition(db_session, 9999, NomineeState.DISCUSSION)
    assert isinstance(result.error, NotFound)


def test_state_cannot_be_passed_as_a_field(db_session: Session, nominee: Nominee) -> None:
    with pytest.raises(ValueError):
        transition(db_session, nominee.id, NomineeState.DISCUSSION, state=NomineeState.VOTE)


def test_unknown_fields_are_rejected(db_session: Session, nominee: Nominee) -> None:
    with pytest.raises(ValueError):
        transition(db_session, nominee.id, NomineeState.DISCUSSION, name="Mallory")


def write_state_behind_session(session: Session, nominee_id: int, state: NomineeState) -> None:
    """Change a row with a plain table UPDATE, as another writer would."""
    session.execute(
        Nominee.__table__.update().where(Nominee.id == nominee_id).values(state=state)
    )


def test_concurrent_discussion_start_loses_with_conflict(
    db_session: Session, nominee: Nominee, monkeypatch: pytest.MonkeyPatch
) -> None:
    other = create_nominee(db_session, GUILD_ID, "Bob", "<@1>", created_at=NOW)
    validate = state_machine.validate_transition

    def validate_then_race(session, target_nominee, target, fields):
        error = validate(session, target_nominee, target, fields)
        write_state_behind_session(session, nominee.id, NomineeState.DISCUSSION)
        return error

    monkeypatch.setattr(state_machine, "validate_transition", validate_then_race)

    result = transition(db_session, other.id, NomineeState.DISCUSSION, discussion_start=NOW)

    assert isinstance(result.error, InProgressConflict)
    assert result.error.blocking_name == "Alice"
    assert result.error.blocking_state == NomineeState.DISCUSSION
    db_session.refresh(other)
    assert other.state == NomineeState.ACTIVE
    assert other.discussion_start is None
    assert in_progress_count(db_session) == 1


def test_concurrent_state_change_is_not_overwritten(
    db_session: Session, nominee: Nominee, monkeypatch: pytest.MonkeyPatch
) -> None:
    validate = state_machine.validate_transition

    def validate_then_race(session, target_nominee, target, fields):
        error = validate(session, target_nominee, target, fields)
        write_state_behind_session(session, nominee.id, NomineeState.PAST)
        return error

    monkeypatch.setattr(state_machine, "validate_transition", validate_then_race)

    result = transition(db_session, nominee.id, NomineeState.DISCUSSION, discussion_start=NOW)

    assert isinstance(result.error, InvalidTransition)
    assert result.error.source == NomineeState.PAST
    db_session.refresh(nominee)
    assert nominee.state == NomineeState.PAST
    assert nominee.discussion_start is None
