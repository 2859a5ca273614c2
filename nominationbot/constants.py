from enum import IntEnum


class NomineeState(IntEnum):
    """Lifecycle states of a nominee, in the order a nomination moves through them."""

    ACTIVE = 1
    DISCUSSION = 2
    VOTE = 3
    CLEANUP = 4
    PAST = 5


# States that count toward the single nomination allowed in flight per community
IN_PROGRESS_STATES = frozenset(
    {NomineeState.DISCUSSION, NomineeState.VOTE, NomineeState.CLEANUP}
)

VALID_TRANSITIONS: dict[NomineeState, frozenset[NomineeState]] = {
    NomineeState.ACTIVE: frozenset({NomineeState.DISCUSSION, NomineeState.PAST}),
    NomineeState.DISCUSSION: frozenset({NomineeState.VOTE, NomineeState.PAST}),
    NomineeState.VOTE: frozenset({NomineeState.CLEANUP, NomineeState.PAST}),
    NomineeState.CLEANUP: frozenset({NomineeState.PAST}),
    NomineeState.PAST: frozenset(),
}

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 100

# Extra time after a vote closes before results are assumed final
VOTE_FINALIZATION_BUFFER_MINUTES = 1

TRANSITION_SWEEP_INTERVAL_MINUTES = 1
RECALCULATION_SWEEP_INTERVAL_HOURS = 1

DISCUSSION_CHANNEL_PREFIX = "discussion-"
VOTE_CHANNEL_PREFIX = "vote-"

# Discord caps native poll duration at 32 days
MAX_POLL_DURATION_HOURS = 768


class Weekday(IntEnum):
    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6
