import math
from dataclasses import dataclass
from fractions import Fraction

from nominationbot.config import SETTINGS


@dataclass(frozen=True)
class VoteResults:
    yes_votes: int
    no_votes: int
    total_votes: int
    member_count: int
    quorum_met: bool
    pass_threshold_met: bool
    passed: bool
    required_quorum: int
    required_pass_votes: int

    @property
    def turnout_percent(self) -> int:
        if self.member_count <= 0:
            return 0
        return round(self.total_votes / self.member_count * 100)

    @property
    def yes_percent(self) -> int:
        if self.total_votes <= 0:
            return 0
        return round(self.yes_votes / self.total_votes * 100)


def _ceil_share(count: int, fraction: float) -> int:
    # Exact arithmetic, so 10 * 0.7 is 7 rather than 7.000000000000001
    return math.ceil(count * Fraction(str(fraction)))


def evaluate(
    yes_votes: int,
    no_votes: int,
    eligible_member_count: int,
    quorum_fraction: float = SETTINGS.quorum_fraction,
    pass_fraction: float = SETTINGS.pass_fraction,
) -> VoteResults:
    """
    Decide whether a vote passed.

    Quorum needs ``ceil(eligible * quorum_fraction)`` ballots and approval
    needs ``ceil(total * pass_fraction)`` yes votes; rounding up means a
    threshold is never met by a fractional vote.
    """
    total_votes = yes_votes + no_votes
    required_quorum = _ceil_share(eligible_member_count, quorum_fraction)
    quorum_met = total_votes >= required_quorum
    required_pass_votes = _ceil_share(total_votes, pass_fraction)
    pass_threshold_met = yes_votes >= required_pass_votes

    return VoteResults(
        yes_votes=yes_votes,
        no_votes=no_votes,
        total_votes=total_votes,
        member_count=eligible_member_count,
        quorum_met=quorum_met,
        pass_threshold_met=pass_threshold_met,
        passed=quorum_met and pass_threshold_met,
        required_quorum=required_quorum,
        required_pass_votes=required_pass_votes,
    )
