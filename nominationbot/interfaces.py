"""Contracts for the Discord side effects the lifecycle scheduler triggers.

The scheduler only depends on these protocols; ``nominationbot.adapters``
holds the discord.py implementations and tests pass mocks.
"""

from dataclasses import dataclass
from typing import Protocol

from nominationbot.errors import Result
from nominationbot.models.nominee import Nominee


@dataclass(frozen=True)
class PollTally:
    yes: int
    no: int
    completed: bool


class ChannelLifecycleManager(Protocol):
    async def create_discussion_channel(self, nominee: Nominee) -> Result[int]: ...

    async def create_vote_channel(self, nominee: Nominee) -> Result[int]: ...

    async def archive(self, channel_id: int, reason: str) -> bool: ...

    async def delete(self, channel_id: int, reason: str) -> bool: ...


class AnnouncementNotifier(Protocol):
    async def announce_discussion_start(self, nominee: Nominee, channel_id: int) -> bool: ...

    async def announce_vote_start(self, nominee: Nominee, channel_id: int) -> bool: ...

    async def announce_results(
        self,
        nominee: Nominee,
        passed: bool,
        yes_votes: int,
        no_votes: int,
        quorum_met: bool,
    ) -> bool: ...


class PollTallySource(Protocol):
    async def fetch_tally(self, vote_channel_id: int) -> PollTally | None:
        """Current tally of the vote in a channel, or None if there is no poll yet."""
        ...


class MemberDirectory(Protocol):
    async def eligible_member_count(self, community_id: int) -> int: ...
