import asyncio
import contextlib
import logging
from datetime import datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import discord

from nominationbot.interfaces import PollTally

logger = logging.getLogger(__name__)

GUILD_ID = 1234
OTHER_GUILD_ID = 5678
DISCUSSION_CHANNEL_ID = 111
VOTE_CHANNEL_ID = 222

# Monday 2024-03-18 09:00 America/New_York, stored as naive UTC
MONDAY_ANCHOR = datetime(2024, 3, 18, 13, 0)


def tally(yes: int, no: int, completed: bool = True) -> PollTally:
    return PollTally(yes=yes, no=no, completed=completed)


class InteractionMock(MagicMock):
    """Custom mock class for Discord Interaction."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.guild_id = GUILD_ID

        # Mock the response
        response = MagicMock()
        response.send_message = AsyncMock()
        response.defer = AsyncMock()
        response.is_done = MagicMock(return_value=False)
        self.response = response

        # Mock the followup
        followup = MagicMock()
        followup.send = AsyncMock()
        self.followup = followup

        # Create a proper Member mock for the user
        user = MagicMock(spec=discord.Member)
        user.id = 12345
        user.display_name = "TestUser"
        user.mention = "<@12345>"
        user.roles = []
        self.user = user


@contextlib.asynccontextmanager
async def track_tasks():
    """Context manager to track and cleanup tasks created during a test."""
    before = set(asyncio.all_tasks())
    try:
        yield
    finally:
        after = set(asyncio.all_tasks())
        new_tasks = after - before
        if new_tasks:
            logger.warning(f"Cleaning up {len(new_tasks)} tasks")
            for task in new_tasks:
                if not task.done() and not task.cancelled():
                    task.cancel()
            try:
                async with asyncio.timeout(1.0):
                    await asyncio.gather(*new_tasks, return_exceptions=True)
            except TimeoutError:
                logger.error("Task cleanup timed out")
