import discord
from discord.ext import commands

from nominationbot.adapters.channels import POLL_NO, POLL_YES
from nominationbot.config import LOGGER
from nominationbot.interfaces import PollTally

# How far back in a vote channel to look for the poll message
POLL_HISTORY_LIMIT = 50


class DiscordPollTallySource:
    """Reads the native Discord poll the bot posted in a vote channel."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    async def _find_poll(self, channel: discord.TextChannel) -> discord.Poll | None:
        async for message in channel.history(limit=POLL_HISTORY_LIMIT, oldest_first=True):
            if message.poll is not None and self.bot.user and message.author.id == self.bot.user.id:
                return message.poll
        return None

    async def fetch_tally(self, vote_channel_id: int) -> PollTally | None:
        channel = self.bot.get_channel(vote_channel_id)
        if not channel or not isinstance(channel, discord.TextChannel):
            LOGGER.warning(f"Vote channel {vote_channel_id} not found")
            return None

        poll = await self._find_poll(channel)
        if poll is None:
            LOGGER.debug(f"No poll found in vote channel {vote_channel_id}")
            return None

        counts = {answer.text: answer.vote_count for answer in poll.answers}
        tally = PollTally(
            yes=counts.get(POLL_YES, 0),
            no=counts.get(POLL_NO, 0),
            completed=poll.is_finalised(),
        )
        LOGGER.debug(f"Poll in channel {vote_channel_id}: {tally}")
        return tally
