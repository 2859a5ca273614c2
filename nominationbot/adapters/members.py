from discord.ext import commands

from nominationbot.config import ELIGIBLE_COUNT_OVERRIDE, LOGGER


class DiscordMemberDirectory:
    def __init__(self, bot: commands.Bot, override: int = ELIGIBLE_COUNT_OVERRIDE) -> None:
        self.bot = bot
        self.override = override

    async def eligible_member_count(self, community_id: int) -> int:
        """Number of non-bot members who can vote, or the configured override."""
        if self.override > 0:
            return self.override

        guild = self.bot.get_guild(community_id)
        if guild is None:
            raise LookupError(f"Guild {community_id} is not available")

        count = sum(1 for member in guild.members if not member.bot)
        LOGGER.debug(f"Guild {community_id} has {count} eligible members")
        return count
