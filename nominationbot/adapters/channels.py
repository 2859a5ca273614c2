import math
from datetime import timedelta

import discord
from discord.ext import commands

from nominationbot.config import LOGGER, NOMINATIONS_CATEGORY_ID, SETTINGS, NominationSettings
from nominationbot.constants import (
    DISCUSSION_CHANNEL_PREFIX,
    MAX_POLL_DURATION_HOURS,
    VOTE_CHANNEL_PREFIX,
)
from nominationbot.errors import NotFound, Result, SideEffectFailure
from nominationbot.models.nominee import Nominee
from nominationbot.util import channel_name, discord_timestamp, format_duration

POLL_YES = "Yes"
POLL_NO = "No"


class DiscordChannelManager:
    """Creates, archives and deletes the per-nominee discussion and vote channels."""

    def __init__(
        self,
        bot: commands.Bot,
        settings: NominationSettings = SETTINGS,
        category_id: int = NOMINATIONS_CATEGORY_ID,
    ) -> None:
        self.bot = bot
        self.settings = settings
        self.category_id = category_id

    def _category(self, guild: discord.Guild) -> discord.CategoryChannel | None:
        category = guild.get_channel(self.category_id) if self.category_id else None
        return category if isinstance(category, discord.CategoryChannel) else None

    async def _create_channel(
        self, nominee: Nominee, prefix: str, topic: str
    ) -> Result[discord.TextChannel]:
        guild = self.bot.get_guild(nominee.community_id)
        if guild is None:
            return Result.failure(NotFound(f"Guild {nominee.community_id}"))

        try:
            channel = await guild.create_text_channel(
                channel_name(prefix, nominee.name),
                category=self._category(guild),
                topic=topic,
                reason=f"Nomination of {nominee.name}",
            )
        except discord.Forbidden as e:
            LOGGER.error(f"Bot does not have permission to create channels: {e}")
            return Result.failure(SideEffectFailure("create channel", "missing permissions"))
        except discord.HTTPException as e:
            LOGGER.error(f"Error creating {prefix} channel for {nominee.name}: {e}")
            return Result.failure(SideEffectFailure("create channel", str(e)))

        LOGGER.info(f"Created channel #{channel.name} ({channel.id}) for {nominee.name}")
        return Result.success(channel)

    async def create_discussion_channel(self, nominee: Nominee) -> Result[int]:
        created = await self._create_channel(
            nominee,
            DISCUSSION_CHANNEL_PREFIX,
            f"Discussion of the nomination of {nominee.name}",
        )
        if not created.ok or created.value is None:
            return Result.failure(created.error or SideEffectFailure("create channel", ""))
        channel = created.value

        embed = discord.Embed(
            title=f"💬 Discussion: {nominee.name}",
            description=(
                f"**{nominee.name}** has been nominated by {nominee.nominator}.\n\n"
                "Share your thoughts on this nomination here. "
                "Voting opens automatically when the discussion period ends."
            ),
            color=discord.Color.blue(),
        )
        embed.add_field(name="Nominated by", value=nominee.nominator, inline=True)
        embed.add_field(
            name="Duration",
            value=format_duration(self.settings.discussion_duration_minutes),
            inline=True,
        )
        if nominee.vote_start:
            embed.add_field(
                name="Vote starts", value=discord_timestamp(nominee.vote_start), inline=True
            )

        try:
            message = await channel.send(embed=embed)
            await message.pin()
        except discord.HTTPException as e:
            # The channel exists; a missing intro message is not worth failing over
            LOGGER.error(f"Error posting discussion intro for {nominee.name}: {e}")

        return Result.success(channel.id)

    async def create_vote_channel(self, nominee: Nominee) -> Result[int]:
        created = await self._create_channel(
            nominee, VOTE_CHANNEL_PREFIX, f"Vote on the nomination of {nominee.name}"
        )
        if not created.ok or created.value is None:
            return Result.failure(created.error or SideEffectFailure("create channel", ""))
        channel = created.value

        hours = min(
            max(math.ceil(self.settings.vote_duration_minutes / 60), 1), MAX_POLL_DURATION_HOURS
        )
        poll = discord.Poll(
            question=f"Should we invite {nominee.name}?",
            duration=timedelta(hours=hours),
        )
        poll.add_answer(text=POLL_YES)
        poll.add_answer(text=POLL_NO)

        try:
            message = await channel.send(
                content=(
                    f"# 🗳️ Vote: {nominee.name} 🗳️\n\n"
                    f"The anonymous vote for **{nominee.name}** is now live for "
                    f"{format_duration(self.settings.vote_duration_minutes)}.\n"
                    f"Quorum: {round(self.settings.quorum_fraction * 100)}% of members. "
                    f"Passing needs {round(self.settings.pass_fraction * 100)}% yes."
                ),
                poll=poll,
            )
            await message.pin()
        except discord.HTTPException as e:
            LOGGER.error(f"Error posting vote poll for {nominee.name}: {e}")
            # Only a returned channel id is ever cleaned up later
            try:
                await channel.delete(reason=f"Vote poll for {nominee.name} could not be posted")
            except discord.HTTPException as delete_error:
                LOGGER.error(
                    f"Vote channel {channel.id} for {nominee.name} is orphaned: {delete_error}"
                )
            return Result.failure(SideEffectFailure("post vote poll", str(e)))

        LOGGER.debug(f"Vote poll for {nominee.name} posted as message {message.id}")
        return Result.success(channel.id)

    async def archive(self, channel_id: int, reason: str) -> bool:
        """Lock a channel so it stays readable but nobody can post."""
        channel = self.bot.get_channel(channel_id)
        if not channel or not isinstance(channel, discord.TextChannel):
            LOGGER.error(f"Could not find channel with ID {channel_id} to archive")
            return False
        try:
            await channel.set_permissions(
                channel.guild.default_role, send_messages=False, reason=reason
            )
            await channel.edit(name=f"archived-{channel.name}"[:100], reason=reason)
        except discord.HTTPException as e:
            LOGGER.error(f"Error archiving channel {channel_id}: {e}")
            return False
        LOGGER.info(f"Archived channel {channel_id}: {reason}")
        return True

    async def delete(self, channel_id: int, reason: str) -> bool:
        channel = self.bot.get_channel(channel_id)
        if not channel or not isinstance(channel, discord.TextChannel):
            LOGGER.error(f"Could not find channel with ID {channel_id} to delete")
            return False
        try:
            await channel.delete(reason=reason)
        except discord.HTTPException as e:
            LOGGER.error(f"Error deleting channel {channel_id}: {e}")
            return False
        LOGGER.info(f"Deleted channel {channel_id}: {reason}")
        return True
