import discord
from discord.ext import commands
from sqlalchemy.orm import Session, sessionmaker

from nominationbot.config import GOVERNANCE_CHANNEL_ID, LOGGER, SETTINGS, NominationSettings
from nominationbot.models.nominee import Nominee
from nominationbot.services.nominee import update_nominee
from nominationbot.util import discord_timestamp, format_duration


class DiscordAnnouncementNotifier:
    """Posts lifecycle announcements to the governance channel.

    Ids of the posted messages are stored on the nominee so superseded
    announcements can be removed once results are out.
    """

    def __init__(
        self,
        bot: commands.Bot,
        db: sessionmaker[Session],
        channel_id: int = GOVERNANCE_CHANNEL_ID,
        settings: NominationSettings = SETTINGS,
    ) -> None:
        self.bot = bot
        self.db = db
        self.channel_id = channel_id
        self.settings = settings

    def _channel(self) -> discord.TextChannel | None:
        channel = self.bot.get_channel(self.channel_id)
        if not channel or not isinstance(channel, discord.TextChannel):
            LOGGER.warning(f"Governance channel {self.channel_id} not found")
            return None
        return channel

    def _remember(self, nominee: Nominee, message_id: int) -> None:
        with self.db.begin() as session:
            stored = session.get(Nominee, nominee.id)
            if stored is None:
                return
            message_ids = [*(stored.announcement_message_ids or []), message_id]
            update_nominee(session, nominee.id, announcement_message_ids=message_ids)

    async def _post(self, nominee: Nominee, embed: discord.Embed) -> bool:
        channel = self._channel()
        if channel is None:
            return False
        try:
            message = await channel.send(embed=embed)
        except discord.HTTPException as e:
            LOGGER.error(f"Error posting announcement for {nominee.name}: {e}")
            return False
        self._remember(nominee, message.id)
        LOGGER.info(f"Posted announcement {message.id} for {nominee.name}")
        return True

    async def _delete_previous(self, nominee: Nominee) -> None:
        channel = self._channel()
        if channel is None:
            return
        with self.db.begin() as session:
            stored = session.get(Nominee, nominee.id)
            message_ids = list(stored.announcement_message_ids or []) if stored else []
            if message_ids:
                update_nominee(session, nominee.id, announcement_message_ids=[])

        for message_id in message_ids:
            try:
                await channel.get_partial_message(message_id).delete()
            except discord.NotFound:
                LOGGER.debug(f"Announcement {message_id} was already deleted")
            except discord.HTTPException as e:
                LOGGER.warning(f"Could not delete announcement {message_id}: {e}")

    async def announce_discussion_start(self, nominee: Nominee, channel_id: int) -> bool:
        embed = discord.Embed(
            title="💬 New Discussion Started",
            description=(
                f"A discussion has started for **{nominee.name}** in <#{channel_id}>.\n"
                "Share your thoughts before voting opens."
            ),
            color=discord.Color.blue(),
        )
        embed.add_field(
            name="Duration",
            value=format_duration(self.settings.discussion_duration_minutes),
            inline=True,
        )
        if nominee.vote_start:
            embed.add_field(
                name="Voting opens", value=discord_timestamp(nominee.vote_start, "R"), inline=True
            )
        return await self._post(nominee, embed)

    async def announce_vote_start(self, nominee: Nominee, channel_id: int) -> bool:
        embed = discord.Embed(
            title="🗳️ New Vote Started",
            description=f"Voting is now open for **{nominee.name}** in <#{channel_id}>.",
            color=discord.Color.gold(),
        )
        embed.add_field(
            name="Duration",
            value=format_duration(self.settings.vote_duration_minutes),
            inline=True,
        )
        embed.add_field(
            name="Requirements",
            value=(
                f"{round(self.settings.quorum_fraction * 100)}% member participation (quorum)\n"
                f"{round(self.settings.pass_fraction * 100)}% approval threshold"
            ),
            inline=False,
        )
        return await self._post(nominee, embed)

    async def announce_results(
        self,
        nominee: Nominee,
        passed: bool,
        yes_votes: int,
        no_votes: int,
        quorum_met: bool,
    ) -> bool:
        await self._delete_previous(nominee)

        if passed:
            outcome = "✅ Nomination Passed"
            color = discord.Color.green()
        elif not quorum_met:
            outcome = "❌ Nomination Failed (quorum not met)"
            color = discord.Color.red()
        else:
            outcome = "❌ Nomination Failed"
            color = discord.Color.red()

        total = yes_votes + no_votes
        embed = discord.Embed(
            title=f"📊 Vote Results: {nominee.name}",
            description=outcome,
            color=color,
        )
        embed.add_field(name="Yes", value=str(yes_votes), inline=True)
        embed.add_field(name="No", value=str(no_votes), inline=True)
        embed.add_field(name="Total", value=str(total), inline=True)
        return await self._post(nominee, embed)
