import discord
from discord import app_commands
from discord.ext import commands

from nominationbot.config import LOGGER, MOD_ROLE_ID, SETTINGS
from nominationbot.main import NominationBot
from nominationbot.services.nomination import (
    format_nomination_list,
    list_nominations,
    queue_position,
    start_nomination,
)
from nominationbot.util import discord_timestamp


def is_moderator(member: discord.Member | discord.User) -> bool:
    if not isinstance(member, discord.Member):
        return False
    return any(role.id == MOD_ROLE_ID for role in member.roles)


class Nomination(commands.Cog):
    nominate = app_commands.Group(
        name="nominate", description="Nominate members and manage the nomination queue"
    )

    def __init__(self, bot: NominationBot):
        self.bot: NominationBot = bot
        self.caught_up = False
        LOGGER.info("Nomination Cog Initialized")

    @commands.Cog.listener()
    async def on_ready(self) -> None:
        """Advance any stage that came due while the bot was offline.

        on_ready fires again after every gateway reconnect; only the first one
        catches up, the transition loop covers the rest.
        """
        if self.caught_up:
            return
        self.caught_up = True
        try:
            LOGGER.info("Nomination Cog: Catching up on missed transitions...")
            await self.bot.scheduler.trigger_state_transitions()
            LOGGER.info("Nomination Cog: Finished catching up")
        except Exception as e:
            LOGGER.error(f"Error catching up on missed transitions: {e!s}", exc_info=True)

    async def cog_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        if isinstance(error, app_commands.MissingRole):
            message = "❌ Only moderators can use this command."
        else:
            LOGGER.error(f"Error in nominate command: {error!s}", exc_info=error)
            message = "❌ Something went wrong. Try again later."

        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)

    @nominate.command(name="name", description="Nominate someone for membership")
    @app_commands.describe(
        name="The name of the person you are nominating",
        nominator="Moderators only: the member who made this nomination",
    )
    @app_commands.guild_only()
    async def nominate_name(
        self,
        interaction: discord.Interaction,
        name: str,
        nominator: discord.Member | None = None,
    ) -> None:
        if interaction.guild_id is None:
            await interaction.response.send_message(
                "This command can only be used in a server!", ephemeral=True
            )
            return

        if nominator is not None and not is_moderator(interaction.user):
            await interaction.response.send_message(
                "❌ Only moderators can nominate on behalf of someone else.",
                ephemeral=True,
            )
            return

        nominated_by = (nominator or interaction.user).mention
        with self.bot.db.begin() as session:
            result = start_nomination(session, interaction.guild_id, name, nominated_by)
            if not result.ok or result.value is None:
                await interaction.response.send_message(f"❌ {result.error}", ephemeral=True)
                return
            nominee = result.value
            position = queue_position(session, nominee)

        starts = (
            discord_timestamp(nominee.discussion_start)
            if nominee.discussion_start
            else "once scheduled"
        )
        await interaction.response.send_message(
            f"✅ **{nominee.name}** has been nominated by {nominated_by}.\n"
            f"Queue position: {position}. Discussion begins {starts}."
        )

    @nominate.command(name="list", description="Show the current nomination queue")
    @app_commands.guild_only()
    async def nominate_list(self, interaction: discord.Interaction) -> None:
        if interaction.guild_id is None:
            await interaction.response.send_message(
                "This command can only be used in a server!", ephemeral=True
            )
            return

        with self.bot.db.begin() as session:
            nominees = list_nominations(session, interaction.guild_id)

        if nominees:
            table = format_nomination_list(nominees, SETTINGS)
            content = f"**Current Nominations:**\n```\n{table}\n```"
        else:
            content = "**Current Nominations:** None"
        await interaction.response.send_message(content, ephemeral=True)

    @nominate.command(name="remove", description="Remove a nomination")
    @app_commands.describe(name="The name of the nominee to remove")
    @app_commands.checks.has_role(MOD_ROLE_ID)
    @app_commands.guild_only()
    async def nominate_remove(self, interaction: discord.Interaction, name: str) -> None:
        if interaction.guild_id is None:
            return
        await interaction.response.defer(ephemeral=True)

        result = await self.bot.scheduler.remove_nomination(interaction.guild_id, name)
        if not result.ok or result.value is None:
            await interaction.followup.send(f"❌ {result.error}", ephemeral=True)
            return
        await interaction.followup.send(
            f"✅ Removed the nomination of **{result.value.name}**.", ephemeral=True
        )

    @nominate.command(name="start", description="Start a nominee's discussion now")
    @app_commands.describe(name="Nominee to start (defaults to the head of the queue)")
    @app_commands.checks.has_role(MOD_ROLE_ID)
    @app_commands.guild_only()
    async def nominate_start(
        self, interaction: discord.Interaction, name: str | None = None
    ) -> None:
        if interaction.guild_id is None:
            return
        await interaction.response.defer(ephemeral=True)

        result = await self.bot.scheduler.force_start(interaction.guild_id, name)
        if not result.ok or result.value is None:
            await interaction.followup.send(f"❌ {result.error}", ephemeral=True)
            return
        await interaction.followup.send(
            f"✅ Discussion for **{result.value.name}** has started.", ephemeral=True
        )

    @nominate.command(
        name="discussion", description="Set how long the current discussion lasts"
    )
    @app_commands.describe(hours="Total discussion length in hours, from its start")
    @app_commands.checks.has_role(MOD_ROLE_ID)
    @app_commands.guild_only()
    async def nominate_discussion(
        self, interaction: discord.Interaction, hours: float
    ) -> None:
        if interaction.guild_id is None:
            return
        await interaction.response.defer(ephemeral=True)

        result = await self.bot.scheduler.adjust_discussion_duration(
            interaction.guild_id, hours
        )
        if not result.ok or result.value is None:
            await interaction.followup.send(f"❌ {result.error}", ephemeral=True)
            return

        override = result.value
        plural = "s" if hours != 1 else ""
        if override.vote_due:
            message = (
                f"Discussion duration set to {hours:g} hour{plural}, which has already "
                f"elapsed. Voting on **{override.nominee.name}** is now open."
            )
        else:
            message = (
                f"Discussion duration set to {hours:g} hour{plural}. Voting on "
                f"**{override.nominee.name}** begins {discord_timestamp(override.vote_start)}."
            )
        await interaction.followup.send(message, ephemeral=True)

    @nominate.command(name="cleanup", description="Finish the current cleanup period now")
    @app_commands.checks.has_role(MOD_ROLE_ID)
    @app_commands.guild_only()
    async def nominate_cleanup(self, interaction: discord.Interaction) -> None:
        if interaction.guild_id is None:
            return
        await interaction.response.defer(ephemeral=True)

        result = await self.bot.scheduler.force_cleanup(interaction.guild_id)
        if not result.ok or result.value is None:
            await interaction.followup.send(f"❌ {result.error}", ephemeral=True)
            return
        await interaction.followup.send(
            f"✅ The nomination of **{result.value.name}** is complete.", ephemeral=True
        )


async def setup(bot: NominationBot) -> None:
    await bot.add_cog(Nomination(bot))
