import asyncio

import discord
from discord.ext import commands

from nominationbot.adapters import (
    DiscordAnnouncementNotifier,
    DiscordChannelManager,
    DiscordMemberDirectory,
    DiscordPollTallySource,
)
from nominationbot.config import BOT_TOKEN, GUILD_ID, LOGGER, SETTINGS
from nominationbot.database import SessionLocal, init_db
from nominationbot.scheduler import NominationScheduler


class NominationBot(commands.Bot):
    def __init__(self, command_prefix: str, intents: discord.Intents) -> None:
        super().__init__(command_prefix=command_prefix, intents=intents)

    async def setup_hook(self) -> None:
        LOGGER.info("Starting setup_hook")

        init_db()
        self.db = SessionLocal
        self.scheduler = NominationScheduler(
            db=self.db,
            channels=DiscordChannelManager(self, SETTINGS),
            announcer=DiscordAnnouncementNotifier(self, self.db, settings=SETTINGS),
            polls=DiscordPollTallySource(self),
            members=DiscordMemberDirectory(self),
            settings=SETTINGS,
            wait_until_ready=self.wait_until_ready,
        )

        await self.load_cogs()
        await self.sync_commands()
        self.scheduler.start()

    async def load_cogs(self) -> None:
        LOGGER.info("Loading cogs")
        cog_modules = ["cogs.nomination"]

        for module in cog_modules:
            try:
                LOGGER.info(f"Loading extension: {module}")
                await self.load_extension(f"nominationbot.{module}")
                LOGGER.info(f"Loaded cog: {module}")
            except commands.ExtensionError as e:
                LOGGER.error(f"Failed to load cog {module}")
                LOGGER.error(f"Error: {e!s}")

    async def sync_commands(self) -> None:
        LOGGER.info("Syncing commands")
        if GUILD_ID:
            # Guild sync is immediate, global sync can take up to an hour
            guild = discord.Object(id=GUILD_ID)
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            LOGGER.info(f"Synced {len(synced)} commands to guild {GUILD_ID}")
        else:
            await self.tree.sync()
            LOGGER.info("Synced commands globally")

    async def on_ready(self) -> None:
        LOGGER.info(f"{self.user} has connected!")
        LOGGER.info(f"Member intent enabled: {self.intents.members}")

        for guild in self.guilds:
            LOGGER.info(f"Guild {guild.name} (ID: {guild.id}):")
            LOGGER.info(f"  Cached member count: {len(guild.members)}")

    async def close(self) -> None:
        scheduler = getattr(self, "scheduler", None)
        if scheduler is not None:
            scheduler.stop()
        await super().close()


async def main() -> None:
    intents = discord.Intents.none()
    intents.guilds = True  # Needed to create and manage channels
    intents.guild_messages = True  # Needed to read poll messages
    intents.members = True  # Needed to count eligible members

    bot = NominationBot(command_prefix="!", intents=intents)

    async with bot:
        await bot.start(BOT_TOKEN)


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("Bot shutting down...")


if __name__ == "__main__":
    run()
