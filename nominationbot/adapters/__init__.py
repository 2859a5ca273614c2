from .announcements import DiscordAnnouncementNotifier
from .channels import DiscordChannelManager
from .members import DiscordMemberDirectory
from .polls import DiscordPollTallySource

__all__ = [
    "DiscordAnnouncementNotifier",
    "DiscordChannelManager",
    "DiscordMemberDirectory",
    "DiscordPollTallySource",
]
