import re
from datetime import UTC, datetime


def discord_timestamp(value: datetime, style: str = "f") -> str:
    """Render a stored (naive UTC) datetime as a Discord timestamp tag."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return f"<t:{int(value.timestamp())}:{style}>"


def format_duration(minutes: int) -> str:
    """Format a number of minutes as e.g. ``2 days``, ``36 hours`` or ``45 minutes``."""
    if minutes % 1440 == 0:
        days = minutes // 1440
        return f"{days} day{'s' if days != 1 else ''}"
    if minutes % 60 == 0:
        hours = minutes // 60
        return f"{hours} hour{'s' if hours != 1 else ''}"
    return f"{minutes} minute{'s' if minutes != 1 else ''}"


def channel_name(prefix: str, nominee_name: str) -> str:
    """Build a Discord-safe text channel name such as ``discussion-jane-doe``."""
    slug = re.sub(r"[^a-z0-9]+", "-", nominee_name.lower()).strip("-")
    return f"{prefix}{slug or 'nominee'}"[:100]
