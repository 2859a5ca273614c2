import logging
import os
import sys
from dataclasses import dataclass
from typing import Final
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

from nominationbot.constants import Weekday

load_dotenv()

DB_CONNECTION_STRING = os.getenv("DB_CONNECTION_STRING") or "sqlite:///nominations.db"
BOT_TOKEN = os.getenv("BOT_TOKEN") or ""
LOG_FILE = os.getenv("LOG_FILE") or "bot.log"

GUILD_ID = int(os.getenv("GUILD_ID") or 0)
GOVERNANCE_CHANNEL_ID = int(os.getenv("GOVERNANCE_CHANNEL_ID") or 0)
NOMINATIONS_CATEGORY_ID = int(os.getenv("NOMINATIONS_CATEGORY_ID") or 0)
MOD_ROLE_ID = int(os.getenv("MOD_ROLE_ID") or 0)

# When > 0, replaces the live non-bot member count used for quorum
ELIGIBLE_COUNT_OVERRIDE = int(os.getenv("ELIGIBLE_COUNT_OVERRIDE") or 0)

# Upper bound for any single Discord call made during a sweep
COLLABORATOR_TIMEOUT_SECONDS = float(os.getenv("COLLABORATOR_TIMEOUT_SECONDS") or 10)


@dataclass(frozen=True)
class NominationSettings:
    """Durations, weekly anchor and vote thresholds for the nomination process."""

    discussion_duration_minutes: int = 2880
    vote_duration_minutes: int = 7200
    cleanup_duration_minutes: int = 1440
    anchor_weekday: Weekday = Weekday.MONDAY
    anchor_hour: int = 9
    anchor_timezone: ZoneInfo = ZoneInfo("America/New_York")
    quorum_fraction: float = 0.40
    pass_fraction: float = 0.80

    @classmethod
    def from_env(cls) -> "NominationSettings":
        return cls(
            discussion_duration_minutes=int(
                os.getenv("NOMINATE_DISCUSSION_PERIOD_MINUTES") or 2880
            ),
            vote_duration_minutes=int(os.getenv("NOMINATE_VOTE_PERIOD_MINUTES") or 7200),
            cleanup_duration_minutes=int(
                os.getenv("NOMINATE_CLEANUP_PERIOD_MINUTES") or 1440
            ),
            anchor_weekday=Weekday[
                (os.getenv("NOMINATE_ANCHOR_WEEKDAY") or "MONDAY").upper()
            ],
            anchor_hour=int(os.getenv("NOMINATE_ANCHOR_HOUR") or 9),
            anchor_timezone=ZoneInfo(
                os.getenv("NOMINATE_ANCHOR_TIMEZONE") or "America/New_York"
            ),
            quorum_fraction=float(os.getenv("NOMINATE_QUORUM_FRACTION") or 0.40),
            pass_fraction=float(os.getenv("NOMINATE_PASS_FRACTION") or 0.80),
        )


SETTINGS: Final[NominationSettings] = NominationSettings.from_env()


def is_running_tests() -> bool:
    """Check if code is being run by pytest."""
    return "pytest" in sys.modules


def setup_logger() -> logging.Logger:
    logger = logging.getLogger("nominationbot")
    # Set DEBUG level for tests, INFO for normal running
    logger.setLevel(logging.DEBUG if is_running_tests() else logging.INFO)

    # Create handlers
    c_handler = logging.StreamHandler(sys.stdout)
    f_handler = logging.FileHandler(LOG_FILE)

    # Console shows DEBUG for tests, INFO for normal running
    c_handler.setLevel(logging.DEBUG if is_running_tests() else logging.INFO)
    f_handler.setLevel(logging.DEBUG)  # File always logs DEBUG

    # Create formatters and add it to handlers
    format = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    c_handler.setFormatter(format)
    f_handler.setFormatter(format)

    # Add handlers to the logger
    logger.addHandler(c_handler)
    logger.addHandler(f_handler)

    return logger


LOGGER: Final[logging.Logger] = setup_logger()
