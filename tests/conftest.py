import logging
import os
import sys
from collections.abc import Generator
from datetime import datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest
import pytest_asyncio
from sqlalchemy.orm import Session

# Add the project root to the path so we can import modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# Mock environment variables before importing any app modules
os.environ["DB_CONNECTION_STRING"] = "sqlite:///:memory:"
os.environ["BOT_TOKEN"] = "test_token"
os.environ["LOG_FILE"] = os.devnull

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from nominationbot.config import NominationSettings
from nominationbot.errors import Result
from nominationbot.models import register_models
from nominationbot.models.base import Base
from nominationbot.models.nominee import Nominee
from nominationbot.scheduler import NominationScheduler
from nominationbot.services.nominee import create_nominee
from tests.utils import DISCUSSION_CHANNEL_ID, GUILD_ID, VOTE_CHANNEL_ID, InteractionMock

# Set up logging
logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


@pytest.fixture
def engine() -> Engine:
    """Create an in-memory SQLite database shared by every session of a test."""
    return create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture
def tables(engine: Engine) -> Generator[None]:
    """Create all tables in the test database."""
    register_models()
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture
def db(engine: Engine, tables: None) -> sessionmaker[Session]:
    """Session factory configured like the bot's SessionLocal."""
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def db_session(engine: Engine, tables: None) -> Generator[Session]:
    """Create a new database session for a test."""
    connection = engine.connect()
    transaction = connection.begin()
    session_factory = sessionmaker(bind=connection)
    session = session_factory()

    yield session

    session.close()
    # Only rollback if the transaction is still active
    if transaction.is_active:
        transaction.rollback()
    connection.close()


@pytest.fixture
def settings() -> NominationSettings:
    """Default nomination policy: 2 day discussion, 5 day vote, 1 day cleanup."""
    return NominationSettings()


@pytest.fixture
def channels() -> AsyncMock:
    channels = AsyncMock()
    channels.create_discussion_channel.return_value = Result.success(DISCUSSION_CHANNEL_ID)
    channels.create_vote_channel.return_value = Result.success(VOTE_CHANNEL_ID)
    channels.archive.return_value = True
    channels.delete.return_value = True
    return channels


@pytest.fixture
def announcer() -> AsyncMock:
    announcer = AsyncMock()
    announcer.announce_discussion_start.return_value = True
    announcer.announce_vote_start.return_value = True
    announcer.announce_results.return_value = True
    return announcer


@pytest.fixture
def polls() -> AsyncMock:
    polls = AsyncMock()
    polls.fetch_tally.return_value = None
    return polls


@pytest.fixture
def members() -> AsyncMock:
    members = AsyncMock()
    members.eligible_member_count.return_value = 25
    return members


@pytest.fixture
def scheduler(
    db: sessionmaker[Session],
    channels: AsyncMock,
    announcer: AsyncMock,
    polls: AsyncMock,
    members: AsyncMock,
    settings: NominationSettings,
) -> NominationScheduler:
    return NominationScheduler(
        db=db,
        channels=channels,
        announcer=announcer,
        polls=polls,
        members=members,
        settings=settings,
        timeout=0.5,
    )


@pytest.fixture
def add_nominee(db: sessionmaker[Session]) -> Any:
    """Insert a nominee directly, bypassing queue scheduling."""

    def _add(
        name: str,
        created_at: datetime,
        community_id: int = GUILD_ID,
        **fields: Any,
    ) -> Nominee:
        with db.begin() as session:
            nominee = create_nominee(
                session, community_id, name, "<@1>", created_at=created_at
            )
            for field, value in fields.items():
                setattr(nominee, field, value)
        return nominee

    return _add


@pytest_asyncio.fixture(scope="function")
async def mock_bot() -> MagicMock:
    """Create a simple mock bot."""
    bot = MagicMock()
    bot.wait_until_ready = AsyncMock()
    return bot


@pytest_asyncio.fixture
async def mock_interaction() -> discord.Interaction:
    """Create a mock Discord interaction for testing."""
    return InteractionMock()
