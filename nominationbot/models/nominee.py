from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Enum, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy_utils import JSONType

from nominationbot.constants import NomineeState

from .base import Base


def utcnow() -> datetime:
    """Current time as a naive UTC datetime, the form every timestamp is stored in."""
    return datetime.now(UTC).replace(tzinfo=None)


@dataclass(frozen=True)
class VoteOutcome:
    """Tally recorded on a nominee once its vote has been evaluated."""

    yes_votes: int
    no_votes: int
    passed: bool


class Nominee(Base):
    __tablename__ = "nominees"
    __table_args__ = (
        Index("ix_nominees_community_state", "community_id", "state"),
        Index("ix_nominees_community_created", "community_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    state: Mapped[NomineeState] = mapped_column(
        Enum(NomineeState, name="nominee_state"),
        nullable=False,
        default=NomineeState.ACTIVE,
    )
    nominator: Mapped[str] = mapped_column(String(100), nullable=False)
    community_id: Mapped[int] = mapped_column(BigInteger, nullable=False)  # guild id
    created_at: Mapped[datetime] = mapped_column(
        DateTime(), nullable=False, default=utcnow
    )

    discussion_start: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)
    vote_start: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)
    cleanup_start: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)

    discussion_channel_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    vote_channel_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    vote_yes_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    vote_no_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    vote_passed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    announcement_message_ids: Mapped[list[int] | None] = mapped_column(
        JSONType, nullable=True
    )

    @property
    def vote_outcome(self) -> VoteOutcome | None:
        if (
            self.vote_yes_count is None
            or self.vote_no_count is None
            or self.vote_passed is None
        ):
            return None
        return VoteOutcome(
            yes_votes=self.vote_yes_count,
            no_votes=self.vote_no_count,
            passed=self.vote_passed,
        )

    @property
    def is_in_progress(self) -> bool:
        return NomineeState.DISCUSSION <= self.state <= NomineeState.CLEANUP

    def __repr__(self) -> str:
        return (
            f"Nominee(id={self.id!r}, name={self.name!r}, "
            f"state={self.state.name}, community_id={self.community_id!r})"
        )
