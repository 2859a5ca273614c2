"""Background driver of the nomination lifecycle.

Two ``discord.ext.tasks`` loops run on the bot's event loop: a transition
sweep every minute that moves due nominees to their next stage, and an
hourly recalculation of queued schedules. Communities are processed one
after another, each in its own transactions, and Discord side effects run
after the state change they belong to has been committed.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import TypeVar

from discord.ext import tasks
from sqlalchemy.orm import Session, sessionmaker

from nominationbot.config import COLLABORATOR_TIMEOUT_SECONDS, LOGGER, SETTINGS, NominationSettings
from nominationbot.constants import (
    RECALCULATION_SWEEP_INTERVAL_HOURS,
    TRANSITION_SWEEP_INTERVAL_MINUTES,
    NomineeState,
)
from nominationbot.errors import NotFound, Result
from nominationbot.interfaces import (
    AnnouncementNotifier,
    ChannelLifecycleManager,
    MemberDirectory,
    PollTallySource,
)
from nominationbot.models.nominee import Nominee, utcnow
from nominationbot.services.nomination import (
    DiscussionOverride,
    RemovedNomination,
    override_discussion_duration,
)
from nominationbot.services.nomination import remove_nomination as remove_nominee
from nominationbot.services.nominee import (
    find_by_name,
    find_in_progress,
    find_in_state,
    list_communities,
    list_queue,
    update_nominee,
)
from nominationbot.services.schedule import (
    apply_queue_schedule,
    is_cleanup_finished,
    is_due_for_discussion,
    is_due_for_vote,
    is_vote_expired,
    schedule_from_discussion,
)
from nominationbot.services.state_machine import transition
from nominationbot.services.tally import evaluate

T = TypeVar("T")


class NominationScheduler:
    def __init__(
        self,
        db: sessionmaker[Session],
        channels: ChannelLifecycleManager,
        announcer: AnnouncementNotifier,
        polls: PollTallySource,
        members: MemberDirectory,
        settings: NominationSettings = SETTINGS,
        timeout: float = COLLABORATOR_TIMEOUT_SECONDS,
        wait_until_ready: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self.db = db
        self.channels = channels
        self.announcer = announcer
        self.polls = polls
        self.members = members
        self.settings = settings
        self.timeout = timeout

        self.transition_loop = tasks.loop(minutes=TRANSITION_SWEEP_INTERVAL_MINUTES)(
            self.run_transition_sweep
        )
        self.recalculation_loop = tasks.loop(hours=RECALCULATION_SWEEP_INTERVAL_HOURS)(
            self.run_recalculation_sweep
        )
        if wait_until_ready is not None:
            self.transition_loop.before_loop(wait_until_ready)
            self.recalculation_loop.before_loop(wait_until_ready)

    def start(self) -> None:
        if not self.transition_loop.is_running():
            self.transition_loop.start()
        if not self.recalculation_loop.is_running():
            self.recalculation_loop.start()
        LOGGER.info("Nomination scheduler started")

    def stop(self) -> None:
        """Stop scheduling new sweeps; a sweep already running is allowed to finish."""
        self.transition_loop.stop()
        self.recalculation_loop.stop()
        LOGGER.info("Nomination scheduler stopping")

    def is_running(self) -> bool:
        return self.transition_loop.is_running() or self.recalculation_loop.is_running()

    def _community_ids(self) -> list[int]:
        with self.db.begin() as session:
            return list_communities(session)

    async def _call(self, action: str, awaitable: Awaitable[T]) -> T | None:
        """Await a Discord side effect with a timeout, logging instead of raising."""
        try:
            async with asyncio.timeout(self.timeout):
                return await awaitable
        except TimeoutError:
            LOGGER.error(f"Timed out after {self.timeout}s trying to {action}")
        except Exception as e:
            LOGGER.error(f"Failed to {action}: {e!s}", exc_info=True)
        return None

    # Sweeps

    async def run_transition_sweep(self) -> None:
        now = utcnow()
        try:
            community_ids = self._community_ids()
        except Exception as e:
            LOGGER.error(f"Could not list communities for transition sweep: {e!s}", exc_info=True)
            return

        for community_id in community_ids:
            try:
                await self.process_community(community_id, now)
            except Exception as e:
                LOGGER.error(
                    f"Error processing transitions for community {community_id}: {e!s}",
                    exc_info=True,
                )

    async def run_recalculation_sweep(self) -> None:
        now = utcnow()
        try:
            community_ids = self._community_ids()
        except Exception as e:
            LOGGER.error(f"Could not list communities for recalculation: {e!s}", exc_info=True)
            return

        for community_id in community_ids:
            try:
                self.recalculate_community(community_id, now)
            except Exception as e:
                LOGGER.error(
                    f"Error recalculating schedules for community {community_id}: {e!s}",
                    exc_info=True,
                )

    async def trigger_state_transitions(self) -> None:
        await self.run_transition_sweep()

    async def trigger_schedule_recalculation(self) -> None:
        await self.run_recalculation_sweep()

    def recalculate_community(self, community_id: int, now: datetime | None = None) -> None:
        with self.db.begin() as session:
            apply_queue_schedule(session, community_id, now or utcnow(), self.settings)

    async def process_community(self, community_id: int, now: datetime | None = None) -> None:
        """Advance whatever is due in one community; each nominee moves at most one stage."""
        now = now or utcnow()
        with self.db.begin() as session:
            in_flight = find_in_progress(session, community_id)

        if in_flight is None:
            await self.start_next_if_ready(community_id, now)
        elif in_flight.state == NomineeState.DISCUSSION:
            if is_due_for_vote(in_flight, now):
                await self.advance_to_vote(in_flight.id, now)
        elif in_flight.state == NomineeState.VOTE:
            await self.check_vote(in_flight, now)
        elif in_flight.state == NomineeState.CLEANUP:
            if is_cleanup_finished(in_flight, now, self.settings):
                await self.complete_nominee(in_flight.id, now)

    # Transitions

    async def start_next_if_ready(
        self, community_id: int, now: datetime | None = None
    ) -> Result[Nominee] | None:
        """Promote the head of the queue if its discussion is due and nothing is in flight."""
        now = now or utcnow()
        with self.db.begin() as session:
            if find_in_progress(session, community_id) is not None:
                return None
            queue = list_queue(session, community_id)

        if not queue or not is_due_for_discussion(queue[0], now):
            return None
        return await self.advance_to_discussion(queue[0].id, now)

    async def advance_to_discussion(
        self,
        nominee_id: int,
        now: datetime | None = None,
        recalculate_queue: bool = True,
    ) -> Result[Nominee]:
        now = now or utcnow()
        schedule = schedule_from_discussion(now, self.settings)
        with self.db.begin() as session:
            result = transition(
                session,
                nominee_id,
                NomineeState.DISCUSSION,
                discussion_start=schedule.discussion_start,
                vote_start=schedule.vote_start,
                cleanup_start=schedule.cleanup_start,
            )
            if result.ok and result.value is not None and recalculate_queue:
                apply_queue_schedule(session, result.value.community_id, now, self.settings)

        if not result.ok or result.value is None:
            return result

        nominee = result.value
        created = await self._call(
            f"create discussion channel for {nominee.name}",
            self.channels.create_discussion_channel(nominee),
        )
        if created is None or not created.ok or created.value is None:
            reason = created.error if created is not None else "no response"
            LOGGER.error(
                f"Nominee {nominee.id} ({nominee.name}) is in discussion "
                f"without a channel: {reason}"
            )
            return result

        channel_id = created.value
        with self.db.begin() as session:
            update_nominee(session, nominee.id, discussion_channel_id=channel_id)
        nominee.discussion_channel_id = channel_id

        announced = await self._call(
            f"announce discussion of {nominee.name}",
            self.announcer.announce_discussion_start(nominee, channel_id),
        )
        if not announced:
            LOGGER.warning(f"Discussion announcement for {nominee.name} was not posted")
        return result

    async def advance_to_vote(self, nominee_id: int, now: datetime | None = None) -> Result[Nominee]:
        now = now or utcnow()
        with self.db.begin() as session:
            result = transition(
                session,
                nominee_id,
                NomineeState.VOTE,
                vote_start=now,
                cleanup_start=now + timedelta(minutes=self.settings.vote_duration_minutes),
            )
        if not result.ok or result.value is None:
            return result

        nominee = result.value
        created = await self._call(
            f"create vote channel for {nominee.name}",
            self.channels.create_vote_channel(nominee),
        )
        if created is None or not created.ok or created.value is None:
            reason = created.error if created is not None else "no response"
            LOGGER.error(
                f"Nominee {nominee.id} ({nominee.name}) is in vote without a channel: {reason}"
            )
            return result

        channel_id = created.value
        with self.db.begin() as session:
            update_nominee(session, nominee.id, vote_channel_id=channel_id)
        nominee.vote_channel_id = channel_id

        announced = await self._call(
            f"announce vote on {nominee.name}",
            self.announcer.announce_vote_start(nominee, channel_id),
        )
        if not announced:
            LOGGER.warning(f"Vote announcement for {nominee.name} was not posted")
        return result

    async def check_vote(self, nominee: Nominee, now: datetime | None = None) -> Result[Nominee] | None:
        """Close the vote once the poll reports completion or the vote window expired.

        Returns None while the vote is still undecided.
        """
        now = now or utcnow()
        tally = None
        if nominee.vote_channel_id is not None:
            tally = await self._call(
                f"fetch poll tally for {nominee.name}",
                self.polls.fetch_tally(nominee.vote_channel_id),
            )

        completed = tally is not None and tally.completed
        if not completed and not is_vote_expired(nominee, now):
            return None

        member_count = await self._call(
            f"count eligible members of community {nominee.community_id}",
            self.members.eligible_member_count(nominee.community_id),
        )
        if member_count is None:
            LOGGER.warning(
                f"Eligible member count unavailable, leaving vote on {nominee.name} open"
            )
            return None

        yes_votes, no_votes = (tally.yes, tally.no) if tally is not None else (0, 0)
        results = evaluate(
            yes_votes,
            no_votes,
            member_count,
            self.settings.quorum_fraction,
            self.settings.pass_fraction,
        )
        LOGGER.info(
            f"Vote on {nominee.name}: {yes_votes} yes, {no_votes} no of {member_count} "
            f"members (quorum {results.required_quorum}, needed {results.required_pass_votes} "
            f"yes) -> {'passed' if results.passed else 'failed'}"
        )

        with self.db.begin() as session:
            result = transition(
                session,
                nominee.id,
                NomineeState.CLEANUP,
                cleanup_start=now,
                vote_yes_count=results.yes_votes,
                vote_no_count=results.no_votes,
                vote_passed=results.passed,
            )
        if not result.ok or result.value is None:
            return result

        announced = await self._call(
            f"announce results for {nominee.name}",
            self.announcer.announce_results(
                result.value,
                results.passed,
                results.yes_votes,
                results.no_votes,
                results.quorum_met,
            ),
        )
        if not announced:
            LOGGER.warning(f"Results announcement for {nominee.name} was not posted")
        return result

    async def complete_nominee(
        self, nominee_id: int, now: datetime | None = None
    ) -> Result[Nominee]:
        """Archive a nominee, tidy up its channels and move the queue along."""
        now = now or utcnow()
        with self.db.begin() as session:
            result = transition(session, nominee_id, NomineeState.PAST)
            if result.ok and result.value is not None:
                apply_queue_schedule(
                    session, result.value.community_id, now, self.settings, keep_due_head=False
                )
        if not result.ok or result.value is None:
            return result

        nominee = result.value
        reason = f"Nomination of {nominee.name} completed"
        if nominee.discussion_channel_id is not None:
            await self._call(
                f"delete discussion channel of {nominee.name}",
                self.channels.delete(nominee.discussion_channel_id, reason),
            )
        if nominee.vote_channel_id is not None:
            await self._call(
                f"archive vote channel of {nominee.name}",
                self.channels.archive(nominee.vote_channel_id, reason),
            )

        await self.start_next_if_ready(nominee.community_id, now)
        return result

    # Manual triggers and command entry points

    async def force_start(
        self, community_id: int, name: str | None = None, now: datetime | None = None
    ) -> Result[Nominee]:
        """Start a nominee's discussion now, ignoring its scheduled start.

        Without a name the head of the queue is started. The single nomination
        in flight rule still applies.
        """
        with self.db.begin() as session:
            if name:
                nominee = find_by_name(session, community_id, name)
            else:
                queue = list_queue(session, community_id)
                nominee = queue[0] if queue else None
        if nominee is None:
            return Result.failure(NotFound(f"Nominee {name}" if name else "Queued nominee"))

        LOGGER.info(f"Force starting nominee {nominee.id} ({nominee.name})")
        return await self.advance_to_discussion(nominee.id, now, recalculate_queue=False)

    async def force_cleanup(
        self, community_id: int, now: datetime | None = None
    ) -> Result[Nominee]:
        """Finish the cleanup period of the community's nominee right away."""
        with self.db.begin() as session:
            nominee = find_in_state(session, community_id, NomineeState.CLEANUP)
        if nominee is None:
            return Result.failure(NotFound("Nominee in cleanup"))

        LOGGER.info(f"Force completing cleanup of nominee {nominee.id} ({nominee.name})")
        return await self.complete_nominee(nominee.id, now)

    async def remove_nomination(
        self, community_id: int, name: str, now: datetime | None = None
    ) -> Result[RemovedNomination]:
        now = now or utcnow()
        with self.db.begin() as session:
            result = remove_nominee(session, community_id, name, now, self.settings)
        if not result.ok or result.value is None:
            return result

        removed = result.value
        if removed.was_in_progress:
            reason = f"Nomination of {removed.name} removed"
            for channel_id in (removed.discussion_channel_id, removed.vote_channel_id):
                if channel_id is not None:
                    await self._call(
                        f"delete channel {channel_id} of {removed.name}",
                        self.channels.delete(channel_id, reason),
                    )
            await self.start_next_if_ready(community_id, now)
        return result

    async def adjust_discussion_duration(
        self, community_id: int, hours: float, now: datetime | None = None
    ) -> Result[DiscussionOverride]:
        now = now or utcnow()
        with self.db.begin() as session:
            result = override_discussion_duration(
                session, community_id, hours, now, self.settings
            )
        if not result.ok or result.value is None:
            return result

        if result.value.vote_due:
            advanced = await self.advance_to_vote(result.value.nominee.id, now)
            if not advanced.ok and advanced.error is not None:
                return Result.failure(advanced.error)
        return result
