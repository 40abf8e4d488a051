# vote acceptance path: validate -> guard -> store -> record -> broadcast
import asyncio
import logging
import time
from typing import Callable

from .broadcast import BroadcastHub
from .config import STORAGE_TIMEOUT
from .errors import InvalidOption, PollNotFound, StorageError, VoteError
from .guard import AbuseGuard
from .models import Poll, Tally
from .state import PollStore

logger = logging.getLogger(__name__)


class VoteProcessor:
    """
    Accepts one vote at a time per (poll, identity) and publishes the result.

    The order is fixed: the guard is checked before the store is written, and
    only a successful write is recorded with the guard and broadcast. A vote
    that fails at any step leaves counts, abuse state and subscribers untouched.
    """

    def __init__(
        self,
        store: PollStore,
        guard: AbuseGuard,
        hub: BroadcastHub,
        storage_timeout: float = STORAGE_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.guard = guard
        self.hub = hub
        self.storage_timeout = storage_timeout
        self.clock = clock

    async def vote(self, poll_id: str, option_index: int, identity: str) -> Tally:
        try:
            return await self._vote(poll_id, option_index, identity)
        except StorageError:
            logger.error(
                "Vote failed in storage: poll=%s identity=%s option=%s",
                poll_id,
                identity,
                option_index,
                exc_info=True,
            )
            raise
        except VoteError as e:
            logger.warning(
                "Vote rejected (%s): poll=%s identity=%s option=%s: %s",
                type(e).__name__,
                poll_id,
                identity,
                option_index,
                e.message,
            )
            raise

    async def _vote(self, poll_id: str, option_index: int, identity: str) -> Tally:
        poll = await self._storage(self.store.get(poll_id))
        if poll is None:
            raise PollNotFound(poll_id)
        if not 0 <= option_index < len(poll.options):
            raise InvalidOption(option_index)

        async with self.guard.exclusive(poll_id, identity):
            now = self.clock()
            self.guard.check(poll_id, identity, now)
            updated: Poll = await self._storage(self.store.apply_vote(poll_id, option_index, 1))
            self.guard.record(poll_id, identity, now)

        tally = updated.tally()
        logger.info(
            "Vote accepted: poll=%s identity=%s option=%s total=%s",
            poll_id,
            identity,
            option_index,
            tally.total_votes,
        )
        await self._publish(poll_id, tally)
        return tally

    def has_voted(self, poll_id: str, identity: str) -> bool:
        return self.guard.has_voted(poll_id, identity, self.clock())

    async def _storage(self, call):
        """
        Bound a store call by storage_timeout. Domain errors raised by the store
        pass through; anything else is a StorageError.
        """
        try:
            return await asyncio.wait_for(call, timeout=self.storage_timeout)
        except VoteError:
            raise
        except asyncio.TimeoutError as e:
            raise StorageError("Storage timed out") from e
        except Exception as e:
            raise StorageError() from e

    async def _publish(self, poll_id: str, tally: Tally) -> None:
        # the vote is already counted; a broken fan-out must not turn it into a failure
        try:
            delivered = await self.hub.publish(poll_id, tally)
            logger.debug("Broadcast poll=%s to %s subscribers", poll_id, delivered)
        except Exception as e:
            logger.error("Broadcast failed for poll %s: %s", poll_id, e, exc_info=True)
