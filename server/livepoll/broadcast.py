# per-poll subscription groups + tally fan-out
import asyncio
import logging
from typing import Dict, List, Protocol, Set

from .config import SEND_TIMEOUT
from .locks import KeyedLocks
from .models import Tally

logger = logging.getLogger(__name__)

VOTE_UPDATE = "voteUpdate"


class Subscriber(Protocol):
    """
    What the hub needs from a live connection. Must be hashable.
    """

    @property
    def connected(self) -> bool:
        ...

    async def send(self, message: dict) -> None:
        ...

    async def close(self) -> None:
        """Tear the connection down so the client knows to reconnect."""


class BroadcastHub:
    """
    Maps poll_id -> live subscribers and pushes tallies to them.

    Publishes to one poll go out in the order publish() was called (a FIFO
    lock per poll is held for the whole fan-out). Different polls are not
    ordered relative to each other. Each publish works on a snapshot of the
    group, so joins/leaves during a fan-out never disturb it.
    """

    def __init__(self, send_timeout: float = SEND_TIMEOUT) -> None:
        self.send_timeout = send_timeout
        # groups[poll_id] = subscribers; a poll with no subscribers has no entry
        self.groups: Dict[str, Set[Subscriber]] = {}
        # memberships[subscriber] = poll_ids it joined, for disconnect()
        self.memberships: Dict[Subscriber, Set[str]] = {}
        self._order = KeyedLocks()

    def join(self, poll_id: str, subscriber: Subscriber) -> None:
        self.groups.setdefault(poll_id, set()).add(subscriber)
        self.memberships.setdefault(subscriber, set()).add(poll_id)

    def leave(self, poll_id: str, subscriber: Subscriber) -> None:
        members = self.groups.get(poll_id)
        if members is not None:
            members.discard(subscriber)
            if not members:
                del self.groups[poll_id]

        joined = self.memberships.get(subscriber)
        if joined is not None:
            joined.discard(poll_id)
            if not joined:
                del self.memberships[subscriber]

    def disconnect(self, subscriber: Subscriber) -> None:
        for poll_id in list(self.memberships.get(subscriber, ())):
            self.leave(poll_id, subscriber)

    def members(self, poll_id: str) -> List[Subscriber]:
        return list(self.groups.get(poll_id, ()))

    async def publish(self, poll_id: str, tally: Tally) -> int:
        """
        Send the tally to everyone currently in the poll's group.
        Returns how many subscribers received it; 0 for an empty group.
        """
        if poll_id not in self.groups:
            return 0

        message = {"event": VOTE_UPDATE, "pollId": poll_id, **tally.wire()}

        async with self._order.hold(poll_id):
            members = self.members(poll_id)
            if not members:
                return 0

            results = await asyncio.gather(
                *(self._deliver(sub, message) for sub in members),
                return_exceptions=True,
            )

        delivered = 0
        dropped = []
        for sub, res in zip(members, results):
            if res is True:
                delivered += 1
                continue
            # dead or too slow: forget it everywhere, the others are unaffected
            if isinstance(res, BaseException):
                logger.warning("Dropping subscriber %r on poll %s: %r", sub, poll_id, res)
            self.disconnect(sub)
            dropped.append(sub)

        if dropped:
            await asyncio.gather(*(self._close(sub) for sub in dropped))
        return delivered

    async def _deliver(self, sub: Subscriber, message: dict) -> bool:
        if not sub.connected:
            return False
        await asyncio.wait_for(sub.send(message), timeout=self.send_timeout)
        return True

    async def _close(self, sub: Subscriber) -> None:
        # a timed-out send may have left a partial frame; the connection is not reusable
        try:
            await asyncio.wait_for(sub.close(), timeout=self.send_timeout)
        except Exception as e:
            logger.warning("Closing subscriber %r failed: %r", sub, e)
