# per-identity abuse tracking + periodic sweep
import asyncio
import logging
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional, Set, Tuple

from .config import ABUSE_MODE, SWEEP_INTERVAL, VOTE_WINDOW
from .errors import AlreadyVoted, RateLimited
from .locks import KeyedLocks

logger = logging.getLogger(__name__)

ONE_SHOT = "one_shot"
RATE_LIMIT = "rate_limit"


class AbuseGuard(ABC):
    """
    Decides whether an identity may vote on a poll.

    check() only inspects state; record() commits an admission and must be
    called only once the vote has actually been stored. Callers wrap the whole
    check -> store -> record sequence in exclusive() so two requests from the
    same identity cannot both pass check() before either records.

    State is in-memory and per process: a restart forgets every identity.
    """

    mode = ""

    def __init__(self, sweep_interval: float = SWEEP_INTERVAL) -> None:
        self.sweep_interval = sweep_interval
        self._locks = KeyedLocks()
        self._sweeper: Optional[asyncio.Task] = None

    @asynccontextmanager
    async def exclusive(self, poll_id: str, identity: str) -> AsyncIterator[None]:
        async with self._locks.hold((poll_id, identity)):
            yield

    @abstractmethod
    def check(self, poll_id: str, identity: str, now: float) -> None:
        """Return if the vote is admissible, raise an AbuseRejected otherwise."""

    @abstractmethod
    def record(self, poll_id: str, identity: str, now: float) -> None:
        ...

    @abstractmethod
    def sweep(self, now: float) -> int:
        """Drop state that no longer affects any decision; return how many entries went."""

    def has_voted(self, poll_id: str, identity: str, now: float) -> bool:
        try:
            self.check(poll_id, identity, now)
        except (AlreadyVoted, RateLimited):
            return True
        return False

    # ----------- background sweep -----------

    def start(self) -> None:
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                removed = self.sweep(time.monotonic())
                if removed:
                    logger.debug("Abuse sweep removed %s stale entries", removed)
            except Exception as e:
                logger.error("Abuse sweep failed: %s", e, exc_info=True)


class OneShotGuard(AbuseGuard):
    """At most one vote per identity per poll, for the life of the process."""

    mode = ONE_SHOT

    def __init__(self, sweep_interval: float = SWEEP_INTERVAL) -> None:
        super().__init__(sweep_interval)
        # voters[poll_id] = identities that have voted
        self.voters: Dict[str, Set[str]] = {}

    def check(self, poll_id: str, identity: str, now: float) -> None:
        if identity in self.voters.get(poll_id, ()):
            raise AlreadyVoted()

    def record(self, poll_id: str, identity: str, now: float) -> None:
        self.voters.setdefault(poll_id, set()).add(identity)

    def sweep(self, now: float) -> int:
        """Never collects: every recorded identity stays blocked for the process lifetime."""
        return 0


class RateLimitGuard(AbuseGuard):
    """At most one vote per identity per poll within any `window` seconds."""

    mode = RATE_LIMIT

    def __init__(self, window: float = VOTE_WINDOW, sweep_interval: float = SWEEP_INTERVAL) -> None:
        if window <= 0:
            raise ValueError("window must be positive")
        super().__init__(sweep_interval)
        self.window = window
        # last_vote[(poll_id, identity)] = time of last admitted vote
        self.last_vote: Dict[Tuple[str, str], float] = {}

    def check(self, poll_id: str, identity: str, now: float) -> None:
        last = self.last_vote.get((poll_id, identity))
        if last is None:
            return
        elapsed = now - last
        if elapsed < self.window:
            raise RateLimited(self.window - elapsed)

    def record(self, poll_id: str, identity: str, now: float) -> None:
        self.last_vote[(poll_id, identity)] = now

    def sweep(self, now: float) -> int:
        # twice the window: anything older behaves exactly like a missing entry
        cutoff = now - 2 * self.window
        stale = [key for key, last in self.last_vote.items() if last <= cutoff]
        for key in stale:
            del self.last_vote[key]
        return len(stale)


def build_guard(
    mode: str = ABUSE_MODE,
    window: float = VOTE_WINDOW,
    sweep_interval: float = SWEEP_INTERVAL,
) -> AbuseGuard:
    if mode == ONE_SHOT:
        return OneShotGuard(sweep_interval=sweep_interval)
    if mode == RATE_LIMIT:
        return RateLimitGuard(window=window, sweep_interval=sweep_interval)
    raise ValueError(f"Unknown ABUSE_MODE {mode!r}, expected {ONE_SHOT!r} or {RATE_LIMIT!r}")
