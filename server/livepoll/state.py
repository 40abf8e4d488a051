# poll storage: interface + in-memory state
import secrets
import string
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from .config import POLL_ID_LENGTH
from .errors import InvalidOption, PollNotFound
from .models import Option, Poll

_ID_ALPHABET = string.ascii_letters + string.digits + "_-"


def new_poll_id(length: int = POLL_ID_LENGTH) -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


class PollStore(ABC):
    """
    Durable poll state as seen by the vote path.

    apply_vote must be atomic per poll: concurrent calls are all reflected and
    total_votes stays equal to the sum of option votes. Implementations get this
    from their own update primitive, callers never lock around it.
    """

    @abstractmethod
    async def create(self, question: str, options: List[str]) -> Poll:
        ...

    @abstractmethod
    async def get(self, poll_id: str) -> Optional[Poll]:
        ...

    @abstractmethod
    async def apply_vote(self, poll_id: str, option_index: int, delta: int = 1) -> Poll:
        """
        Add delta to one option and to the total, return the updated poll.
        Raises PollNotFound / InvalidOption without touching state.
        """


class InMemoryPollStore(PollStore):
    """
    Process-local store. Each update runs without a suspension point, so on a
    single event loop it is as atomic as a storage-side increment.
    """

    def __init__(self) -> None:
        # polls[poll_id] = Poll
        self.polls: Dict[str, Poll] = {}

    async def create(self, question: str, options: List[str]) -> Poll:
        poll_id = new_poll_id()
        while poll_id in self.polls:
            poll_id = new_poll_id()

        poll = Poll(
            poll_id=poll_id,
            question=question,
            options=[Option(text=text, votes=0) for text in options],
        )
        self.polls[poll_id] = poll
        return poll.model_copy(deep=True)

    async def get(self, poll_id: str) -> Optional[Poll]:
        poll = self.polls.get(poll_id)
        return None if poll is None else poll.model_copy(deep=True)

    async def apply_vote(self, poll_id: str, option_index: int, delta: int = 1) -> Poll:
        poll = self.polls.get(poll_id)
        if poll is None:
            raise PollNotFound(poll_id)
        if not 0 <= option_index < len(poll.options):
            raise InvalidOption(option_index)

        option = poll.options[option_index]
        if option.votes + delta < 0:
            raise ValueError(f"vote count of option {option_index} would go negative")

        option.votes += delta
        poll.total_votes += delta
        return poll.model_copy(deep=True)
