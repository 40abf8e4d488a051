"""
Failure taxonomy of the vote path.

Every error carries the HTTP status it is surfaced with, so the API layer
can render all of them through a single handler.
"""
import math


class VoteError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PollNotFound(VoteError):
    status_code = 404

    def __init__(self, poll_id: str):
        super().__init__("Poll not found")
        self.poll_id = poll_id


class InvalidInput(VoteError):
    status_code = 400


class InvalidOption(InvalidInput):
    def __init__(self, option_index: int):
        super().__init__("Invalid option")
        self.option_index = option_index


class AbuseRejected(VoteError):
    status_code = 403


class AlreadyVoted(AbuseRejected):
    def __init__(self):
        super().__init__("You have already voted on this poll")


class RateLimited(AbuseRejected):
    status_code = 429

    def __init__(self, retry_after: float):
        # whole seconds, never zero: a client told to retry in 0s would be rejected again
        self.retry_after = max(1, math.ceil(retry_after))
        super().__init__(f"Too many votes, retry in {self.retry_after}s")


class StorageError(VoteError):
    status_code = 500

    def __init__(self, message: str = "Failed to record vote"):
        super().__init__(message)
