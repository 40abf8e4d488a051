from datetime import datetime, timezone
from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .config import MIN_OPTIONS


class WireModel(BaseModel):
    """
    Snake_case in Python, camelCase on the wire (pollId, totalVotes, ...).
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class Option(WireModel):
    text: str
    votes: int = Field(0, ge=0)


class Tally(WireModel):
    """
    Snapshot of a poll's counts, as returned to voters and broadcast to subscribers.
    """
    options: List[Option]
    total_votes: int


class Poll(WireModel):
    poll_id: str
    question: str
    options: List[Option]
    total_votes: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def tally(self) -> Tally:
        return Tally(
            options=[opt.model_copy() for opt in self.options],
            total_votes=self.total_votes,
        )


class PollCreate(WireModel):
    question: str = Field(..., examples=["Tabs or spaces?"])
    options: List[str] = Field(..., examples=[["Tabs", "Spaces"]])

    @field_validator("question")
    @classmethod
    def _question_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Question is required")
        return v

    @field_validator("options")
    @classmethod
    def _enough_options(cls, v: List[str]) -> List[str]:
        v = [opt.strip() for opt in v]
        if any(not opt for opt in v):
            raise ValueError("Options must not be empty")
        if len(v) < MIN_OPTIONS:
            raise ValueError(f"At least {MIN_OPTIONS} options are required")
        return v


class VoteIn(WireModel):
    option_index: int = Field(..., strict=True, examples=[0])


class PollView(WireModel):
    """
    Read model for GET /api/polls/{id}; has_voted is relative to the caller's identity.
    """
    poll_id: str
    question: str
    options: List[Option]
    total_votes: int
    has_voted: bool
