from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Dict, FrozenSet, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ..services.oracle import Actor, Movie
from .errors import InvalidStatusTransition

MAX_CHAIN_LENGTH = 6
MAX_HINTS = 2

HintSide = Literal["start", "end"]


class Tier(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"

    @property
    def rank(self) -> int:
        return TIER_ORDER.index(self)


TIER_ORDER = (Tier.EASY, Tier.MEDIUM, Tier.HARD)


class ChallengeStatus(str, Enum):
    ACTIVE = "active"
    NEXT = "next"
    ARCHIVED = "archived"


# ``None`` is a record that does not exist yet.
STATUS_TRANSITIONS: Dict[Optional[ChallengeStatus], FrozenSet[ChallengeStatus]] = {
    None: frozenset({ChallengeStatus.ACTIVE, ChallengeStatus.NEXT}),
    ChallengeStatus.NEXT: frozenset({ChallengeStatus.ACTIVE}),
    ChallengeStatus.ACTIVE: frozenset({ChallengeStatus.ARCHIVED}),
    ChallengeStatus.ARCHIVED: frozenset(),
}


def ensure_transition(
    current: Optional[ChallengeStatus], target: ChallengeStatus
) -> ChallengeStatus:
    if current == target:
        return target
    if target not in STATUS_TRANSITIONS.get(current, frozenset()):
        raise InvalidStatusTransition(current, target)
    return target


@dataclass(frozen=True)
class ActorPair:
    start: Actor
    end: Actor
    tier: Tier
    relaxed: bool = False

    @property
    def actor_ids(self) -> FrozenSet[int]:
        return frozenset({self.start.id, self.end.id})


class ActorRef(BaseModel):
    id: int
    name: str
    profile_path: Optional[str] = None


class ChallengeRecord(BaseModel):
    id: str
    date: date
    tier: Tier
    status: ChallengeStatus
    start_actor: ActorRef
    end_actor: ActorRef
    hints_used: int = 0
    hints_remaining: int = MAX_HINTS

    @property
    def actor_ids(self) -> FrozenSet[int]:
        return frozenset({self.start_actor.id, self.end_actor.id})


class Connection(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    actor_id: int = Field(
        validation_alias=AliasChoices("actorId", "actor_id"),
        serialization_alias="actorId",
    )
    actor_name: str = Field(
        default="",
        validation_alias=AliasChoices("actorName", "actor_name"),
        serialization_alias="actorName",
    )
    movie_id: int = Field(
        validation_alias=AliasChoices("movieId", "movie_id"),
        serialization_alias="movieId",
    )
    movie_title: str = Field(
        default="",
        validation_alias=AliasChoices("movieTitle", "movie_title"),
        serialization_alias="movieTitle",
    )


class ValidationResult(BaseModel):
    valid: bool
    message: str
    completed: Optional[bool] = None
    moves: Optional[int] = None


class HintResult(BaseModel):
    challenge_id: str
    side: HintSide
    actor_name: str
    movies: List[Movie] = Field(default_factory=list)
    hints_used: int
    hints_remaining: int


class ActorHint(BaseModel):
    actor_name: str
    movies: List[Movie] = Field(default_factory=list)


class HintSummary(BaseModel):
    challenge_id: str
    hints_used: int
    hints_remaining: int
    start_actor_hint: Optional[ActorHint] = None
    end_actor_hint: Optional[ActorHint] = None


class RolloverSummary(BaseModel):
    today: date
    tomorrow: date
    promoted: List[Tier] = Field(default_factory=list)
    generated: List[Tier] = Field(default_factory=list)
    removed_stale: int = 0
    active: List[ChallengeRecord] = Field(default_factory=list)
    upcoming: List[ChallengeRecord] = Field(default_factory=list)


class MoveCount(BaseModel):
    moves: int
    count: int


class UsageCount(BaseModel):
    id: int
    label: str
    count: int


class ChallengeAnalytics(BaseModel):
    challenge_id: str
    total_attempts: int = 0
    completed_attempts: int = 0
    completion_rate: float = 0.0
    avg_moves: float = 0.0
    fewest_moves: int = 0
    move_distribution: List[MoveCount] = Field(default_factory=list)
    most_used_movies: List[UsageCount] = Field(default_factory=list)
    most_used_actors: List[UsageCount] = Field(default_factory=list)


def hints_remaining(hints_used: int) -> int:
    return max(0, MAX_HINTS - hints_used)
