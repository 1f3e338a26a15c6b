"""Capability interface for the movie-metadata oracle.

The challenge engine only needs three questions answered by a metadata
provider; anything implementing :class:`ActorMovieOracle` can back it,
including the in-memory fake used by the test-suite.
"""

from __future__ import annotations

from typing import List, Optional, Protocol, TYPE_CHECKING

from pydantic import BaseModel

if TYPE_CHECKING:
    from ..challenges.models import Tier


class OracleError(RuntimeError):
    """Raised when the metadata provider cannot answer a query."""


class Actor(BaseModel):
    id: int
    name: str
    profile_path: Optional[str] = None
    popularity: Optional[float] = None
    known_for_department: Optional[str] = None


class Movie(BaseModel):
    id: int
    title: str
    release_date: Optional[str] = None
    poster_path: Optional[str] = None
    popularity: Optional[float] = None
    vote_average: Optional[float] = None
    vote_count: Optional[int] = None


class ActorMovieOracle(Protocol):
    async def actor_appears_in_movie(self, actor_id: int, movie_id: int) -> bool:
        ...

    async def get_candidate_pool(self, tier: Optional["Tier"] = None) -> List[Actor]:
        ...

    async def get_hint_movies(self, actor_id: int, count: int) -> List[Movie]:
        ...
