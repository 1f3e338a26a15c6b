from __future__ import annotations

import sys
from pathlib import Path
import asyncio
from typing import Dict, Iterable, List, Optional, Set, Tuple

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from castlink.core import database as db_module  # noqa: E402
from castlink.db.models import Base  # noqa: E402
from castlink.routers import challenges as challenges_router  # noqa: E402
from castlink.services import cache as cache_module  # noqa: E402
from castlink.services.oracle import Actor, Movie, OracleError  # noqa: E402


class FakeOracle:
    """Deterministic in-memory movie oracle."""

    def __init__(
        self,
        actors: Iterable[Actor] = (),
        appearances: Iterable[Tuple[int, int]] = (),
        hint_movies: Optional[Dict[int, List[Movie]]] = None,
    ) -> None:
        self.actors: List[Actor] = list(actors)
        self.appearances: Set[Tuple[int, int]] = set(appearances)
        self.hint_movies: Dict[int, List[Movie]] = dict(hint_movies or {})
        self.fail_appearances = False
        self.fail_pool = False
        self.pool_delay = 0.01
        self.appearance_calls: List[Tuple[int, int]] = []
        self.pool_calls: List[object] = []
        self.hint_calls: List[int] = []

    async def actor_appears_in_movie(self, actor_id: int, movie_id: int) -> bool:
        self.appearance_calls.append((actor_id, movie_id))
        await asyncio.sleep(0)
        if self.fail_appearances:
            raise OracleError("oracle offline")
        return (actor_id, movie_id) in self.appearances

    async def get_candidate_pool(self, tier=None) -> List[Actor]:
        self.pool_calls.append(tier)
        await asyncio.sleep(self.pool_delay)
        if self.fail_pool:
            raise OracleError("oracle offline")
        return list(self.actors)

    async def get_hint_movies(self, actor_id: int, count: int) -> List[Movie]:
        self.hint_calls.append(actor_id)
        await asyncio.sleep(0)
        return self.hint_movies.get(actor_id, [])[:count]


def make_actor(actor_id: int, popularity: Optional[float] = None, name: Optional[str] = None) -> Actor:
    return Actor(
        id=actor_id,
        name=name or f"Actor {actor_id}",
        profile_path=f"/profile{actor_id}.jpg",
        popularity=popularity,
        known_for_department="Acting",
    )


def build_pool(per_tier: int = 10) -> List[Actor]:
    """Ten easy (ids 1-10), ten medium (11-20) and ten hard (21-30) actors."""

    actors: List[Actor] = []
    for offset, popularity in enumerate((55.0, 20.0, 3.0)):
        for index in range(1, per_tier + 1):
            actors.append(make_actor(offset * per_tier + index, popularity))
    return actors


@pytest.fixture
def actor_pool() -> List[Actor]:
    return build_pool()


@pytest.fixture
def fake_oracle(actor_pool: List[Actor]) -> FakeOracle:
    return FakeOracle(actors=actor_pool)


@pytest_asyncio.fixture(autouse=True)
async def setup_test_database(tmp_path: Path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'castlink.db'}", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)

    original_engine = db_module._engine
    original_factory = db_module._session_factory
    db_module._engine = engine
    db_module._session_factory = session_factory
    challenges_router._manager = None
    challenges_router._oracle = None
    cache_module.reset_cache()

    try:
        yield
    finally:
        db_module._engine = original_engine
        db_module._session_factory = original_factory
        challenges_router._manager = None
        challenges_router._oracle = None
        cache_module.reset_cache()
        await engine.dispose()
