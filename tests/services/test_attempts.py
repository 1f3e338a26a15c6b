from __future__ import annotations

from datetime import date

import pytest

from castlink.challenges.models import ActorRef, ChallengeStatus, Connection, Tier
from castlink.core.database import get_session_factory
from castlink.services import attempts, challenge_repository


def chain(*links: tuple[int, int]) -> list[Connection]:
    return [
        Connection(
            actor_id=actor_id,
            actor_name=f"Actor {actor_id}",
            movie_id=movie_id,
            movie_title=f"Movie {movie_id}",
        )
        for actor_id, movie_id in links
    ]


@pytest.mark.asyncio
async def test_analytics_summarise_completed_chains() -> None:
    session_factory = get_session_factory()
    async with session_factory() as session:
        challenge = await challenge_repository.insert_challenge(
            session,
            day=date(2025, 2, 1),
            tier=Tier.EASY,
            status=ChallengeStatus.ACTIVE,
            start_actor=ActorRef(id=1, name="Start"),
            end_actor=ActorRef(id=2, name="End"),
        )
        challenge_id = challenge.id
        await attempts.record_attempt(session, challenge_id, chain((50, 10), (2, 11)), completed=True)
        await attempts.record_attempt(session, challenge_id, chain((50, 10), (2, 12)), completed=True)
        await attempts.record_attempt(
            session, challenge_id, chain((60, 13), (61, 13), (2, 14)), completed=True
        )
        await attempts.record_attempt(session, challenge_id, chain((70, 15)), completed=False)
        await session.commit()

    async with session_factory() as session:
        analytics = await attempts.challenge_analytics(session, challenge_id)

    assert analytics.total_attempts == 4
    assert analytics.completed_attempts == 3
    assert analytics.completion_rate == pytest.approx(75.0)
    assert analytics.avg_moves == pytest.approx(7 / 3)
    assert analytics.fewest_moves == 2
    assert [(item.moves, item.count) for item in analytics.move_distribution] == [
        (1, 0),
        (2, 2),
        (3, 1),
        (4, 0),
        (5, 0),
        (6, 0),
    ]
    assert analytics.most_used_movies[0].id == 10
    assert analytics.most_used_movies[0].count == 2
    # Movie 13 appears twice in one chain but counts once.
    assert next(item for item in analytics.most_used_movies if item.id == 13).count == 1
    assert analytics.most_used_actors[0].id == 50
    assert analytics.most_used_actors[0].label == "Actor 50"
    assert all(item.id not in {1, 2} for item in analytics.most_used_actors)


@pytest.mark.asyncio
async def test_analytics_for_unplayed_challenge() -> None:
    async with get_session_factory()() as session:
        analytics = await attempts.challenge_analytics(session, "nobody-played")

    assert analytics.total_attempts == 0
    assert analytics.completion_rate == 0.0
    assert analytics.most_used_movies == []
    assert len(analytics.move_distribution) == 6


@pytest.mark.asyncio
async def test_attempts_are_stored_in_order() -> None:
    async with get_session_factory()() as session:
        await attempts.record_attempt(session, "c-1", chain((5, 6)), completed=False)
        await attempts.record_attempt(session, "c-1", chain((5, 6)), completed=False)
        await attempts.record_attempt(session, "c-2", chain((5, 6)), completed=True)
        await session.commit()

    async with get_session_factory()() as session:
        stored = await attempts.list_attempts(session, "c-1")

    assert len(stored) == 2
    assert stored[0].connections[0]["movie_id"] == 6
