from __future__ import annotations

from collections import Counter
from typing import Dict, Iterable, List, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..challenges.models import (
    MAX_CHAIN_LENGTH,
    ChallengeAnalytics,
    Connection,
    MoveCount,
    UsageCount,
)
from ..db import models

TOP_USAGE_LIMIT = 5


async def record_attempt(
    session: AsyncSession,
    challenge_id: str,
    connections: Sequence[Connection],
    *,
    completed: bool,
) -> models.GameAttempt:
    attempt = models.GameAttempt(
        challenge_id=challenge_id,
        moves=len(connections),
        completed=completed,
        connections=[connection.model_dump() for connection in connections],
    )
    session.add(attempt)
    await session.flush()
    return attempt


async def list_attempts(session: AsyncSession, challenge_id: str) -> List[models.GameAttempt]:
    stmt = (
        select(models.GameAttempt)
        .where(models.GameAttempt.challenge_id == challenge_id)
        .order_by(models.GameAttempt.created_at)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


def _top(counter: Counter, labels: Dict[int, str]) -> List[UsageCount]:
    ranked = sorted(counter.items(), key=lambda item: (-item[1], item[0]))
    return [
        UsageCount(id=item_id, label=labels[item_id], count=count)
        for item_id, count in ranked[:TOP_USAGE_LIMIT]
    ]


def summarize_attempts(
    challenge_id: str,
    attempts: Iterable[models.GameAttempt],
    *,
    endpoint_actor_ids: Iterable[int] = (),
) -> ChallengeAnalytics:
    """Aggregate submissions for one challenge.

    Movie and actor usage counts each completed chain at most once per item
    and leaves out the challenge's own start and end actors.
    """

    attempts = list(attempts)
    endpoints = set(endpoint_actor_ids)
    completed = [attempt for attempt in attempts if attempt.completed]
    completed_moves = [attempt.moves for attempt in completed]

    movie_usage: Counter = Counter()
    actor_usage: Counter = Counter()
    movie_titles: Dict[int, str] = {}
    actor_names: Dict[int, str] = {}
    for attempt in completed:
        chain = [Connection.model_validate(item) for item in attempt.connections or []]
        movies_in_chain: set[int] = set()
        actors_in_chain: set[int] = set()
        for connection in chain:
            if connection.movie_title and connection.movie_id not in movies_in_chain:
                movies_in_chain.add(connection.movie_id)
                movie_titles.setdefault(connection.movie_id, connection.movie_title)
            if (
                connection.actor_name
                and connection.actor_id not in endpoints
                and connection.actor_id not in actors_in_chain
            ):
                actors_in_chain.add(connection.actor_id)
                actor_names.setdefault(connection.actor_id, connection.actor_name)
        movie_usage.update(movies_in_chain)
        actor_usage.update(actors_in_chain)

    total = len(attempts)
    return ChallengeAnalytics(
        challenge_id=challenge_id,
        total_attempts=total,
        completed_attempts=len(completed),
        completion_rate=(len(completed) / total * 100) if total else 0.0,
        avg_moves=(sum(completed_moves) / len(completed_moves)) if completed_moves else 0.0,
        fewest_moves=min(completed_moves) if completed_moves else 0,
        move_distribution=[
            MoveCount(moves=moves, count=completed_moves.count(moves))
            for moves in range(1, MAX_CHAIN_LENGTH + 1)
        ],
        most_used_movies=_top(movie_usage, movie_titles),
        most_used_actors=_top(actor_usage, actor_names),
    )


async def challenge_analytics(session: AsyncSession, challenge_id: str) -> ChallengeAnalytics:
    challenge = await session.get(models.DailyChallenge, challenge_id)
    endpoints = challenge.actor_ids if challenge is not None else []
    attempts = await list_attempts(session, challenge_id)
    return summarize_attempts(challenge_id, attempts, endpoint_actor_ids=endpoints)
