from __future__ import annotations

from datetime import date
from typing import List, Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..challenges.errors import DuplicateChallenge
from ..challenges.models import ActorRef, ChallengeStatus, HintSide, Tier
from ..db import models


async def get_challenge(session: AsyncSession, challenge_id: str) -> Optional[models.DailyChallenge]:
    return await session.get(models.DailyChallenge, challenge_id)


async def list_challenges_for_date(session: AsyncSession, day: date) -> List[models.DailyChallenge]:
    stmt = select(models.DailyChallenge).where(models.DailyChallenge.challenge_date == day)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_challenges_by_status(
    session: AsyncSession,
    status: ChallengeStatus,
    *,
    tier: Optional[Tier] = None,
) -> List[models.DailyChallenge]:
    """Return records with ``status``, most recently dated first."""

    stmt = select(models.DailyChallenge).where(models.DailyChallenge.status == status.value)
    if tier is not None:
        stmt = stmt.where(models.DailyChallenge.tier == tier.value)
    stmt = stmt.order_by(
        models.DailyChallenge.challenge_date.desc(),
        models.DailyChallenge.created_at.desc(),
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def insert_challenge(
    session: AsyncSession,
    *,
    day: date,
    tier: Tier,
    status: ChallengeStatus,
    start_actor: ActorRef,
    end_actor: ActorRef,
) -> models.DailyChallenge:
    """Insert a record and flush so the ``(date, tier)`` constraint is checked now."""

    record = models.DailyChallenge(
        challenge_date=day,
        tier=tier,
        status=status,
        start_actor_id=start_actor.id,
        start_actor_name=start_actor.name,
        start_actor_profile_path=start_actor.profile_path,
        end_actor_id=end_actor.id,
        end_actor_name=end_actor.name,
        end_actor_profile_path=end_actor.profile_path,
        hints_used=0,
    )
    session.add(record)
    try:
        await session.flush()
    except IntegrityError as exc:
        raise DuplicateChallenge(day, tier) from exc
    return record


async def delete_challenges_for_date(
    session: AsyncSession, day: date, *, tier: Optional[Tier] = None
) -> int:
    stmt = delete(models.DailyChallenge).where(models.DailyChallenge.challenge_date == day)
    if tier is not None:
        stmt = stmt.where(models.DailyChallenge.tier == tier.value)
    result = await session.execute(stmt)
    return result.rowcount or 0


async def delete_challenges(session: AsyncSession, challenge_ids: Sequence[str]) -> int:
    if not challenge_ids:
        return 0
    result = await session.execute(
        delete(models.DailyChallenge).where(models.DailyChallenge.id.in_(list(challenge_ids)))
    )
    return result.rowcount or 0


async def store_hint_payload(
    session: AsyncSession,
    challenge_id: str,
    side: HintSide,
    payload: str,
) -> bool:
    """Store a hint for ``side`` unless one already exists.

    The write is conditional on the column still being empty so a hint is
    generated and counted at most once per side. Returns ``False`` when
    another writer got there first.
    """

    column = (
        models.DailyChallenge.start_hint_payload
        if side == "start"
        else models.DailyChallenge.end_hint_payload
    )
    stmt = (
        update(models.DailyChallenge)
        .where(models.DailyChallenge.id == challenge_id)
        .where(column.is_(None))
        .values(
            {
                column: payload,
                models.DailyChallenge.hints_used: models.DailyChallenge.hints_used + 1,
            }
        )
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return (result.rowcount or 0) > 0
