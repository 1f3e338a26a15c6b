from __future__ import annotations

import asyncio
import json
import logging
import random
from dataclasses import dataclass
from datetime import date
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import Settings, settings as default_settings
from ..core.database import with_retry
from ..core.dates import shift_day
from ..db.models import DailyChallenge
from ..services import challenge_repository as repo
from ..services.oracle import Actor, ActorMovieOracle, Movie
from .errors import ChallengeNotFound, ChallengesUnavailable, DuplicateChallenge
from .exclusion import build_exclusion_set
from .generator import generate_all, generate_one
from .models import (
    TIER_ORDER,
    ActorHint,
    ActorPair,
    ActorRef,
    ChallengeRecord,
    ChallengeStatus,
    HintResult,
    HintSide,
    HintSummary,
    RolloverSummary,
    Tier,
    hints_remaining,
)
from .selector import PopularityBands, TierClassifier

logger = logging.getLogger(__name__)

T = TypeVar("T")


def sanitize_image_path(path: Optional[str]) -> Optional[str]:
    """Reduce an image URL or path to the relative ``/file.jpg`` form."""

    if not path:
        return None
    cleaned = path.strip()
    if not cleaned:
        return None
    if cleaned.startswith("http"):
        cleaned = "/" + cleaned.rstrip("/").rsplit("/", 1)[-1]
    if not cleaned.startswith("/"):
        cleaned = "/" + cleaned
    return cleaned


def _actor_ref(actor: Actor) -> ActorRef:
    return ActorRef(id=actor.id, name=actor.name, profile_path=sanitize_image_path(actor.profile_path))


def _to_record(model: DailyChallenge) -> ChallengeRecord:
    return ChallengeRecord(
        id=model.id,
        date=model.challenge_date,
        tier=Tier(model.tier),
        status=ChallengeStatus(model.status),
        start_actor=ActorRef(
            id=model.start_actor_id,
            name=model.start_actor_name,
            profile_path=model.start_actor_profile_path,
        ),
        end_actor=ActorRef(
            id=model.end_actor_id,
            name=model.end_actor_name,
            profile_path=model.end_actor_profile_path,
        ),
        hints_used=model.hints_used,
        hints_remaining=hints_remaining(model.hints_used),
    )


def _sorted(records: Iterable[ChallengeRecord]) -> List[ChallengeRecord]:
    return sorted(records, key=lambda record: record.tier.rank)


def _actor_ids(records: Iterable[ChallengeRecord]) -> set[int]:
    ids: set[int] = set()
    for record in records:
        ids.update(record.actor_ids)
    return ids


def _missing_tiers(records: Iterable[ChallengeRecord]) -> List[Tier]:
    present = {record.tier for record in records}
    return [tier for tier in TIER_ORDER if tier not in present]


def _decode_hint(payload: Optional[str]) -> Optional[List[Movie]]:
    if payload is None:
        return None
    return [Movie.model_validate(item) for item in json.loads(payload)]


@dataclass(frozen=True)
class _HintState:
    start_actor_id: int
    start_actor_name: str
    end_actor_id: int
    end_actor_name: str
    hints_used: int
    start_hint_payload: Optional[str]
    end_hint_payload: Optional[str]

    def side(self, side: HintSide) -> Tuple[int, str, Optional[str]]:
        if side == "start":
            return self.start_actor_id, self.start_actor_name, self.start_hint_payload
        return self.end_actor_id, self.end_actor_name, self.end_hint_payload


class ChallengeLifecycleManager:
    """Creates, serves and rotates the three daily challenges.

    Concurrent requests for the same day share one generation task, so a cold
    start under load produces a single record per tier. The ``(date, tier)``
    unique constraint backs this up across processes.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        oracle: ActorMovieOracle,
        *,
        classifier: Optional[TierClassifier] = None,
        rng: Optional[random.Random] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._session_factory = session_factory
        self._oracle = oracle
        self._settings = settings or default_settings
        self._classifier = classifier or PopularityBands.from_settings(self._settings)
        self._rng = rng or random.Random()
        self._inflight: Dict[date, asyncio.Task[List[ChallengeRecord]]] = {}
        self._last_day: Optional[date] = None

    async def _run(self, operation: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async def attempt() -> T:
            async with self._session_factory() as session:
                try:
                    result = await operation(session)
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise
                return result

        return await with_retry(attempt)

    async def _records_for(self, day: date) -> List[ChallengeRecord]:
        async def load(session: AsyncSession) -> List[ChallengeRecord]:
            models = await repo.list_challenges_for_date(session, day)
            return [_to_record(model) for model in models]

        return _sorted(await self._run(load))

    async def get_challenge(self, challenge_id: str) -> ChallengeRecord:
        async def load(session: AsyncSession) -> Optional[ChallengeRecord]:
            model = await repo.get_challenge(session, challenge_id)
            return _to_record(model) if model is not None else None

        record = await self._run(load)
        if record is None:
            raise ChallengeNotFound(challenge_id)
        return record

    async def ensure_daily_challenges(self, day: date) -> List[ChallengeRecord]:
        """Return the challenges for ``day``, generating any missing tier."""

        records = await self._records_for(day)
        if not _missing_tiers(records):
            return records
        return await self._join_generation(day)

    async def force_regenerate(self, day: date) -> List[ChallengeRecord]:
        """Throw away every challenge for ``day`` and build a fresh set."""

        self._inflight.pop(day, None)
        removed = await self._run(lambda session: repo.delete_challenges_for_date(session, day))
        logger.info("Removed %s challenge(s) for %s before regenerating", removed, day)
        return await self._join_generation(day)

    async def regenerate_tier(self, day: date, tier: Tier) -> List[ChallengeRecord]:
        """Replace the ``tier`` challenge for ``day`` keeping the other tiers."""

        records = await self._records_for(day)
        previous = await self._records_for(shift_day(day, -1))
        others = [record for record in records if record.tier is not tier]
        current = next((record for record in records if record.tier is tier), None)
        status = current.status if current is not None else ChallengeStatus.ACTIVE

        try:
            pool = await self._oracle.get_candidate_pool(tier)
        except Exception:
            logger.exception("Failed to load the candidate pool for %s (%s)", day, tier.value)
            return records

        pair = generate_one(
            pool,
            tier,
            build_exclusion_set(_actor_ids(previous), _actor_ids(others)),
            classifier=self._classifier,
            rng=self._rng,
            min_relaxed_pool=self._settings.challenge_relaxed_pool_min,
        )
        if pair is None:
            return records

        async def replace(session: AsyncSession) -> None:
            await repo.delete_challenges_for_date(session, day, tier=tier)
            await repo.insert_challenge(
                session,
                day=day,
                tier=tier,
                status=status,
                start_actor=_actor_ref(pair.start),
                end_actor=_actor_ref(pair.end),
            )

        try:
            await self._run(replace)
        except DuplicateChallenge:
            logger.warning("Challenge for %s (%s) was recreated concurrently", day, tier.value)
        else:
            logger.info(
                "Regenerated %s challenge for %s: %s to %s",
                tier.value,
                day,
                pair.start.name,
                pair.end.name,
            )
        return await self._records_for(day)

    async def _join_generation(self, day: date) -> List[ChallengeRecord]:
        if self._last_day != day:
            for stale_day in [key for key in self._inflight if key != day]:
                self._inflight.pop(stale_day, None)
            self._last_day = day

        task = self._inflight.get(day)
        if task is None:
            task = asyncio.ensure_future(self._generate_for_day(day))
            self._inflight[day] = task
            task.add_done_callback(lambda finished: self._release(day, finished))
        return await asyncio.shield(task)

    def _release(self, day: date, task: asyncio.Task[List[ChallengeRecord]]) -> None:
        if self._inflight.get(day) is task:
            del self._inflight[day]

    async def _generate_for_day(self, day: date) -> List[ChallengeRecord]:
        records = await self._records_for(day)
        missing = _missing_tiers(records)
        if missing:
            previous = await self._records_for(shift_day(day, -1))
            created = await self._fill(
                day,
                missing,
                ChallengeStatus.ACTIVE,
                previous_day_actor_ids=_actor_ids(previous),
                assigned_actor_ids=_actor_ids(records),
            )
            logger.info(
                "Generated %s of %s missing challenge(s) for %s",
                len(created),
                len(missing),
                day,
            )
            records = await self._records_for(day)
        if not records:
            raise ChallengesUnavailable(day)
        return records

    async def _fill(
        self,
        day: date,
        tiers: Sequence[Tier],
        status: ChallengeStatus,
        *,
        previous_day_actor_ids: Iterable[int],
        assigned_actor_ids: Iterable[int],
    ) -> List[Tier]:
        if not tiers:
            return []
        try:
            pool = await self._oracle.get_candidate_pool()
        except Exception:
            logger.exception("Failed to load the candidate pool for %s", day)
            return []

        pairs = generate_all(
            pool,
            previous_day_actor_ids,
            classifier=self._classifier,
            rng=self._rng,
            tiers=tiers,
            already_assigned_actor_ids=assigned_actor_ids,
            min_relaxed_pool=self._settings.challenge_relaxed_pool_min,
        )

        created: List[Tier] = []
        for tier in TIER_ORDER:
            pair = pairs.get(tier)
            if pair is None:
                continue
            if await self._insert(day, status, pair):
                created.append(tier)
        return created

    async def _insert(self, day: date, status: ChallengeStatus, pair: ActorPair) -> bool:
        async def create(session: AsyncSession) -> None:
            await repo.insert_challenge(
                session,
                day=day,
                tier=pair.tier,
                status=status,
                start_actor=_actor_ref(pair.start),
                end_actor=_actor_ref(pair.end),
            )

        try:
            await self._run(create)
        except DuplicateChallenge:
            logger.warning(
                "Challenge for %s (%s) already created by another writer; keeping it",
                day,
                pair.tier.value,
            )
            return False
        logger.info(
            "Created %s %s challenge for %s: %s to %s%s",
            status.value,
            pair.tier.value,
            day,
            pair.start.name,
            pair.end.name,
            " (relaxed)" if pair.relaxed else "",
        )
        return True

    async def promote_next_to_active(self, today: date, tomorrow: date) -> RolloverSummary:
        """Roll the challenges over to ``today`` and queue up ``tomorrow``.

        Safe to run repeatedly: once today has three active challenges and
        tomorrow three upcoming ones, nothing changes.
        """

        summary = RolloverSummary(today=today, tomorrow=tomorrow)
        retain = self._settings.challenge_retain_archived

        async def retire_stale(session: AsyncSession) -> int:
            active = await repo.list_challenges_by_status(session, ChallengeStatus.ACTIVE)
            stale = [model for model in active if model.challenge_date != today]
            if retain:
                for model in stale:
                    model.status = ChallengeStatus.ARCHIVED.value
                return len(stale)
            return await repo.delete_challenges(session, [model.id for model in stale])

        summary.removed_stale = await self._run(retire_stale)

        todays = await self._records_for(today)
        active_tiers = {record.tier for record in todays if record.status is ChallengeStatus.ACTIVE}

        async def discard_stale_queue(session: AsyncSession) -> int:
            # Tiers still awaiting promotion keep their queue for _promote_tier.
            queued = await repo.list_challenges_by_status(session, ChallengeStatus.NEXT)
            stale = [
                model.id
                for model in queued
                if Tier(model.tier) in active_tiers and model.challenge_date <= today
            ]
            return await repo.delete_challenges(session, stale)

        discarded = await self._run(discard_stale_queue)
        if discarded:
            logger.info("Discarded %s queued challenge(s) left over before %s", discarded, today)

        for tier in TIER_ORDER:
            if tier in active_tiers:
                continue
            if await self._promote_tier(tier, today, tomorrow):
                summary.promoted.append(tier)

        todays = await self._records_for(today)
        missing_today = _missing_tiers(todays)
        if missing_today:
            summary.generated.extend(
                await self._fill(
                    today,
                    missing_today,
                    ChallengeStatus.ACTIVE,
                    previous_day_actor_ids=(),
                    assigned_actor_ids=_actor_ids(todays),
                )
            )
            todays = await self._records_for(today)

        upcoming = await self._records_for(tomorrow)
        missing_tomorrow = _missing_tiers(upcoming)
        if missing_tomorrow:
            await self._fill(
                tomorrow,
                missing_tomorrow,
                ChallengeStatus.NEXT,
                previous_day_actor_ids=_actor_ids(
                    record for record in todays if record.status is ChallengeStatus.ACTIVE
                ),
                assigned_actor_ids=_actor_ids(upcoming),
            )
            upcoming = await self._records_for(tomorrow)

        summary.active = [record for record in todays if record.status is ChallengeStatus.ACTIVE]
        summary.upcoming = [record for record in upcoming if record.status is ChallengeStatus.NEXT]
        logger.info(
            "Rollover to %s: promoted %s, generated %s, removed %s stale",
            today,
            [tier.value for tier in summary.promoted],
            [tier.value for tier in summary.generated],
            summary.removed_stale,
        )
        return summary

    async def _promote_tier(self, tier: Tier, today: date, tomorrow: date) -> bool:
        async def promote(session: AsyncSession) -> bool:
            candidates = await repo.list_challenges_by_status(session, ChallengeStatus.NEXT, tier=tier)
            if not candidates:
                return False
            chosen = next(
                (model for model in candidates if model.challenge_date == tomorrow),
                candidates[0],
            )
            stale = [
                model.id
                for model in candidates
                if model.id != chosen.id and model.challenge_date != tomorrow
            ]
            await repo.delete_challenges(session, stale)
            await session.flush()
            queued_for = chosen.challenge_date
            chosen.challenge_date = today
            chosen.status = ChallengeStatus.ACTIVE.value
            await session.flush()
            logger.info(
                "Promoted %s challenge %s queued for %s to active for %s",
                tier.value,
                chosen.id,
                queued_for,
                today,
            )
            return True

        try:
            return await self._run(promote)
        except IntegrityError:
            logger.warning("Today's %s challenge was created concurrently; skipping promotion", tier.value)
            return False

    async def record_hint(self, challenge_id: str, side: HintSide) -> HintResult:
        """Reveal movies for one side of a challenge.

        Each side is generated once; asking again returns the stored hint
        without spending another one.
        """

        state = await self._hint_state(challenge_id)
        actor_id, actor_name, stored = state.side(side)

        if stored is None:
            movies = await self._oracle.get_hint_movies(
                actor_id, self._settings.challenge_hint_movie_count
            )
            payload = json.dumps([movie.model_dump() for movie in movies])
            written = await self._run(
                lambda session: repo.store_hint_payload(session, challenge_id, side, payload)
            )
            if not written:
                logger.info("Hint for %s (%s) was stored concurrently", challenge_id, side)
            state = await self._hint_state(challenge_id)
            _, _, stored = state.side(side)

        return HintResult(
            challenge_id=challenge_id,
            side=side,
            actor_name=actor_name,
            movies=_decode_hint(stored) or [],
            hints_used=state.hints_used,
            hints_remaining=hints_remaining(state.hints_used),
        )

    async def get_hints(self, challenge_id: str) -> HintSummary:
        state = await self._hint_state(challenge_id)
        start_movies = _decode_hint(state.start_hint_payload)
        end_movies = _decode_hint(state.end_hint_payload)
        return HintSummary(
            challenge_id=challenge_id,
            hints_used=state.hints_used,
            hints_remaining=hints_remaining(state.hints_used),
            start_actor_hint=(
                ActorHint(actor_name=state.start_actor_name, movies=start_movies)
                if start_movies is not None
                else None
            ),
            end_actor_hint=(
                ActorHint(actor_name=state.end_actor_name, movies=end_movies)
                if end_movies is not None
                else None
            ),
        )

    async def _hint_state(self, challenge_id: str) -> _HintState:
        async def load(session: AsyncSession) -> Optional[_HintState]:
            model = await repo.get_challenge(session, challenge_id)
            if model is None:
                return None
            return _HintState(
                start_actor_id=model.start_actor_id,
                start_actor_name=model.start_actor_name,
                end_actor_id=model.end_actor_id,
                end_actor_name=model.end_actor_name,
                hints_used=model.hints_used,
                start_hint_payload=model.start_hint_payload,
                end_hint_payload=model.end_hint_payload,
            )

        state = await self._run(load)
        if state is None:
            raise ChallengeNotFound(challenge_id)
        return state
