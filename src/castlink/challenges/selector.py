from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Callable, Collection, Dict, Iterable, List, Optional

from ..core.config import Settings, settings
from ..services.oracle import Actor
from .models import ActorPair, Tier

logger = logging.getLogger(__name__)

TierClassifier = Callable[[Actor, Tier], bool]


@dataclass(frozen=True)
class PopularityBands:
    """Bucket actors into tiers by the oracle's popularity score.

    Better known actors make for easier puzzles: ``easy`` takes everyone at or
    above ``easy_min``, ``medium`` the band between the two thresholds and
    ``hard`` whatever is left. Actors without a score only qualify for ``hard``.
    """

    easy_min: float = 40.0
    medium_min: float = 10.0

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "PopularityBands":
        config = config or settings
        return cls(
            easy_min=config.tier_easy_min_popularity,
            medium_min=config.tier_medium_min_popularity,
        )

    def __call__(self, actor: Actor, tier: Tier) -> bool:
        popularity = actor.popularity
        if popularity is None:
            return tier is Tier.HARD
        if tier is Tier.EASY:
            return popularity >= self.easy_min
        if tier is Tier.MEDIUM:
            return self.medium_min <= popularity < self.easy_min
        return popularity < self.medium_min


def _unique_actors(pool: Iterable[Actor]) -> List[Actor]:
    unique: Dict[int, Actor] = {}
    for actor in pool:
        unique.setdefault(actor.id, actor)
    return list(unique.values())


def select_pair(
    pool: Iterable[Actor],
    tier: Tier,
    exclusion: Collection[int],
    *,
    classifier: TierClassifier,
    rng: Optional[random.Random] = None,
    min_relaxed_pool: Optional[int] = None,
) -> Optional[ActorPair]:
    """Pick two distinct, non-excluded actors for ``tier``.

    When the tier has fewer than two eligible actors the choice is relaxed to
    the whole non-excluded pool, provided that pool holds at least
    ``min_relaxed_pool`` actors. Returns ``None`` when no pair can be formed.
    """

    rng = rng or random.Random()
    floor = settings.challenge_relaxed_pool_min if min_relaxed_pool is None else min_relaxed_pool

    available = [actor for actor in _unique_actors(pool) if actor.id not in exclusion]
    eligible = [actor for actor in available if classifier(actor, tier)]

    if len(eligible) >= 2:
        start, end = rng.sample(eligible, 2)
        return ActorPair(start=start, end=end, tier=tier)

    if len(available) < 2 or len(available) < floor:
        logger.debug(
            "No %s pair possible: %s eligible, %s available, floor %s",
            tier.value,
            len(eligible),
            len(available),
            floor,
        )
        return None

    logger.warning(
        "Only %s %s candidates after exclusions; relaxing tier filter over %s actors",
        len(eligible),
        tier.value,
        len(available),
    )
    start, end = rng.sample(available, 2)
    return ActorPair(start=start, end=end, tier=tier, relaxed=True)
