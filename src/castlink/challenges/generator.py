from __future__ import annotations

import logging
import random
from typing import Dict, Iterable, Optional, Sequence

from ..services.oracle import Actor
from .exclusion import build_exclusion_set
from .models import TIER_ORDER, ActorPair, Tier
from .selector import TierClassifier, select_pair

logger = logging.getLogger(__name__)


def generate_all(
    pool: Sequence[Actor],
    previous_day_actor_ids: Iterable[int],
    *,
    classifier: TierClassifier,
    rng: Optional[random.Random] = None,
    tiers: Sequence[Tier] = TIER_ORDER,
    already_assigned_actor_ids: Iterable[int] = (),
    min_relaxed_pool: Optional[int] = None,
) -> Dict[Tier, ActorPair]:
    """Generate one pair per tier with no actor shared between tiers.

    Tiers are filled easiest first. A tier that cannot be filled is left out
    of the result and the remaining tiers are still attempted.
    """

    rng = rng or random.Random()
    ordered = sorted(set(tiers), key=lambda tier: tier.rank)
    excluded = build_exclusion_set(previous_day_actor_ids, already_assigned_actor_ids)

    pairs: Dict[Tier, ActorPair] = {}
    for tier in ordered:
        pair = select_pair(
            pool,
            tier,
            excluded,
            classifier=classifier,
            rng=rng,
            min_relaxed_pool=min_relaxed_pool,
        )
        if pair is None:
            logger.warning("Unable to generate a %s challenge: tier unfillable", tier.value)
            continue
        pairs[tier] = pair
        excluded.update(pair.actor_ids)
    return pairs


def generate_one(
    pool: Sequence[Actor],
    tier: Tier,
    exclude_actor_ids: Iterable[int],
    *,
    classifier: TierClassifier,
    rng: Optional[random.Random] = None,
    min_relaxed_pool: Optional[int] = None,
) -> Optional[ActorPair]:
    pair = select_pair(
        pool,
        tier,
        set(exclude_actor_ids),
        classifier=classifier,
        rng=rng,
        min_relaxed_pool=min_relaxed_pool,
    )
    if pair is None:
        logger.warning("Unable to regenerate the %s challenge: tier unfillable", tier.value)
    return pair
