from __future__ import annotations

from typing import Iterable, Set


def build_exclusion_set(
    previous_day_actor_ids: Iterable[int],
    already_assigned_actor_ids: Iterable[int],
) -> Set[int]:
    """Actors that may not be used for the pair being generated."""

    excluded: Set[int] = set(previous_day_actor_ids)
    excluded.update(already_assigned_actor_ids)
    return excluded
