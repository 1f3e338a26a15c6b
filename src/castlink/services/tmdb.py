"""TMDb-backed implementation of :class:`ActorMovieOracle`."""

from __future__ import annotations

import asyncio
import logging
import math
import random
import re
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import httpx

from ..challenges.models import TIER_ORDER, Tier
from ..core.config import Settings, settings as default_settings
from .cache import CacheBackend, cache_key, get_cache
from .oracle import Actor, Movie, OracleError

logger = logging.getLogger(__name__)

MIN_RELEASE_YEAR = 1970
PAGES_PER_TIER = 5

# Ranges of /person/popular pages sampled for each tier.
TIER_PAGE_BANDS: Dict[Tier, Tuple[int, int]] = {
    Tier.EASY: (1, 4),
    Tier.MEDIUM: (9, 30),
    Tier.HARD: (45, 140),
}

DOCUMENTARY_GENRE = 99
TV_MOVIE_GENRE = 10770

MAKING_OF_PATTERNS = (
    re.compile(r"\bmaking(?:\s+|-)of\b", re.IGNORECASE),
    re.compile(r"\bbehind\s+the\s+scenes\b", re.IGNORECASE),
    re.compile(r"\ba\s+look\s+behind\b", re.IGNORECASE),
)


def release_year(value: Optional[str]) -> Optional[int]:
    if not value or len(value) < 4 or not value[:4].isdigit():
        return None
    return int(value[:4])


def is_making_of(credit: Dict[str, Any]) -> bool:
    """A behind-the-scenes documentary rather than a real film appearance."""

    title = credit.get("title") or ""
    if not any(pattern.search(title) for pattern in MAKING_OF_PATTERNS):
        return False
    genres = credit.get("genre_ids") or []
    return DOCUMENTARY_GENRE in genres or TV_MOVIE_GENRE in genres


def hint_score(movie: Movie) -> float:
    score = (movie.popularity or 0.0) * 2
    if movie.vote_count and movie.vote_average:
        score += math.log(movie.vote_count + 1) * movie.vote_average

    year = release_year(movie.release_date)
    if year is not None:
        if 1980 <= year <= 2020:
            score += 10
        elif year > 2020:
            score += 8
        elif year >= MIN_RELEASE_YEAR:
            score += 6
        else:
            score += 3

    length = len(movie.title)
    if 8 <= length <= 25:
        score += 3
    elif length > 25:
        score += 2
    else:
        score += 1
    return score


def select_hint_movies(movies: Sequence[Movie], count: int) -> List[Movie]:
    """Pick ``count`` recognisable movies spread over as many decades as possible.

    The best movie of each decade is taken first, newest decade first, then
    the runner-up of each decade, then the best of whatever is left.
    """

    if count <= 0:
        return []
    if len(movies) <= count:
        return list(movies)

    ranked = sorted(movies, key=hint_score, reverse=True)
    by_decade: Dict[int, List[Movie]] = defaultdict(list)
    for movie in ranked:
        year = release_year(movie.release_date)
        if year is not None:
            by_decade[year // 10 * 10].append(movie)
    decades = sorted(by_decade, reverse=True)

    selected: List[Movie] = []
    chosen: set[int] = set()
    for rank in (0, 1):
        for decade in decades:
            if len(selected) >= count:
                return selected
            bucket = by_decade[decade]
            if len(bucket) > rank and bucket[rank].id not in chosen:
                selected.append(bucket[rank])
                chosen.add(bucket[rank].id)

    for movie in ranked:
        if len(selected) >= count:
            break
        if movie.id not in chosen:
            selected.append(movie)
            chosen.add(movie.id)
    return selected


class TmdbOracle:
    """Answers actor and movie questions from The Movie Database API.

    Credits and popular-people pages are cached for ``TMDB_CACHE_TTL_SECONDS``
    since every chain validation asks about the same handful of actors.
    """

    def __init__(
        self,
        *,
        config: Optional[Settings] = None,
        cache: Optional[CacheBackend] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._config = config or default_settings
        self._cache = cache
        self._transport = transport
        self._rng = rng or random.Random()

    async def _get_cache(self) -> CacheBackend:
        if self._cache is None:
            self._cache = await get_cache()
        return self._cache

    async def _request(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self._config.tmdb_api_key:
            raise OracleError("TMDB_API_KEY is not configured")
        query: Dict[str, Any] = {"api_key": self._config.tmdb_api_key}
        query.update(params or {})
        try:
            async with httpx.AsyncClient(
                base_url=self._config.tmdb_base_url,
                timeout=self._config.tmdb_timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.get(path, params=query)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPError as exc:
            raise OracleError(f"TMDb request to {path} failed: {exc}") from exc
        except ValueError as exc:
            raise OracleError(f"TMDb returned an unreadable body for {path}") from exc

    async def _cached(self, key: str, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        cache = await self._get_cache()

        async def creator() -> Dict[str, Any]:
            return await self._request(path, params)

        return await cache.remember(key, self._config.tmdb_cache_ttl_seconds, creator)

    async def _movie_credits(self, actor_id: int) -> List[Dict[str, Any]]:
        payload = await self._cached(
            cache_key("tmdb", "credits", actor_id), f"/person/{actor_id}/movie_credits"
        )
        return list(payload.get("cast") or [])

    async def _popular_page(self, page: int) -> List[Dict[str, Any]]:
        payload = await self._cached(
            cache_key("tmdb", "popular", page), "/person/popular", {"page": page}
        )
        return list(payload.get("results") or [])

    async def actor_appears_in_movie(self, actor_id: int, movie_id: int) -> bool:
        # Raw credits: the release-year floor only applies to hints.
        for credit in await self._movie_credits(actor_id):
            if credit.get("id") == movie_id:
                return not is_making_of(credit)
        return False

    def _sample_pages(self, tiers: Iterable[Tier]) -> List[int]:
        pages: List[int] = []
        for tier in tiers:
            first, last = TIER_PAGE_BANDS[tier]
            band = range(first, last + 1)
            pages.extend(self._rng.sample(band, min(PAGES_PER_TIER, len(band))))
        return pages

    async def get_candidate_pool(self, tier: Optional[Tier] = None) -> List[Actor]:
        """Return actors sampled from the popular-people pages of ``tier``.

        Without a tier every band is sampled. Pages that fail to load are
        skipped; an error is raised only when none could be loaded.
        """

        pages = self._sample_pages([tier] if tier is not None else TIER_ORDER)
        results = await asyncio.gather(
            *(self._popular_page(page) for page in pages), return_exceptions=True
        )

        actors: Dict[int, Actor] = {}
        loaded = 0
        for page, result in zip(pages, results):
            if isinstance(result, BaseException):
                logger.warning("Failed to fetch popular people page %s: %s", page, result)
                continue
            loaded += 1
            for person in result:
                if person.get("known_for_department") != "Acting" or not person.get("profile_path"):
                    continue
                actor = Actor.model_validate(person)
                actors.setdefault(actor.id, actor)

        if pages and not loaded:
            raise OracleError("Unable to load any popular people page from TMDb")
        logger.info("Loaded %s candidate actors from %s TMDb page(s)", len(actors), loaded)
        return list(actors.values())

    async def _deathday(self, actor_id: int) -> Optional[str]:
        payload = await self._cached(cache_key("tmdb", "person", actor_id), f"/person/{actor_id}")
        return payload.get("deathday")

    async def get_hint_movies(self, actor_id: int, count: int) -> List[Movie]:
        credits, deathday = await asyncio.gather(
            self._movie_credits(actor_id), self._deathday(actor_id)
        )
        death_year = release_year(deathday)

        movies: List[Movie] = []
        seen: set[int] = set()
        for credit in credits:
            year = release_year(credit.get("release_date"))
            if year is None or year < MIN_RELEASE_YEAR or is_making_of(credit):
                continue
            if death_year is not None and year > death_year:
                continue
            if credit.get("id") in seen or not credit.get("title"):
                continue
            seen.add(credit["id"])
            movies.append(Movie.model_validate(credit))
        return select_hint_movies(movies, count)
