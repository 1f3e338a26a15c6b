from __future__ import annotations

import random
from typing import Dict, List

import httpx
import pytest

from castlink.challenges.models import Tier
from castlink.core.config import settings
from castlink.services.cache import InMemoryCache
from castlink.services.oracle import Movie, OracleError
from castlink.services.tmdb import TIER_PAGE_BANDS, TmdbOracle, is_making_of, select_hint_movies

CREDITS = {
    "cast": [
        {"id": 1, "title": "Heat", "release_date": "1995-12-15", "genre_ids": [80], "popularity": 30.0},
        {"id": 2, "title": "The Making of Heat", "release_date": "1996-01-01", "genre_ids": [99]},
        {"id": 3, "title": "Old Western", "release_date": "1962-03-01", "genre_ids": [37]},
        {"id": 4, "title": "Late Film", "release_date": "2021-06-01", "genre_ids": [18], "popularity": 5.0},
        {"id": 5, "title": "Eighties Hit", "release_date": "1984-06-01", "genre_ids": [28], "popularity": 50.0},
        {"id": 6, "title": "Nineties Drama", "release_date": "1998-06-01", "genre_ids": [18], "popularity": 12.0},
        {"id": 7, "title": "Modern Thriller", "release_date": "2008-02-01", "genre_ids": [53], "popularity": 20.0},
    ]
}


def _oracle(handler, *, api_key: str | None = "test-key") -> TmdbOracle:
    return TmdbOracle(
        config=settings.model_copy(update={"tmdb_api_key": api_key}),
        cache=InMemoryCache(),
        transport=httpx.MockTransport(handler),
        rng=random.Random(7),
    )


def _person(person_id: int, department: str = "Acting", profile: str | None = "/p.jpg") -> Dict:
    return {
        "id": person_id,
        "name": f"Person {person_id}",
        "profile_path": profile,
        "popularity": 42.0,
        "known_for_department": department,
    }


@pytest.mark.asyncio
async def test_actor_appears_in_movie_uses_cached_credits() -> None:
    requests: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        assert request.url.path == "/3/person/10/movie_credits"
        assert request.url.params["api_key"] == "test-key"
        return httpx.Response(200, json=CREDITS)

    oracle = _oracle(handler)

    assert await oracle.actor_appears_in_movie(10, 1) is True
    assert await oracle.actor_appears_in_movie(10, 3) is True
    assert await oracle.actor_appears_in_movie(10, 99) is False
    assert await oracle.actor_appears_in_movie(10, 2) is False
    assert len(requests) == 1


@pytest.mark.asyncio
async def test_http_errors_become_oracle_errors() -> None:
    oracle = _oracle(lambda request: httpx.Response(500, json={"status_message": "boom"}))

    with pytest.raises(OracleError):
        await oracle.actor_appears_in_movie(10, 1)


@pytest.mark.asyncio
async def test_missing_api_key_is_an_oracle_error() -> None:
    oracle = _oracle(lambda request: httpx.Response(200, json=CREDITS), api_key=None)

    with pytest.raises(OracleError):
        await oracle.actor_appears_in_movie(10, 1)


@pytest.mark.asyncio
async def test_candidate_pool_samples_tier_pages_and_filters() -> None:
    pages: List[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/3/person/popular"
        page = int(request.url.params["page"])
        pages.append(page)
        return httpx.Response(
            200,
            json={
                "page": page,
                "results": [
                    _person(1),
                    _person(page * 100),
                    _person(page * 100 + 1, department="Directing"),
                    _person(page * 100 + 2, profile=None),
                ],
            },
        )

    pool = await _oracle(handler).get_candidate_pool(Tier.EASY)

    first, last = TIER_PAGE_BANDS[Tier.EASY]
    assert sorted(pages) == list(range(first, last + 1))
    ids = [actor.id for actor in pool]
    assert ids.count(1) == 1
    assert sorted(ids) == sorted([1] + [page * 100 for page in pages])
    assert all(actor.popularity == 42.0 for actor in pool)


@pytest.mark.asyncio
async def test_candidate_pool_without_tier_covers_every_band() -> None:
    pages: List[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        pages.append(int(request.url.params["page"]))
        return httpx.Response(200, json={"results": []})

    await _oracle(handler).get_candidate_pool()

    for first, last in TIER_PAGE_BANDS.values():
        assert any(first <= page <= last for page in pages)


@pytest.mark.asyncio
async def test_candidate_pool_tolerates_some_failed_pages() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        page = int(request.url.params["page"])
        if page % 2:
            return httpx.Response(503)
        return httpx.Response(200, json={"results": [_person(page)]})

    pool = await _oracle(handler).get_candidate_pool(Tier.EASY)

    assert sorted(actor.id for actor in pool) == [2, 4]


@pytest.mark.asyncio
async def test_candidate_pool_fails_when_every_page_fails() -> None:
    oracle = _oracle(lambda request: httpx.Response(503))

    with pytest.raises(OracleError):
        await oracle.get_candidate_pool(Tier.HARD)


@pytest.mark.asyncio
async def test_hint_movies_skip_old_making_of_and_posthumous() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/movie_credits"):
            return httpx.Response(200, json=CREDITS)
        return httpx.Response(200, json={"id": 10, "name": "Person 10", "deathday": "2019-05-01"})

    movies = await _oracle(handler).get_hint_movies(10, 3)

    ids = [movie.id for movie in movies]
    assert len(ids) == 3
    assert not {2, 3, 4} & set(ids)
    years = {movie.release_date[:3] for movie in movies}
    assert len(years) == 3


def test_making_of_needs_title_and_genre() -> None:
    assert is_making_of({"title": "Behind the Scenes of Jaws", "genre_ids": [10770]})
    assert not is_making_of({"title": "Behind the Scenes of Jaws", "genre_ids": [18]})
    assert not is_making_of({"title": "Jaws", "genre_ids": [99]})


def test_select_hint_movies_spreads_decades() -> None:
    movies = [
        Movie(id=1, title="Blockbuster One", release_date="2015-01-01", popularity=90.0),
        Movie(id=2, title="Blockbuster Two", release_date="2016-01-01", popularity=80.0),
        Movie(id=3, title="Blockbuster Three", release_date="2017-01-01", popularity=70.0),
        Movie(id=4, title="Quiet Nineties", release_date="1994-01-01", popularity=1.0),
        Movie(id=5, title="Quiet Eighties", release_date="1983-01-01", popularity=1.0),
    ]

    selected = select_hint_movies(movies, 3)

    assert [movie.id for movie in selected] == [1, 4, 5]
    assert select_hint_movies(movies, 10) == movies
    assert select_hint_movies(movies, 0) == []


@pytest.mark.asyncio
async def test_unreadable_body_becomes_oracle_error() -> None:
    oracle = _oracle(lambda request: httpx.Response(200, text="<html>maintenance</html>"))

    with pytest.raises(OracleError):
        await oracle.actor_appears_in_movie(10, 1)
