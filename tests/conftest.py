"""Pytest configuration and fixtures"""
import asyncio
from collections import Counter
from typing import Dict, Iterable, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

from castgraph.cache import LookupCache
from castgraph.config import CACHE_TTL
from castgraph.exceptions import UpstreamError
from castgraph.main import create_app, limiter
from castgraph.models import Actor, CastMember, Movie
from castgraph.pathfinder import ConnectionPathFinder


class FakeClock:
    """Manually advanced time source for TTL tests"""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeProvider:
    """
    In-memory MetadataProvider over a synthetic cast graph

    Args:
        actors: actor id -> name
        movies: movie id -> (title, cast actor ids in billing order)
        imdb_ids: movie id -> external id returned by get_movie_details

    Filmographies list movies in the order they appear in `movies`.
    Every call is counted in `calls`; cast lookups are recorded in order
    in `cast_requests`.
    """

    def __init__(
        self,
        actors: Dict[int, str],
        movies: Dict[int, Tuple[str, List[int]]],
        imdb_ids: Optional[Dict[int, str]] = None,
    ):
        self.actors = actors
        self.movies = movies
        self.imdb_ids = imdb_ids or {}
        self.calls = Counter()
        self.failing_casts = set()
        self.failing_filmographies = set()
        self.failing_actors = set()
        self.cast_requests = []

    async def get_actor_details(self, actor_id: int) -> Actor:
        self.calls['actor_details'] += 1
        if actor_id in self.failing_actors or actor_id not in self.actors:
            raise UpstreamError(f"actor {actor_id} unavailable", endpoint=f"/person/{actor_id}", status_code=404)
        return Actor(id=actor_id, name=self.actors[actor_id], profile_path=f"/{actor_id}.jpg")

    async def get_actor_filmography(self, actor_id: int) -> List[Movie]:
        self.calls['filmography'] += 1
        if actor_id in self.failing_filmographies:
            raise UpstreamError(f"filmography {actor_id} unavailable", status_code=500)
        return [
            Movie(id=movie_id, title=title, release_date="2000-01-01")
            for movie_id, (title, cast) in self.movies.items()
            if actor_id in cast
        ]

    async def get_movie_cast(self, movie_id: int) -> List[CastMember]:
        self.calls['movie_cast'] += 1
        self.cast_requests.append(movie_id)
        if movie_id in self.failing_casts:
            raise UpstreamError(f"cast {movie_id} unavailable", status_code=503)
        _, cast = self.movies[movie_id]
        return [
            CastMember(id=actor_id, name=self.actors[actor_id], character=f"Role {order}", order=order)
            for order, actor_id in enumerate(cast)
        ]

    async def get_movie_details(self, movie_id: int) -> Movie:
        self.calls['movie_details'] += 1
        title, _ = self.movies[movie_id]
        return Movie(id=movie_id, title=title, release_date="2000-01-01", imdb_id=self.imdb_ids.get(movie_id))

    async def search_actors(self, query: str) -> List[Actor]:
        self.calls['search'] += 1
        return [
            Actor(id=actor_id, name=name)
            for actor_id, name in self.actors.items()
            if query.lower() in name.lower()
        ]

    def lookup_calls(self, kinds: Iterable[str] = ('filmography', 'movie_cast')) -> int:
        return sum(self.calls[kind] for kind in kinds)


class CachingFakeProvider(FakeProvider):
    """
    FakeProvider that memoizes filmographies through a LookupCache

    Filmography lookups block on `gate` until a test sets it, so several
    searches can be left waiting on the same in-flight computation.
    """

    def __init__(self, cache: LookupCache, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.cache = cache
        self.gate = asyncio.Event()

    async def get_actor_filmography(self, actor_id: int) -> List[Movie]:
        async def fetch() -> List[Movie]:
            await self.gate.wait()
            return await FakeProvider.get_actor_filmography(self, actor_id)

        return await self.cache.get_or_compute(f"actor:filmography:{actor_id}", CACHE_TTL["filmography"], fetch)


ACTORS = {
    1: "Alice Actor",
    2: "Bob Star",
    3: "Xavier Link",
    4: "Carol Extra",
    5: "Isla Lone",
    6: "Otto Solo",
    7: "Yara Bridge",
}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return LookupCache(max_size=100, clock=clock)


@pytest.fixture
def transitive_provider():
    """Alice and Bob share no movie but both worked with Xavier"""
    return FakeProvider(
        ACTORS,
        {
            100: ("First Meeting", [1, 3, 4]),
            200: ("Second Meeting", [3, 2]),
            500: ("Lonely Island", [5]),
            600: ("Solo Trip", [6]),
        },
        imdb_ids={100: "tt0000100", 200: "tt0000200"},
    )


@pytest.fixture
def finder(transitive_provider, cache):
    return ConnectionPathFinder(transitive_provider, cache)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    limiter.reset()
    yield


@pytest.fixture
def client(transitive_provider, cache):
    """Test client for the FastAPI app"""
    return TestClient(create_app(provider=transitive_provider, cache=cache))
