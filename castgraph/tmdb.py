"""
Metadata provider interface and its TMDB implementation

The path finder only depends on the MetadataProvider protocol. TMDBProvider
talks to The Movie Database over a pooled httpx.AsyncClient and memoizes
every response through the shared LookupCache.
"""

from functools import wraps
from typing import Any, Callable, List, Optional, Protocol
import asyncio
import logging

import httpx

from castgraph.cache import LookupCache
from castgraph.config import (
    CACHE_TTL,
    RATE_LIMIT_BACKOFF_SECONDS,
    RATE_LIMIT_MAX_RETRIES,
    TMDB_BASE_URL,
)
from castgraph.exceptions import UpstreamError
from castgraph.models import Actor, CastMember, KnownFor, Movie

logger = logging.getLogger(__name__)


class MetadataProvider(Protocol):
    """Lookups consumed by the path finder and the HTTP layer"""

    async def get_actor_details(self, actor_id: int) -> Actor: ...

    async def get_actor_filmography(self, actor_id: int) -> List[Movie]: ...

    async def get_movie_cast(self, movie_id: int) -> List[CastMember]: ...

    async def get_movie_details(self, movie_id: int) -> Movie: ...

    async def search_actors(self, query: str) -> List[Actor]: ...


def _endpoint_of(args: tuple, kwargs: dict) -> str:
    # (self, endpoint, ...) for bound provider methods
    if 'endpoint' in kwargs:
        return str(kwargs['endpoint'])
    return str(args[1]) if len(args) > 1 else ''


# Retry decorator for API calls
def retry_on_failure(max_retries: int = 3, backoff_factor: float = 0.5):
    """
    Decorator to retry async functions on transient failures

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
        backoff_factor: Multiplier for exponential backoff (default: 0.5)

    Retries on:
    - httpx.TimeoutException (network timeouts)
    - httpx.ConnectError (connection failures)
    - httpx.ReadError (read failures)

    Does NOT retry on:
    - httpx.HTTPStatusError (4xx, 5xx responses)
    - Other exceptions
    """
    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return await func(*args, **kwargs)

                except (httpx.TimeoutException, httpx.ConnectError, httpx.ReadError) as e:
                    if attempt < max_retries - 1:
                        # Exponential backoff: 0.5s, 1s, ...
                        sleep_time = backoff_factor * (2 ** attempt)
                        logger.warning(
                            "API call failed, retrying",
                            extra={
                                "error_type": type(e).__name__,
                                "retry_delay": sleep_time,
                                "attempt": attempt + 1,
                                "max_retries": max_retries
                            }
                        )
                        await asyncio.sleep(sleep_time)
                        continue

                    # Last attempt failed
                    logger.error(f"API call failed after {max_retries} attempts", extra={"error": str(e)})
                    raise UpstreamError(
                        f"TMDB request failed after {max_retries} attempts: {e}",
                        endpoint=_endpoint_of(args, kwargs),
                    ) from e

                except httpx.HTTPError as e:
                    # Other transport failures are not worth retrying
                    raise UpstreamError(
                        f"TMDB request failed: {e}",
                        endpoint=_endpoint_of(args, kwargs),
                    ) from e

        return wrapper
    return decorator


def build_http_client() -> httpx.AsyncClient:
    """
    Create an HTTP client for TMDB requests

    Configured with:
    - Granular timeouts (connect, read, write, pool)
    - Connection limits sized for batched cast fan-out
    - Proper User-Agent header
    """
    timeout = httpx.Timeout(
        connect=5.0,
        read=15.0,
        write=5.0,
        pool=5.0
    )

    limits = httpx.Limits(
        max_connections=100,
        max_keepalive_connections=20
    )

    return httpx.AsyncClient(
        timeout=timeout,
        limits=limits,
        headers={
            'User-Agent': 'CastGraph/1.0 (Six Degrees Path Finder)',
            'Accept': 'application/json'
        },
        http2=True
    )


class TMDBProvider:
    """
    MetadataProvider backed by the TMDB v3 REST API

    Every lookup goes through LookupCache.get_or_compute with the TTL class
    of the data it returns, so repeated lookups during a search cost no
    network round trip.
    """

    def __init__(
        self,
        api_key: str,
        cache: LookupCache,
        base_url: str = TMDB_BASE_URL,
        client: Optional[httpx.AsyncClient] = None,
        rate_limit_retries: int = RATE_LIMIT_MAX_RETRIES,
        rate_limit_backoff: float = RATE_LIMIT_BACKOFF_SECONDS,
    ):
        if not api_key:
            raise ValueError("TMDB_API_KEY environment variable is required")

        self.api_key = api_key
        self.cache = cache
        self.base_url = base_url.rstrip('/')
        self.rate_limit_retries = rate_limit_retries
        self.rate_limit_backoff = rate_limit_backoff
        self._owns_client = client is None
        self.client = client or build_http_client()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False

    async def aclose(self):
        """Close the HTTP client if this provider created it"""
        if self._owns_client:
            await self.client.aclose()

    @retry_on_failure(max_retries=3, backoff_factor=0.5)
    async def _request(self, endpoint: str, params: Optional[dict] = None) -> dict:
        """
        GET a TMDB endpoint and return the decoded JSON body

        Rate limiting (HTTP 429) is retried here with backoff, honouring
        Retry-After. Any other HTTP failure becomes an UpstreamError.
        """
        query = {'api_key': self.api_key}
        if params:
            query.update(params)

        url = f"{self.base_url}{endpoint}"

        for attempt in range(self.rate_limit_retries + 1):
            response = await self.client.get(url, params=query)

            if response.status_code == 429 and attempt < self.rate_limit_retries:
                delay = self._retry_after(response, attempt)
                logger.warning(
                    "TMDB rate limited, backing off",
                    extra={"endpoint": endpoint, "retry_delay": delay, "attempt": attempt + 1}
                )
                await asyncio.sleep(delay)
                continue

            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise UpstreamError(
                    f"TMDB returned {response.status_code} for {endpoint}",
                    endpoint=endpoint,
                    status_code=response.status_code,
                ) from e

            try:
                return response.json()
            except ValueError as e:
                raise UpstreamError(f"Invalid JSON from TMDB for {endpoint}", endpoint=endpoint) from e

        # Only reachable when retries is negative
        raise UpstreamError(f"TMDB request not attempted for {endpoint}", endpoint=endpoint)

    def _retry_after(self, response: httpx.Response, attempt: int) -> float:
        header = response.headers.get('Retry-After')
        if header:
            try:
                return max(float(header), 0.0)
            except ValueError:
                pass
        return self.rate_limit_backoff * (2 ** attempt)

    async def search_actors(self, query: str) -> List[Actor]:
        """Resolve a free-text query to candidate actors"""
        cache_key = f"search:actors:{query.strip().lower()}"

        async def fetch() -> List[Actor]:
            data = await self._request('/search/person', {'query': query})
            return [
                Actor(
                    id=item['id'],
                    name=item['name'],
                    profile_path=item.get('profile_path') or None,
                    known_for=[
                        KnownFor(
                            title=entry.get('title'),
                            name=entry.get('name'),
                            media_type=entry.get('media_type', 'movie')
                        )
                        for entry in item.get('known_for') or []
                    ],
                )
                for item in data.get('results', [])
            ]

        return await self.cache.get_or_compute(cache_key, CACHE_TTL['search'], fetch)

    async def get_actor_details(self, actor_id: int) -> Actor:
        cache_key = f"actor:details:{actor_id}"

        async def fetch() -> Actor:
            data = await self._request(f'/person/{actor_id}')
            return Actor(
                id=data['id'],
                name=data['name'],
                profile_path=data.get('profile_path') or None,
            )

        return await self.cache.get_or_compute(cache_key, CACHE_TTL['actor_details'], fetch)

    async def get_actor_filmography(self, actor_id: int) -> List[Movie]:
        """
        Get an actor's movie credits in provider order

        Entries without a title or with a non-movie media type are dropped.
        """
        cache_key = f"actor:filmography:{actor_id}"

        async def fetch() -> List[Movie]:
            data = await self._request(f'/person/{actor_id}/movie_credits')
            credits = data.get('cast', [])

            movies = []
            seen = set()
            for item in credits:
                media_type = item.get('media_type')
                if media_type and media_type != 'movie':
                    continue
                if not item.get('title') or item['id'] in seen:
                    continue
                seen.add(item['id'])
                movies.append(Movie(
                    id=item['id'],
                    title=item['title'],
                    release_date=item.get('release_date') or None,
                    poster_path=item.get('poster_path') or None,
                ))

            logger.debug(f"Filmography for actor {actor_id}: {len(credits)} credits, {len(movies)} movies")
            return movies

        return await self.cache.get_or_compute(cache_key, CACHE_TTL['filmography'], fetch)

    async def get_movie_cast(self, movie_id: int) -> List[CastMember]:
        """Get a movie's cast ordered by billing"""
        cache_key = f"movie:cast:{movie_id}"

        async def fetch() -> List[CastMember]:
            data = await self._request(f'/movie/{movie_id}/credits')
            cast = [
                CastMember(
                    id=member['id'],
                    name=member['name'],
                    character=member.get('character') or None,
                    order=member.get('order'),
                    profile_path=member.get('profile_path') or None,
                )
                for member in data.get('cast', [])
            ]
            cast.sort(key=lambda member: member.order if member.order is not None else float('inf'))
            return cast

        return await self.cache.get_or_compute(cache_key, CACHE_TTL['movie_cast'], fetch)

    async def get_movie_details(self, movie_id: int) -> Movie:
        cache_key = f"movie:details:{movie_id}"

        async def fetch() -> Movie:
            data = await self._request(f'/movie/{movie_id}')
            return Movie(
                id=data['id'],
                title=data['title'],
                release_date=data.get('release_date') or None,
                poster_path=data.get('poster_path') or None,
                imdb_id=data.get('imdb_id') or None,
            )

        return await self.cache.get_or_compute(cache_key, CACHE_TTL['movie_details'], fetch)
