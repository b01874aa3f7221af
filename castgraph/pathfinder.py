"""
Connection search engine

Finds a chain of shared movies between two actors. The search runs from
cheapest to most expensive strategy and stops at the first that succeeds:

1. Cached result for the (unordered) actor pair
2. Same actor on both ends
3. Direct co-star check over the head of the first actor's filmography
4. Bidirectional BFS over the actor/movie graph, repeated under
   increasingly permissive budgets (fast, comprehensive, exhaustive)

Because the first successful phase wins, a cheap phase can return a valid
path that is longer than the true minimum.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Iterable, List, Optional
import asyncio
import logging
import time

from castgraph.cache import LookupCache, path_key
from castgraph.config import BATCH_SIZE, CACHE_TTL, DIRECT_CHECK_LIMIT, SEARCH_PHASES
from castgraph.exceptions import NotFound, UpstreamError
from castgraph.models import Actor, ActorStep, CastMember, Movie, MovieStep, PathResult, PathStep
from castgraph.tmdb import MetadataProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchPhase:
    """Resource budget for one BFS attempt"""
    name: str
    max_movies_per_actor: int
    max_cast_per_movie: int
    max_depth: int
    max_iterations: int

    @classmethod
    def from_config(cls, config: dict) -> 'SearchPhase':
        return cls(**config)


@dataclass
class FrontierItem:
    """An actor waiting to be expanded, with the steps that reached it"""
    actor_id: int
    path: List[PathStep]

    @property
    def actor_steps(self) -> int:
        return (len(self.path) + 1) // 2


@dataclass
class Frontier:
    """One side of a bidirectional search"""
    forward: bool
    queue: Deque[FrontierItem] = field(default_factory=deque)
    # actor id -> steps from this side's origin to that actor
    visited: Dict[int, List[PathStep]] = field(default_factory=dict)

    @classmethod
    def rooted_at(cls, actor: Actor, forward: bool) -> 'Frontier':
        frontier = cls(forward=forward)
        root = [ActorStep(data=actor)]
        frontier.visited[actor.id] = root
        frontier.queue.append(FrontierItem(actor_id=actor.id, path=root))
        return frontier

    def join(self, own_steps: List[PathStep], other_steps: List[PathStep]) -> List[PathStep]:
        """
        Combine this side's steps (ending on a movie) with the other side's
        steps (ending on the meeting actor) into a start-to-end path
        """
        if self.forward:
            return own_steps + list(reversed(other_steps))
        return other_steps + list(reversed(own_steps))


def _chunks(items: List, size: int) -> Iterable[List]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class ConnectionPathFinder:
    """
    Degrees-of-separation search over a metadata provider

    The cache is shared with the provider and with any other finder built on
    it; each find_path call owns its own frontiers and visited maps.
    """

    def __init__(
        self,
        provider: MetadataProvider,
        cache: LookupCache,
        phases: Optional[List[SearchPhase]] = None,
        direct_check_limit: int = DIRECT_CHECK_LIMIT,
        batch_size: int = BATCH_SIZE,
        bidirectional: bool = True,
        path_ttl: float = CACHE_TTL['path'],
    ):
        """
        Args:
            provider: Metadata lookups (actor details, filmography, cast)
            cache: Lookup cache used for computed paths
            phases: Search budgets tried in order (default: SEARCH_PHASES)
            direct_check_limit: Filmography titles checked by the co-star shortcut
            batch_size: Concurrent cast fetches per batch
            bidirectional: Expand from both ends (True) or from the first actor only
            path_ttl: Seconds a computed path stays cached
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        self.provider = provider
        self.cache = cache
        self.phases = phases or [SearchPhase.from_config(p) for p in SEARCH_PHASES]
        self.direct_check_limit = direct_check_limit
        self.batch_size = batch_size
        self.bidirectional = bidirectional
        self.path_ttl = path_ttl

    async def find_path(self, actor1_id: int, actor2_id: int) -> PathResult:
        """
        Find a connection path between two actors

        Args:
            actor1_id: Starting actor id
            actor2_id: Target actor id

        Returns:
            PathResult starting at actor1 and ending at actor2

        Raises:
            NotFound: Every search phase was exhausted
            UpstreamError: Either endpoint actor could not be fetched
        """
        start_time = time.time()
        key = path_key(actor1_id, actor2_id)

        cached = self.cache.get(key)
        if cached is not None:
            logger.info(f"Path cache HIT: {actor1_id} → {actor2_id}")
            return self._orient(cached, actor1_id)

        if actor1_id == actor2_id:
            actor = await self.provider.get_actor_details(actor1_id)
            result = PathResult(path=[ActorStep(data=actor)], degrees=0)
            self.cache.set(key, result, self.path_ttl)
            return result

        start_actor, end_actor = await asyncio.gather(
            self.provider.get_actor_details(actor1_id),
            self.provider.get_actor_details(actor2_id),
        )

        logger.info(f"Searching path: {start_actor.name} ({actor1_id}) → {end_actor.name} ({actor2_id})")

        method = 'direct'
        steps = await self._find_direct_connection(start_actor, end_actor)

        if steps is None:
            for phase in self.phases:
                steps = await self._search_phase(phase, start_actor, end_actor)
                if steps is not None:
                    method = phase.name
                    break

        if steps is None:
            elapsed_ms = int((time.time() - start_time) * 1000)
            logger.info(
                "No path found",
                extra={"actor1_id": actor1_id, "actor2_id": actor2_id, "elapsed_ms": elapsed_ms}
            )
            raise NotFound(actor1_id, actor2_id)

        steps = await self._hydrate_movies(steps)
        result = PathResult(path=steps, degrees=(len(steps) + 1) // 2 - 1)
        self.cache.set(key, result, self.path_ttl)

        elapsed_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Path found: {' → '.join(self._step_label(s) for s in result.path)}",
            extra={"method": method, "degrees": result.degrees, "elapsed_ms": elapsed_ms}
        )
        return result

    def _orient(self, result: PathResult, actor1_id: int) -> PathResult:
        """Reverse a cached path when it was stored for the opposite direction"""
        if result.path[0].data.id == actor1_id:
            return result
        return PathResult(path=list(reversed(result.path)), degrees=result.degrees)

    async def _find_direct_connection(self, start: Actor, end: Actor) -> Optional[List[PathStep]]:
        """
        Look for a movie shared by both actors

        Only the first direct_check_limit titles of the starting actor's
        filmography are checked, in provider order.
        """
        movies = await self._filmography(start.id)
        candidates = movies[:self.direct_check_limit]

        for batch in _chunks(candidates, self.batch_size):
            casts = await self._fetch_casts(batch)
            for movie, cast in zip(batch, casts):
                if any(member.id == end.id for member in cast):
                    logger.info(f"Direct connection via '{movie.title}'")
                    return [ActorStep(data=start), MovieStep(data=movie), ActorStep(data=end)]

        logger.debug(f"No direct connection in first {len(candidates)} titles of {start.name}")
        return None

    async def _search_phase(self, phase: SearchPhase, start: Actor, end: Actor) -> Optional[List[PathStep]]:
        """
        Run one budget-limited BFS from scratch

        Bidirectional mode alternates one expansion per side per iteration.
        Single-direction mode only expands from the start and treats the
        target as the sole member of the opposite visited map.
        """
        forward = Frontier.rooted_at(start, forward=True)
        if self.bidirectional:
            backward = Frontier.rooted_at(end, forward=False)
        else:
            backward = Frontier(forward=False)
            backward.visited[end.id] = [ActorStep(data=end)]

        iterations = 0
        found = None

        while forward.queue or backward.queue:
            for own, other in ((forward, backward), (backward, forward)):
                if not own.queue or iterations >= phase.max_iterations:
                    continue
                iterations += 1
                found = await self._expand(own.queue.popleft(), own, other, phase)
                if found is not None:
                    break

            if found is not None or iterations >= phase.max_iterations:
                break

        logger.info(
            f"Phase '{phase.name}' {'succeeded' if found else 'exhausted'}",
            extra={
                "phase": phase.name,
                "iterations": iterations,
                "forward_visited": len(forward.visited),
                "backward_visited": len(backward.visited),
            }
        )
        return found

    async def _expand(
        self,
        item: FrontierItem,
        own: Frontier,
        other: Frontier,
        phase: SearchPhase,
    ) -> Optional[List[PathStep]]:
        """
        Expand one frontier item by its filmography

        Returns the joined path as soon as a co-star is found in the other
        side's visited map, otherwise enqueues every new co-star.
        """
        if item.actor_steps >= phase.max_depth:
            return None

        movies = (await self._filmography(item.actor_id))[:phase.max_movies_per_actor]

        for batch in _chunks(movies, self.batch_size):
            casts = await self._fetch_casts(batch)

            for movie, cast in zip(batch, casts):
                via_movie = item.path + [MovieStep(data=movie)]

                for member in cast[:phase.max_cast_per_movie]:
                    if member.id in other.visited:
                        return own.join(via_movie, other.visited[member.id])

                    if member.id in own.visited:
                        continue

                    reached = via_movie + [ActorStep(data=member.to_actor())]
                    own.visited[member.id] = reached
                    own.queue.append(FrontierItem(actor_id=member.id, path=reached))

        return None

    async def _filmography(self, actor_id: int) -> List[Movie]:
        try:
            return await self.provider.get_actor_filmography(actor_id)
        except UpstreamError as e:
            logger.warning(
                f"Skipping filmography of actor {actor_id}: {e}",
                extra={"actor_id": actor_id, "status_code": e.status_code}
            )
            return []

    async def _fetch_casts(self, movies: List[Movie]) -> List[List[CastMember]]:
        """
        Fetch the casts of one batch concurrently

        Results keep batch order. A movie whose cast cannot be fetched
        contributes an empty cast.
        """
        results = await asyncio.gather(
            *(self.provider.get_movie_cast(movie.id) for movie in movies),
            return_exceptions=True
        )

        casts = []
        for movie, result in zip(movies, results):
            if isinstance(result, UpstreamError):
                logger.warning(
                    f"Skipping cast of '{movie.title}': {result}",
                    extra={"movie_id": movie.id, "status_code": result.status_code}
                )
                casts.append([])
            elif isinstance(result, BaseException):
                raise result
            else:
                casts.append(result)
        return casts

    async def _hydrate_movies(self, steps: List[PathStep]) -> List[PathStep]:
        """
        Attach external ids to the movies of a finished path

        Filmography entries carry no external id; movie details do. A movie
        whose details cannot be fetched is kept as is.
        """
        movie_indexes = [
            i for i, step in enumerate(steps)
            if step.type == 'movie' and step.data.imdb_id is None
        ]
        if not movie_indexes:
            return steps

        details = await asyncio.gather(
            *(self.provider.get_movie_details(steps[i].data.id) for i in movie_indexes),
            return_exceptions=True
        )

        hydrated = list(steps)
        for index, detail in zip(movie_indexes, details):
            if isinstance(detail, UpstreamError):
                logger.warning(f"Could not fetch details for movie {steps[index].data.id}: {detail}")
                continue
            if isinstance(detail, BaseException):
                raise detail
            movie = steps[index].data
            hydrated[index] = MovieStep(data=movie.model_copy(update={'imdb_id': detail.imdb_id}))
        return hydrated

    @staticmethod
    def _step_label(step: PathStep) -> str:
        if step.type == 'actor':
            return step.data.name
        return f"[{step.data.title}]"

    def clear_cache(self):
        """Drop every cached lookup and path"""
        self.cache.clear()

    def cache_stats(self) -> dict:
        """Cache metrics plus the size and keys of the stored entries"""
        stats = self.cache.stats()
        stats['cacheSize'] = stats['size']
        stats['cachedKeys'] = self.cache.keys()
        return stats
