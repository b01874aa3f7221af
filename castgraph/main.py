from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from typing import List, Optional
import asyncio
import logging
import time

from castgraph.cache import LookupCache
from castgraph.config import (
    API_TITLE,
    API_VERSION,
    CACHE_MAX_SIZE,
    CACHE_SWEEP_INTERVAL,
    CORS_ORIGINS,
    HOST,
    LOG_LEVEL,
    PORT,
    SEARCH_TIMEOUT_SECONDS,
    TMDB_API_KEY,
)
from castgraph.exceptions import InvalidArgument, NotFound, UpstreamError
from castgraph.models import Actor, ErrorResponse, PathRequest, PathResult
from castgraph.pathfinder import ConnectionPathFinder
from castgraph.tmdb import MetadataProvider, TMDBProvider

# Configure structured logging
logging.basicConfig(
    level=LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)

# Initialize rate limiter
limiter = Limiter(key_func=get_remote_address)


def _error(status_code: int, error: str, message: str, elapsed_ms: Optional[int] = None) -> JSONResponse:
    body = ErrorResponse(error=error, message=message, backend_duration_ms=elapsed_ms)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
        headers={"Cache-Control": "no-cache, no-store, must-revalidate"}
    )


async def handle_invalid_argument(request: Request, exc: InvalidArgument):
    return _error(400, "Invalid argument", str(exc))


async def handle_upstream_error(request: Request, exc: UpstreamError):
    logger.error("Metadata provider failure", extra={"endpoint": exc.endpoint, "status_code": exc.status_code})
    return _error(502, "Metadata provider failure", str(exc))


def create_app(provider: Optional[MetadataProvider] = None, cache: Optional[LookupCache] = None) -> FastAPI:
    """
    Build the API application

    Args:
        provider: Metadata provider to use (default: TMDBProvider built on startup)
        cache: Lookup cache shared by provider and path finder (default: new instance)
    """
    app = FastAPI(title=API_TITLE, version=API_VERSION)

    app.state.limiter = limiter
    app.state.cache = cache or LookupCache(max_size=CACHE_MAX_SIZE)
    app.state.provider = provider
    app.state.finder = ConnectionPathFinder(provider, app.state.cache) if provider else None
    app.state.sweeper = None

    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(InvalidArgument, handle_invalid_argument)
    app.add_exception_handler(UpstreamError, handle_upstream_error)

    # CORS middleware - restrict to specific origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def start_services():
        """Create the TMDB provider if none was injected and start the cache sweeper"""
        if app.state.provider is None:
            app.state.provider = TMDBProvider(TMDB_API_KEY, app.state.cache)
            app.state.finder = ConnectionPathFinder(app.state.provider, app.state.cache)
        app.state.sweeper = asyncio.create_task(app.state.cache.run_periodic_sweep(CACHE_SWEEP_INTERVAL))

    @app.on_event("shutdown")
    async def stop_services():
        """Cleanup: stop the sweeper and close the provider's HTTP client"""
        if app.state.sweeper is not None:
            app.state.sweeper.cancel()
            app.state.sweeper = None
        aclose = getattr(app.state.provider, 'aclose', None)
        if aclose is not None:
            await aclose()

    app.get("/health")(health)
    app.get("/api/search", response_model=List[Actor])(search_actors)
    app.post("/api/path", response_model=PathResult)(find_path_endpoint)
    app.get("/cache/stats")(get_cache_stats)
    app.post("/cache/clear")(clear_cache)

    return app


def get_provider(request: Request) -> MetadataProvider:
    return request.app.state.provider


def get_finder(request: Request) -> ConnectionPathFinder:
    return request.app.state.finder


async def health():
    return {"status": "ok", "message": "Six Degrees API is running"}


@limiter.limit("30/minute")
async def search_actors(
    request: Request,
    q: str = Query("", max_length=200, description="Actor name to search for"),
    provider: MetadataProvider = Depends(get_provider),
):
    """Resolve a free-text query to candidate actors"""
    query = q.strip()
    if not query:
        raise InvalidArgument('Query parameter "q" is required')

    return await provider.search_actors(query)


@limiter.limit("10/minute")
async def find_path_endpoint(
    request: Request,
    path_request: PathRequest,
    finder: ConnectionPathFinder = Depends(get_finder),
):
    """
    Find the shortest chain of shared movies between two actors

    Returns 404 when every search phase is exhausted, 502 when an endpoint
    actor cannot be fetched and 504 when the search exceeds its time budget.
    """
    actor1_id = path_request.actor1_id
    actor2_id = path_request.actor2_id

    logger.info(
        "Starting path search",
        extra={"actor1_id": actor1_id, "actor2_id": actor2_id, "timeout": SEARCH_TIMEOUT_SECONDS}
    )

    start_time = time.time()
    try:
        # Wrap search in timeout to prevent indefinite searches
        async with asyncio.timeout(SEARCH_TIMEOUT_SECONDS):
            result = await finder.find_path(actor1_id, actor2_id)
    except NotFound as e:
        return _error(404, "No path found", str(e), int((time.time() - start_time) * 1000))
    except UpstreamError as e:
        logger.error("Endpoint actor lookup failed", extra={"endpoint": e.endpoint, "status_code": e.status_code})
        return _error(502, "Failed to find path", str(e), int((time.time() - start_time) * 1000))
    except TimeoutError:
        return _error(
            504,
            "Search timeout",
            f"Search timeout exceeded ({SEARCH_TIMEOUT_SECONDS} seconds)",
            int((time.time() - start_time) * 1000)
        )

    elapsed_ms = int((time.time() - start_time) * 1000)
    return result.model_copy(update={'backend_duration_ms': elapsed_ms})


async def get_cache_stats(finder: ConnectionPathFinder = Depends(get_finder)):
    """
    Get lookup cache statistics

    Returns cache performance metrics including:
    - Cache size and capacity
    - Hit/miss rates
    - Total requests
    - cacheSize and cachedKeys for the stored entries
    """
    return finder.cache_stats()


async def clear_cache(finder: ConnectionPathFinder = Depends(get_finder)):
    finder.clear_cache()
    return {"message": "Cache cleared successfully"}


app = create_app()


def run():
    """Serve the API with uvicorn"""
    import uvicorn

    uvicorn.run("castgraph.main:app", host=HOST, port=PORT)


if __name__ == "__main__":
    run()
