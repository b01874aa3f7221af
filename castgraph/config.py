"""
Application configuration and environment variables
"""
import os

# TMDB configuration
TMDB_API_KEY = os.environ.get('TMDB_API_KEY', '')
TMDB_BASE_URL = os.environ.get('TMDB_BASE_URL', 'https://api.themoviedb.org/3')
TMDB_IMAGE_BASE_URL = 'https://image.tmdb.org/t/p/w500'
IMDB_TITLE_URL = 'https://www.imdb.com/title/{imdb_id}/'

# Rate-limit (HTTP 429) handling inside the provider
RATE_LIMIT_MAX_RETRIES = int(os.environ.get('RATE_LIMIT_MAX_RETRIES', '5'))
RATE_LIMIT_BACKOFF_SECONDS = 1.0

# Logging
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

# Cache configuration
CACHE_MAX_SIZE = int(os.environ.get('CACHE_MAX_SIZE', '10000'))
CACHE_SWEEP_INTERVAL = float(os.environ.get('CACHE_SWEEP_INTERVAL', '300'))

# TTL classes in seconds
CACHE_TTL = {
    'actor_details': 3600,  # near-static identity data
    'movie_details': 3600,
    'filmography': 1800,
    'movie_cast': 1800,
    'path': 1800,
    'search': 300,  # most volatile
}

# Search budgets, cheapest first. The engine stops at the first phase that succeeds.
SEARCH_PHASES = [
    {'name': 'fast', 'max_movies_per_actor': 20, 'max_cast_per_movie': 15,
     'max_depth': 3, 'max_iterations': 60},
    {'name': 'comprehensive', 'max_movies_per_actor': 60, 'max_cast_per_movie': 40,
     'max_depth': 5, 'max_iterations': 400},
    {'name': 'exhaustive', 'max_movies_per_actor': 200, 'max_cast_per_movie': 150,
     'max_depth': 8, 'max_iterations': 2000},
]

# Number of leading filmography titles checked by the direct-connection shortcut
DIRECT_CHECK_LIMIT = 30

# Concurrent cast fetches per batch
BATCH_SIZE = 5

# API configuration
HOST = os.environ.get('HOST', '0.0.0.0')
PORT = int(os.environ.get('PORT', '8000'))
API_TITLE = "Six Degrees Cast Graph API"
API_VERSION = "1.0.0"
SEARCH_TIMEOUT_SECONDS = int(os.environ.get('SEARCH_TIMEOUT_SECONDS', '120'))

# CORS origins
CORS_ORIGINS = [
    origin.strip()
    for origin in os.environ.get(
        'CORS_ORIGINS', 'http://localhost:5173,http://127.0.0.1:5173'
    ).split(',')
    if origin.strip()
]
