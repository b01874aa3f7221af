"""
Domain exceptions raised by the connection search core
"""
from typing import Optional


class CastGraphError(Exception):
    """Base class for all cast graph errors"""


class NotFound(CastGraphError):
    """Every search phase was exhausted without reaching the target actor"""

    def __init__(self, actor1_id: int, actor2_id: int):
        self.actor1_id = actor1_id
        self.actor2_id = actor2_id
        super().__init__(f"No path found between actors {actor1_id} and {actor2_id}")


class UpstreamError(CastGraphError):
    """
    A metadata provider call failed

    Args:
        message: Human readable description
        endpoint: Provider endpoint that failed
        status_code: HTTP status returned by the provider, if any
    """

    def __init__(self, message: str, endpoint: str = "", status_code: Optional[int] = None):
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(message)


class InvalidArgument(CastGraphError):
    """Malformed input rejected before reaching the search core"""
