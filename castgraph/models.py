from pydantic import BaseModel, Field, computed_field, model_validator
from typing import Annotated, List, Literal, Optional, Tuple, Union

from castgraph.config import IMDB_TITLE_URL


class KnownFor(BaseModel):
    """Title an actor is known for (search results only)"""
    title: Optional[str] = None
    name: Optional[str] = None
    media_type: str = "movie"

    class Config:
        frozen = True


class Actor(BaseModel):
    """Person record as returned by the metadata provider"""
    id: int
    name: str
    profile_path: Optional[str] = None
    known_for: Optional[List[KnownFor]] = None

    class Config:
        frozen = True


class Movie(BaseModel):
    """Movie record as returned by the metadata provider"""
    id: int
    title: str
    release_date: Optional[str] = None
    poster_path: Optional[str] = None
    imdb_id: Optional[str] = None

    class Config:
        frozen = True

    @computed_field
    @property
    def imdb_url(self) -> Optional[str]:
        if not self.imdb_id:
            return None
        return IMDB_TITLE_URL.format(imdb_id=self.imdb_id)


class CastMember(BaseModel):
    """One billed actor of a movie, ordered by billing"""
    id: int
    name: str
    character: Optional[str] = None
    order: Optional[int] = None
    profile_path: Optional[str] = None

    class Config:
        frozen = True

    def to_actor(self) -> Actor:
        """Hydrate this cast entry into an Actor record"""
        return Actor(id=self.id, name=self.name, profile_path=self.profile_path)


class ActorStep(BaseModel):
    type: Literal['actor'] = 'actor'
    data: Actor

    class Config:
        frozen = True


class MovieStep(BaseModel):
    type: Literal['movie'] = 'movie'
    data: Movie

    class Config:
        frozen = True


PathStep = Annotated[Union[ActorStep, MovieStep], Field(discriminator='type')]


class PathResult(BaseModel):
    """
    Connection path between two actors

    Steps alternate actor/movie/.../actor. A single actor step is the
    same-actor case with zero degrees. Results are frozen; path cache
    hits return the stored instance.
    """
    path: Tuple[PathStep, ...]
    degrees: int
    backend_duration_ms: Optional[int] = Field(default=None, alias="backendDurationMs")

    class Config:
        frozen = True
        populate_by_name = True

    @model_validator(mode='after')
    def check_alternation(self) -> 'PathResult':
        if not self.path:
            raise ValueError("Path must contain at least one actor")

        for index, step in enumerate(self.path):
            expected = 'actor' if index % 2 == 0 else 'movie'
            if step.type != expected:
                raise ValueError(f"Step {index} must be an {expected} step, got {step.type}")

        if self.path[-1].type != 'actor':
            raise ValueError("Path must end with an actor")

        actor_count = (len(self.path) + 1) // 2
        if self.degrees != actor_count - 1:
            raise ValueError(f"Degrees {self.degrees} does not match {actor_count} actor steps")

        return self

    @property
    def actors(self) -> List[Actor]:
        return [step.data for step in self.path if step.type == 'actor']

    @property
    def movies(self) -> List[Movie]:
        return [step.data for step in self.path if step.type == 'movie']


class PathRequest(BaseModel):
    """Request model for path finding"""
    actor1_id: int = Field(..., alias="actor1Id", gt=0, description="Starting actor id")
    actor2_id: int = Field(..., alias="actor2Id", gt=0, description="Target actor id")

    class Config:
        populate_by_name = True


class ErrorResponse(BaseModel):
    """Response model for failed requests"""
    error: str
    message: Optional[str] = None
    backend_duration_ms: Optional[int] = Field(default=None, alias="backendDurationMs")

    class Config:
        populate_by_name = True
