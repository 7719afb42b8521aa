"""Tracked media item model."""

from pydantic import BaseModel


class Item(BaseModel):
    """A tracked media entity that scheduled tasks point at."""

    id: str
    title: str
    media_type: str = "tv"  # "tv" or "movie"
    status: str = "ongoing"
    completed: bool = False

    @property
    def is_completed(self) -> bool:
        return self.completed or self.status == "completed"
