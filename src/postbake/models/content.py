"""Pydantic models for posts and processing options."""

from typing import NamedTuple

from pydantic import BaseModel, Field


class Dimensions(NamedTuple):
    """Pixel dimensions of an image."""

    width: int
    height: int


class ImageSize(BaseModel):
    """Dimensions already known for an image URL (e.g. captured at authoring time)."""

    width: int = Field(ge=0)
    height: int = Field(ge=0)


class Post(BaseModel):
    """The slice of a post the post-processor needs."""

    id: int
    topic_id: int
    post_number: int = Field(default=1, ge=1)
    cooked: str = ""  # Rendered HTML

    @property
    def is_first_post(self) -> bool:
        """Check if this post opens its topic."""
        return self.post_number == 1


class ProcessOptions(BaseModel):
    """Per-run options for the post-processor."""

    image_sizes: dict[str, ImageSize] = Field(default_factory=dict)  # Keyed by image URL
    invalidate_oneboxes: bool = False


class ProcessResult(BaseModel):
    """Outcome of a post-processing run."""

    dirty: bool = False
    html: str = ""


class ProcessRequest(BaseModel):
    """Request body of the process endpoint."""

    post: Post
    options: ProcessOptions = Field(default_factory=ProcessOptions)
