"""Topic image service."""

from typing import Protocol

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from postbake.models.db import Topic


class ThreadImageSink(Protocol):
    async def set_thread_image(self, topic_id: int, url: str) -> None: ...


class TopicImageService:
    """Stores the representative image of a topic."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def set_thread_image(self, topic_id: int, url: str) -> None:
        """Set the topic's image URL. Unknown topics are ignored."""
        await self.session.execute(update(Topic).where(Topic.id == topic_id).values(image_url=url))
        await self.session.flush()
