"""Upload lookup and post/upload association services."""

import logging
import re
from typing import Protocol
from urllib.parse import urlsplit

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from postbake.config import Settings
from postbake.models.db import PostUpload, Upload

logger = logging.getLogger("postbake.uploads")

ROOT_RELATIVE_PATTERN = re.compile(r"^/[^/]")


def local_upload_pattern(site: str) -> re.Pattern[str]:
    """Build the pattern matching locally stored upload paths for a site."""
    return re.compile(
        rf"/uploads/{re.escape(site)}/(?P<upload_id>\d+)/[0-9a-f]+\.(?:png|jpe?g|gif|tiff?|bmp)",
        re.IGNORECASE,
    )


class UploadLookup(Protocol):
    """Read access to stored uploads."""

    local_pattern: re.Pattern[str]

    async def find_by_id(self, upload_id: int) -> Upload | None: ...

    async def find_by_url(self, url: str) -> Upload | None: ...

    def is_known_upload_url(self, url: str) -> bool: ...

    def is_object_store_url(self, url: str) -> bool: ...


class UploadStore:
    """Service for reading uploads and classifying upload URLs."""

    def __init__(self, session: AsyncSession, settings: Settings) -> None:
        self.session = session
        self.settings = settings
        self.local_pattern = local_upload_pattern(settings.upload_site)
        self._object_store_host = urlsplit(settings.object_store_base_url).netloc.lower()

    async def find_by_id(self, upload_id: int) -> Upload | None:
        """Get an upload by ID."""
        result = await self.session.execute(select(Upload).where(Upload.id == upload_id))
        return result.scalar_one_or_none()

    async def find_by_url(self, url: str) -> Upload | None:
        """Get an upload by its exact URL."""
        result = await self.session.execute(select(Upload).where(Upload.url == url).limit(1))
        return result.scalars().first()

    def is_object_store_url(self, url: str) -> bool:
        """Check if a URL is a scheme-relative object store reference."""
        base = self.settings.object_store_base_url
        return bool(base) and url.startswith(base)

    def is_known_upload_url(self, url: str) -> bool:
        """Check if a URL may point at one of our own uploads."""
        if not url:
            return False
        if ROOT_RELATIVE_PATTERN.match(url) or self.is_object_store_url(url):
            return True

        try:
            host = urlsplit(url).netloc.lower()
        except ValueError:
            return False

        if not host:
            return False
        return host == self.settings.base_host or (bool(self._object_store_host) and host == self._object_store_host)


class PostUploadStore:
    """Service maintaining the post -> upload reverse index."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def exists(self, post_id: int, upload_id: int) -> bool:
        """Check if the post is already associated with the upload."""
        result = await self.session.execute(
            select(func.count(PostUpload.id)).where(
                PostUpload.post_id == post_id,
                PostUpload.upload_id == upload_id,
            )
        )
        return (result.scalar() or 0) > 0

    async def create(self, post_id: int, upload_id: int) -> None:
        """Associate a post with an upload. Existing associations are left alone."""
        if await self.exists(post_id, upload_id):
            return

        try:
            async with self.session.begin_nested():
                self.session.add(PostUpload(post_id=post_id, upload_id=upload_id))
        except IntegrityError:
            # Created concurrently, already associated
            logger.debug("Post %d already associated with upload %d", post_id, upload_id)


class UploadResolver:
    """Maps image URLs to the uploads they were served from."""

    def __init__(self, uploads: UploadLookup) -> None:
        self.uploads = uploads

    async def resolve_upload(self, url: str) -> Upload | None:
        """
        Find the upload an image URL refers to.

        Args:
            url: Image src, after root-relative URLs have been absolutized

        Returns:
            The Upload if one is stored for the URL, None otherwise
        """
        if not self.uploads.is_known_upload_url(url):
            return None

        try:
            match = self.uploads.local_pattern.search(url)
            if match:
                return await self.uploads.find_by_id(int(match.group("upload_id")))
            if self.uploads.is_object_store_url(url):
                return await self.uploads.find_by_url(url)
        except Exception as e:
            logger.warning("Upload lookup failed for %s: %s", url, e)

        return None
