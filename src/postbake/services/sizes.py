"""Image dimension resolution with a per-run cache."""

import logging
from typing import Mapping, Protocol
from urllib.parse import urlsplit

from postbake.config import Settings
from postbake.models.content import Dimensions, ImageSize

logger = logging.getLogger("postbake.sizes")


class SizeProber(Protocol):
    """Anything that can read the pixel size of a remote image."""

    async def probe_size(self, url: str) -> Dimensions | None: ...


class UploadPredicates(Protocol):
    """URL shape checks needed to gate probing."""

    def is_known_upload_url(self, url: str) -> bool: ...

    def is_object_store_url(self, url: str) -> bool: ...


def clamp_dimensions(width: int | None, height: int | None, max_dimension: int) -> Dimensions | None:
    """
    Scale dimensions down so the larger side fits within max_dimension.

    Aspect ratio is preserved and the smaller side is floored.
    A max_dimension of 0 disables clamping.
    """
    if width is None or height is None:
        return None

    w, h = int(width), int(height)
    if max_dimension <= 0 or max(w, h) <= max_dimension:
        return Dimensions(w, h)

    if w >= h:
        return Dimensions(max_dimension, h * max_dimension // w)
    return Dimensions(w * max_dimension // h, max_dimension)


def is_http_url(url: str) -> bool:
    """Check that a URL uses a scheme we are willing to fetch."""
    try:
        return urlsplit(url).scheme in ("http", "https")
    except ValueError:
        return False


class DimensionCache:
    """Run-scoped memo of probed image sizes, including failed probes."""

    def __init__(self) -> None:
        self._store: dict[str, Dimensions | None] = {}

    def __contains__(self, url: str) -> bool:
        return url in self._store

    def get(self, url: str) -> Dimensions | None:
        return self._store.get(url)

    def set(self, url: str, value: Dimensions | None) -> None:
        self._store[url] = value

    def clear(self) -> int:
        """Clear all entries. Returns number of entries cleared."""
        count = len(self._store)
        self._store.clear()
        return count

    @property
    def size(self) -> int:
        """Return the current number of entries in the cache."""
        return len(self._store)


class SizeResolver:
    """Resolves the dimensions of image URLs for a single processing run."""

    def __init__(
        self,
        settings: Settings,
        prober: SizeProber,
        uploads: UploadPredicates,
        cache: DimensionCache | None = None,
    ) -> None:
        self.settings = settings
        self.prober = prober
        self.uploads = uploads
        self.cache = cache if cache is not None else DimensionCache()

    async def resolve(self, url: str, overrides: Mapping[str, ImageSize] | None = None) -> Dimensions | None:
        """
        Determine the display dimensions of an image.

        Args:
            url: Image URL
            overrides: Dimensions already known from the original submission

        Returns:
            Clamped dimensions, or None when they can't be determined
        """
        max_dimension = self.settings.max_render_dimension

        if overrides:
            known = overrides.get(url)
            if known is not None:
                return clamp_dimensions(known.width, known.height, max_dimension)

        size = await self.size_of(url)
        if size is None:
            return None
        return clamp_dimensions(size.width, size.height, max_dimension)

    async def size_of(self, url: str) -> Dimensions | None:
        """Return the raw size of the image, probing each URL at most once per run."""
        if not url:
            return None

        # Object store references are scheme-relative
        if self.uploads.is_object_store_url(url):
            url = "http:" + url

        if not is_http_url(url):
            return None

        # Our own uploads can always be probed
        if not (self.settings.allow_remote_crawl or self.uploads.is_known_upload_url(url)):
            return None

        if url in self.cache:
            return self.cache.get(url)

        try:
            size = await self.prober.probe_size(url)
        except Exception as e:
            logger.warning("Failed to probe image size for %s: %s", url, e)
            size = None

        self.cache.set(url, size)
        return size
