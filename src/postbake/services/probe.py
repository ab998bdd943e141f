"""Remote image size probing over HTTP."""

import io
import logging
import zlib

import httpx
from PIL import Image, ImageFile

from postbake.config import Settings, get_settings
from postbake.models.content import Dimensions

logger = logging.getLogger("postbake.probe")


def _unbounded_header_size(data: bytes) -> Dimensions:
    """Read the size of an image too large for Pillow's decompression bomb check."""
    limit = Image.MAX_IMAGE_PIXELS
    Image.MAX_IMAGE_PIXELS = None
    try:
        with Image.open(io.BytesIO(data)) as image:
            width, height = image.size
    finally:
        Image.MAX_IMAGE_PIXELS = limit
    return Dimensions(width, height)


class HttpSizeProber:
    """Reads just enough of a remote image to learn its pixel size."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.settings = settings
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={"User-Agent": "postbake/0.1.0", "Accept": "image/*"},
                timeout=self.settings.probe_timeout_seconds,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def probe_size(self, url: str) -> Dimensions | None:
        """
        Fetch the image header and parse its dimensions.

        Args:
            url: Absolute http(s) image URL

        Returns:
            Dimensions if the header could be decoded, None otherwise
        """
        client = await self._get_client()
        parser = ImageFile.Parser()
        buffered = bytearray()

        try:
            async with client.stream("GET", url) as response:
                if response.status_code != 200:
                    logger.debug("Probe of %s returned HTTP %d", url, response.status_code)
                    return None

                async for chunk in response.aiter_bytes():
                    buffered += chunk
                    try:
                        parser.feed(chunk)
                    except Image.DecompressionBombError:
                        # Only the header is read, the pixels are never decoded
                        return _unbounded_header_size(bytes(buffered))

                    if parser.image is not None:
                        width, height = parser.image.size
                        return Dimensions(width, height)

                    if len(buffered) >= self.settings.probe_max_bytes:
                        break
        except httpx.HTTPError as e:
            logger.debug("Probe of %s failed: %s", url, e)
            return None
        except (OSError, SyntaxError, ValueError, zlib.error) as e:
            # Pillow rejects some broken streams (truncated GIFs and the like)
            logger.debug("Could not decode image header of %s: %s", url, e)
            return None

        return None


# Global prober instance
_size_prober: HttpSizeProber | None = None


def get_size_prober() -> HttpSizeProber:
    """Get the global size prober instance."""
    global _size_prober
    if _size_prober is None:
        _size_prober = HttpSizeProber(get_settings())
    return _size_prober


async def shutdown_size_prober() -> None:
    """Close the global size prober's HTTP client."""
    global _size_prober
    if _size_prober is not None:
        await _size_prober.close()
        _size_prober = None
