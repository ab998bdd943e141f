"""Image normalization pass over cooked post HTML."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Mapping, Protocol

from bs4 import BeautifulSoup, Tag

from postbake.config import Settings
from postbake.models.content import ImageSize
from postbake.models.db import Upload
from postbake.services.lightbox import LightboxConverter
from postbake.services.sizes import SizeResolver
from postbake.services.uploads import ROOT_RELATIVE_PATTERN, UploadResolver

logger = logging.getLogger("postbake.images")

# Images inside rendered oneboxes belong to the preview, not the post
ONEBOX_IMAGE_SELECTOR = ".onebox-result img"

# Keep references to fire-and-forget tasks until they finish
_background_tasks: set[asyncio.Task] = set()


class ThumbnailGenerator(Protocol):
    """Creates (or schedules) the thumbnail of an upload."""

    async def ensure_thumbnail(self, upload: Upload) -> None: ...


class PostUploadLinker(Protocol):
    """Write access to the post -> upload reverse index."""

    async def exists(self, post_id: int, upload_id: int) -> bool: ...

    async def create(self, post_id: int, upload_id: int) -> None: ...


@dataclass
class ImagePassResult:
    """Outcome of the image pass."""

    changed: bool = False
    image_count: int = 0
    first_image_src: str | None = None


def find_post_images(soup: BeautifulSoup) -> list[Tag]:
    """Return the post's own images in document order."""
    excluded = {id(img) for img in soup.select(ONEBOX_IMAGE_SELECTOR)}
    return [img for img in soup.find_all("img") if id(img) not in excluded]


async def _ensure_thumbnail(thumbnailer: ThumbnailGenerator, upload: Upload) -> None:
    try:
        await thumbnailer.ensure_thumbnail(upload)
    except Exception as e:
        logger.warning("Thumbnail generation failed for upload %s: %s", upload.id, e)


class ImageNormalizer:
    """Absolutizes, sizes, links and lightboxes every image of a post."""

    def __init__(
        self,
        settings: Settings,
        post_id: int,
        sizes: SizeResolver,
        uploads: UploadResolver,
        post_uploads: PostUploadLinker,
        lightbox: LightboxConverter,
        thumbnailer: ThumbnailGenerator | None = None,
        image_sizes: Mapping[str, ImageSize] | None = None,
    ) -> None:
        self.settings = settings
        self.post_id = post_id
        self.sizes = sizes
        self.uploads = uploads
        self.post_uploads = post_uploads
        self.lightbox = lightbox
        self.thumbnailer = thumbnailer
        self.image_sizes = image_sizes or {}

    async def process(self, soup: BeautifulSoup) -> ImagePassResult:
        """
        Normalize every image in the document.

        Images are handled one at a time, in document order.
        """
        images = find_post_images(soup)
        result = ImagePassResult(image_count=len(images))

        for img in images:
            result.changed |= await self.process_image(img)

        if images:
            first_src = images[0].get("src")
            if isinstance(first_src, str) and first_src:
                result.first_image_src = first_src

        return result

    async def process_image(self, img: Tag) -> bool:
        """Normalize a single image. Returns True if the document changed."""
        src = img.get("src") or ""
        if not isinstance(src, str):
            src = ""

        # Locally uploaded files are referenced root-relative
        if ROOT_RELATIVE_PATTERN.match(src):
            img["src"] = self.settings.base_url + src

        if not src:
            return False

        changed = await self.update_dimensions(img)

        current_src = str(img["src"])
        upload = await self.uploads.resolve_upload(current_src)
        if upload is not None:
            await self.associate_to_post(upload)
            self.create_thumbnail(upload)
            img["src"] = self.optimize_image(img)
            changed |= await self.lightbox.maybe_wrap(img, upload)
        else:
            changed |= await self.lightbox.maybe_wrap(img)

        return changed or img["src"] != src

    async def update_dimensions(self, img: Tag) -> bool:
        """Make sure the image has both width and height attributes."""
        if img.get("width") and img.get("height"):
            return False

        size = await self.sizes.resolve(str(img["src"]), self.image_sizes)
        if size is None:
            return False

        img["width"] = str(size.width)
        img["height"] = str(size.height)
        return True

    async def associate_to_post(self, upload: Upload) -> None:
        """Record that this post references the upload."""
        try:
            await self.post_uploads.create(self.post_id, upload.id)
        except Exception as e:
            logger.warning("Could not associate upload %s to post %s: %s", upload.id, self.post_id, e)

    def create_thumbnail(self, upload: Upload) -> None:
        """Ask for the upload's thumbnail without waiting for it."""
        if self.thumbnailer is None:
            return
        task = asyncio.create_task(_ensure_thumbnail(self.thumbnailer, upload))
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)

    def optimize_image(self, img: Tag) -> str:
        # TODO: serve a recompressed rendition (png -> jpg when smaller)
        return str(img["src"])
