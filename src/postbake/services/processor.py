"""Post processing that runs after a post has been cooked.

Inserts image sizes, links images to their uploads, applies the lightbox
treatment and bakes oneboxes into the HTML.
"""

import logging
from enum import Enum
from typing import Protocol

from bs4 import BeautifulSoup, Tag
from sqlalchemy.ext.asyncio import AsyncSession

from postbake.config import Settings, get_settings
from postbake.models.content import Post, ProcessOptions, ProcessResult
from postbake.services.images import ImageNormalizer, PostUploadLinker, ThumbnailGenerator
from postbake.services.lightbox import LightboxConverter
from postbake.services.onebox import OneboxExpander, Oneboxer
from postbake.services.probe import get_size_prober
from postbake.services.sizes import DimensionCache, SizeProber, SizeResolver
from postbake.services.topics import ThreadImageSink, TopicImageService
from postbake.services.uploads import PostUploadStore, UploadLookup, UploadResolver, UploadStore

logger = logging.getLogger("postbake.processor")


class OneboxRendering(Protocol):
    async def render(self, url: str, *, post_id: int | None = None, invalidate: bool = False) -> str | None: ...


class ProcessorState(str, Enum):
    """Stages of a processing run, in order."""

    INITIALIZED = "initialized"
    IMAGES_PROCESSED = "images_processed"
    ONEBOXES_PROCESSED = "oneboxes_processed"
    DONE = "done"


class CookedPostProcessor:
    """Runs the image and onebox passes over one post's cooked HTML."""

    def __init__(
        self,
        post: Post,
        settings: Settings,
        *,
        uploads: UploadLookup,
        post_uploads: PostUploadLinker,
        prober: SizeProber,
        oneboxer: OneboxExpander | None = None,
        onebox_renderer: OneboxRendering | None = None,
        thumbnailer: ThumbnailGenerator | None = None,
        thread_images: ThreadImageSink | None = None,
        options: ProcessOptions | None = None,
    ) -> None:
        self.post = post
        self.settings = settings
        self.options = options or ProcessOptions()
        self.state = ProcessorState.INITIALIZED
        self._dirty = False

        self.soup: BeautifulSoup | None = None
        if post.cooked and post.cooked.strip():
            self.soup = BeautifulSoup(post.cooked, "html.parser")

        self.size_cache = DimensionCache()
        self.sizes = SizeResolver(settings, prober, uploads, self.size_cache)
        self.upload_resolver = UploadResolver(uploads)
        self.post_uploads = post_uploads
        self.thumbnailer = thumbnailer
        self.thread_images = thread_images
        self.oneboxer = oneboxer or Oneboxer()
        self.onebox_renderer = onebox_renderer

    @property
    def dirty(self) -> bool:
        """Whether the cooked HTML changed during the run."""
        return self._dirty

    @property
    def html(self) -> str:
        """The processed HTML (the original when there was nothing to process)."""
        if self.soup is None:
            return self.post.cooked
        return str(self.soup)

    def result(self) -> ProcessResult:
        return ProcessResult(dirty=self.dirty, html=self.html)

    async def post_process(self) -> None:
        """Run every pass over the document."""
        if self.soup is None:
            self.state = ProcessorState.DONE
            return

        self._dirty |= await self.post_process_images(self.soup)
        self.state = ProcessorState.IMAGES_PROCESSED

        self._dirty |= await self.post_process_oneboxes(self.soup)
        self.state = ProcessorState.ONEBOXES_PROCESSED

        self.state = ProcessorState.DONE
        logger.debug("Post %d processed (dirty=%s)", self.post.id, self._dirty)

    async def post_process_images(self, soup: BeautifulSoup) -> bool:
        """Normalize the post's images. Returns True if the document changed."""
        normalizer = ImageNormalizer(
            self.settings,
            post_id=self.post.id,
            sizes=self.sizes,
            uploads=self.upload_resolver,
            post_uploads=self.post_uploads,
            lightbox=LightboxConverter(soup, self.settings, self.sizes),
            thumbnailer=self.thumbnailer,
            image_sizes=self.options.image_sizes,
        )
        result = await normalizer.process(soup)
        logger.debug("Post %d: %d images (changed=%s)", self.post.id, result.image_count, result.changed)

        # The first image of the first post represents the topic
        if self.post.is_first_post and result.first_image_src and self.thread_images is not None:
            try:
                await self.thread_images.set_thread_image(self.post.topic_id, result.first_image_src)
            except Exception as e:
                logger.warning("Could not set image of topic %d: %s", self.post.topic_id, e)

        return result.changed

    async def post_process_oneboxes(self, soup: BeautifulSoup) -> bool:
        """Bake onebox content into the post. Returns True if any was baked."""
        renderer = self.onebox_renderer
        if renderer is None:
            return False

        async def resolve(url: str, element: Tag) -> str | None:
            return await renderer.render(
                url,
                post_id=self.post.id,
                invalidate=self.options.invalidate_oneboxes,
            )

        try:
            result = await self.oneboxer.apply(soup, resolve)
        except Exception as e:
            logger.warning("Onebox pass failed for post %d: %s", self.post.id, e)
            return False
        return result.changed


async def process(
    post: Post,
    options: ProcessOptions | None = None,
    *,
    session: AsyncSession,
    settings: Settings | None = None,
    prober: SizeProber | None = None,
    onebox_renderer: OneboxRendering | None = None,
    thumbnailer: ThumbnailGenerator | None = None,
) -> ProcessResult:
    """
    Post-process a post against the database-backed stores.

    Args:
        post: The post and its cooked HTML
        options: Per-run options (dimension overrides, onebox invalidation)
        session: Database session for uploads, associations and topics
        settings: Settings, defaults to the application settings
        prober: Size prober, defaults to the global HTTP prober
        onebox_renderer: Onebox renderer, oneboxes are left alone without one
        thumbnailer: Thumbnail generator, thumbnails are not requested without one

    Returns:
        The dirty flag and the processed HTML
    """
    settings = settings or get_settings()

    processor = CookedPostProcessor(
        post,
        settings,
        uploads=UploadStore(session, settings),
        post_uploads=PostUploadStore(session),
        prober=prober or get_size_prober(),
        onebox_renderer=onebox_renderer,
        thumbnailer=thumbnailer,
        thread_images=TopicImageService(session),
        options=options,
    )
    await processor.post_process()
    return processor.result()
