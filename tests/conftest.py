"""Shared fixtures and in-memory collaborators."""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from postbake.config import Settings
from postbake.models.content import Dimensions
from postbake.models.db import Base, Upload
from postbake.services.uploads import UploadStore


class FakeProber:
    """Size prober answering from a dict and recording every call."""

    def __init__(self, sizes: dict[str, tuple[int, int]] | None = None, error: Exception | None = None) -> None:
        self.sizes = {url: Dimensions(*size) for url, size in (sizes or {}).items()}
        self.error = error
        self.calls: list[str] = []

    async def probe_size(self, url: str) -> Dimensions | None:
        self.calls.append(url)
        if self.error is not None:
            raise self.error
        return self.sizes.get(url)


class FakeUploads(UploadStore):
    """Upload store keeping its records in memory."""

    def __init__(self, settings: Settings, uploads: list[Upload] | None = None) -> None:
        super().__init__(session=None, settings=settings)  # type: ignore[arg-type]
        self.records = list(uploads or [])
        self.lookups: list[tuple[str, object]] = []

    async def find_by_id(self, upload_id: int) -> Upload | None:
        self.lookups.append(("id", upload_id))
        return next((u for u in self.records if u.id == upload_id), None)

    async def find_by_url(self, url: str) -> Upload | None:
        self.lookups.append(("url", url))
        return next((u for u in self.records if u.url == url), None)


class FakePostUploads:
    """Post/upload reverse index kept in a set."""

    def __init__(self) -> None:
        self.pairs: set[tuple[int, int]] = set()

    async def exists(self, post_id: int, upload_id: int) -> bool:
        return (post_id, upload_id) in self.pairs

    async def create(self, post_id: int, upload_id: int) -> None:
        self.pairs.add((post_id, upload_id))


class FakeRenderer:
    """Onebox renderer answering from a dict."""

    def __init__(self, previews: dict[str, str] | None = None) -> None:
        self.previews = previews or {}
        self.calls: list[tuple[str, int | None, bool]] = []

    async def render(self, url: str, *, post_id: int | None = None, invalidate: bool = False) -> str | None:
        self.calls.append((url, post_id, invalidate))
        return self.previews.get(url)


class FakeThreadImages:
    def __init__(self) -> None:
        self.images: dict[int, str] = {}

    async def set_thread_image(self, topic_id: int, url: str) -> None:
        self.images[topic_id] = url


def make_upload(**kwargs) -> Upload:
    """Build an Upload with every column filled in."""
    values = {
        "id": 1,
        "url": "/uploads/default/1/0123456789abcdef.png",
        "original_filename": "image.png",
        "filesize": 0,
        "width": None,
        "height": None,
        "thumbnail_url": None,
    }
    values.update(kwargs)
    return Upload(**values)


@pytest.fixture
def settings() -> Settings:
    """Settings for a site at https://x.test with an S3 bucket."""
    return Settings(
        _env_file=None,  # Don't load .env file
        base_url="https://x.test",
        auto_link_threshold_width=100,
        allow_remote_crawl=True,
        max_render_dimension=690,
        object_store_base_url="//bucket.s3.amazonaws.com",
    )


@pytest_asyncio.fixture
async def db_session(tmp_path):
    """A session on a fresh SQLite database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        yield session

    await engine.dispose()
