"""Tests for dimension resolution and the per-run size cache."""

import pytest

from postbake.models.content import Dimensions, ImageSize
from postbake.services.sizes import DimensionCache, SizeResolver, clamp_dimensions, is_http_url

from conftest import FakeProber, FakeUploads


class TestClampDimensions:
    """Tests for the max-dimension clamp."""

    def test_small_image_unchanged(self):
        assert clamp_dimensions(300, 200, 690) == Dimensions(300, 200)

    def test_landscape_clamped_to_width(self):
        assert clamp_dimensions(800, 600, 690) == Dimensions(690, 517)

    def test_portrait_clamped_to_height(self):
        assert clamp_dimensions(600, 800, 690) == Dimensions(517, 690)

    def test_both_sides_exceed(self):
        assert clamp_dimensions(2000, 1000, 500) == Dimensions(500, 250)

    def test_exact_maximum_unchanged(self):
        assert clamp_dimensions(690, 690, 690) == Dimensions(690, 690)

    def test_zero_disables_clamp(self):
        assert clamp_dimensions(5000, 4000, 0) == Dimensions(5000, 4000)

    def test_missing_dimension(self):
        assert clamp_dimensions(None, 100, 690) is None
        assert clamp_dimensions(100, None, 690) is None


class TestIsHttpUrl:
    def test_accepts_http_and_https(self):
        assert is_http_url("http://example.com/a.png") is True
        assert is_http_url("https://example.com/a.png") is True

    def test_rejects_other_schemes(self):
        assert is_http_url("ftp://example.com/a.png") is False
        assert is_http_url("data:image/png;base64,AAAA") is False
        assert is_http_url("//example.com/a.png") is False

    def test_rejects_malformed(self):
        assert is_http_url("http://[::1") is False


class TestDimensionCache:
    def test_remembers_unresolved(self):
        cache = DimensionCache()
        cache.set("https://x.test/a.png", None)

        assert "https://x.test/a.png" in cache
        assert cache.get("https://x.test/a.png") is None
        assert cache.size == 1

    def test_clear(self):
        cache = DimensionCache()
        cache.set("a", Dimensions(1, 1))
        cache.set("b", Dimensions(2, 2))

        assert cache.clear() == 2
        assert cache.size == 0


class TestSizeResolver:
    """Tests for SizeResolver.resolve and size_of."""

    @pytest.mark.asyncio
    async def test_override_table_wins(self, settings):
        prober = FakeProber({"https://cdn.test/a.png": (10, 10)})
        resolver = SizeResolver(settings, prober, FakeUploads(settings))

        size = await resolver.resolve(
            "https://cdn.test/a.png",
            {"https://cdn.test/a.png": ImageSize(width=1380, height=400)},
        )

        assert size == Dimensions(690, 200)
        assert prober.calls == []

    @pytest.mark.asyncio
    async def test_probe_is_clamped(self, settings):
        prober = FakeProber({"https://cdn.test/a.png": (1000, 500)})
        resolver = SizeResolver(settings, prober, FakeUploads(settings))

        assert await resolver.resolve("https://cdn.test/a.png") == Dimensions(690, 345)

    @pytest.mark.asyncio
    async def test_size_of_returns_raw_size(self, settings):
        prober = FakeProber({"https://cdn.test/a.png": (1000, 500)})
        resolver = SizeResolver(settings, prober, FakeUploads(settings))

        assert await resolver.size_of("https://cdn.test/a.png") == Dimensions(1000, 500)

    @pytest.mark.asyncio
    async def test_probes_each_url_once(self, settings):
        prober = FakeProber({"https://cdn.test/a.png": (100, 50)})
        resolver = SizeResolver(settings, prober, FakeUploads(settings))

        first = await resolver.resolve("https://cdn.test/a.png")
        second = await resolver.resolve("https://cdn.test/a.png")
        raw = await resolver.size_of("https://cdn.test/a.png")

        assert first == second == Dimensions(100, 50)
        assert raw == Dimensions(100, 50)
        assert prober.calls == ["https://cdn.test/a.png"]

    @pytest.mark.asyncio
    async def test_failed_probe_is_cached(self, settings):
        prober = FakeProber()
        resolver = SizeResolver(settings, prober, FakeUploads(settings))

        assert await resolver.size_of("https://cdn.test/missing.png") is None
        assert await resolver.size_of("https://cdn.test/missing.png") is None
        assert len(prober.calls) == 1

    @pytest.mark.asyncio
    async def test_rejects_non_http_scheme(self, settings):
        prober = FakeProber()
        resolver = SizeResolver(settings, prober, FakeUploads(settings))

        assert await resolver.size_of("ftp://cdn.test/a.png") is None
        assert await resolver.size_of("//cdn.test/a.png") is None
        assert prober.calls == []

    @pytest.mark.asyncio
    async def test_crawl_disabled_only_probes_uploads(self, settings):
        settings.allow_remote_crawl = False
        prober = FakeProber(
            {
                "https://elsewhere.test/a.png": (800, 600),
                "https://x.test/uploads/default/1/ab.png": (800, 600),
            }
        )
        resolver = SizeResolver(settings, prober, FakeUploads(settings))

        assert await resolver.size_of("https://elsewhere.test/a.png") is None
        assert await resolver.size_of("https://x.test/uploads/default/1/ab.png") == Dimensions(800, 600)
        assert prober.calls == ["https://x.test/uploads/default/1/ab.png"]

    @pytest.mark.asyncio
    async def test_object_store_url_gets_scheme(self, settings):
        prober = FakeProber({"http://bucket.s3.amazonaws.com/a.png": (640, 480)})
        resolver = SizeResolver(settings, prober, FakeUploads(settings))

        size = await resolver.size_of("//bucket.s3.amazonaws.com/a.png")

        assert size == Dimensions(640, 480)
        assert prober.calls == ["http://bucket.s3.amazonaws.com/a.png"]

    @pytest.mark.asyncio
    async def test_prober_exception_means_unknown(self, settings):
        prober = FakeProber(error=RuntimeError("network down"))
        resolver = SizeResolver(settings, prober, FakeUploads(settings))

        assert await resolver.resolve("https://cdn.test/a.png") is None
        assert await resolver.resolve("https://cdn.test/a.png") is None
        assert len(prober.calls) == 1
