"""Onebox expansion: replace bare links with rendered previews."""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol
from urllib.parse import urljoin, urlsplit

import httpx
from bs4 import BeautifulSoup, Tag
from jinja2 import DictLoader, Environment

from postbake.config import Settings, get_settings
from postbake.services.cache import OneboxCache, get_onebox_cache
from postbake.services.sizes import is_http_url

logger = logging.getLogger("postbake.onebox")

OneboxResolver = Callable[[str, Tag], Awaitable[str | None]]

ONEBOX_TEMPLATE = """\
<div class="onebox-result" data-onebox-src="{{ url }}">
  <div class="source"><a href="{{ url }}" target="_blank" rel="nofollow noopener">{{ site_name }}</a></div>
  <div class="onebox-result-body">
    {% if image %}
    <img src="{{ image }}" class="thumbnail">
    {% endif %}
    <h3><a href="{{ url }}" target="_blank" rel="nofollow noopener">{{ title }}</a></h3>
    {% if description %}
    <p>{{ description|truncate(300) }}</p>
    {% endif %}
  </div>
</div>
"""


@dataclass
class OneboxResult:
    """Outcome of a onebox pass."""

    changed: bool = False


@dataclass
class PagePreview:
    """Metadata shown in a onebox."""

    url: str
    title: str
    site_name: str
    description: str = ""
    image: str | None = None


class OneboxExpander(Protocol):
    async def apply(self, soup: BeautifulSoup, resolver: OneboxResolver) -> OneboxResult: ...


def onebox_links(soup: BeautifulSoup) -> list[tuple[str, Tag]]:
    """Return the (url, element) pairs of links marked for oneboxing."""
    links = []
    for link in soup.select("a.onebox"):
        href = link.get("href")
        if isinstance(href, str) and href.strip():
            links.append((href.strip(), link))
    return links


class Oneboxer:
    """Bakes onebox previews into a document."""

    async def apply(self, soup: BeautifulSoup, resolver: OneboxResolver) -> OneboxResult:
        """
        Replace every onebox link the resolver has a preview for.

        A link that is the only child of a paragraph replaces the paragraph.
        """
        result = OneboxResult()

        for url, element in onebox_links(soup):
            try:
                markup = await resolver(url, element)
            except Exception as e:
                logger.warning("Onebox failed for %s: %s", url, e)
                continue

            if not markup:
                continue

            fragment = BeautifulSoup(markup, "html.parser")
            nodes = [node for node in fragment.contents if not (isinstance(node, str) and not node.strip())]
            if not nodes:
                continue

            target = element
            parent = element.parent
            if isinstance(parent, Tag) and parent.name == "p" and len(parent.contents) == 1:
                target = parent

            for node in nodes:
                target.insert_before(node.extract())
            target.decompose()
            result.changed = True

        return result


def extract_preview(url: str, html: str) -> PagePreview:
    """Pull Open Graph (or plain HTML) metadata out of a page."""
    soup = BeautifulSoup(html, "html.parser")

    def meta(*names: str) -> str:
        for name in names:
            tag = soup.find("meta", attrs={"property": name}) or soup.find("meta", attrs={"name": name})
            if isinstance(tag, Tag):
                content = tag.get("content")
                if isinstance(content, str) and content.strip():
                    return content.strip()
        return ""

    title = meta("og:title", "twitter:title")
    if not title and soup.title and soup.title.string:
        title = soup.title.string.strip()

    image = meta("og:image", "twitter:image")

    return PagePreview(
        url=url,
        title=title or url,
        site_name=meta("og:site_name") or urlsplit(url).netloc,
        description=meta("og:description", "description", "twitter:description"),
        image=urljoin(url, image) if image else None,
    )


class OneboxRenderer:
    """Fetches pages and renders their onebox markup."""

    def __init__(
        self,
        settings: Settings,
        cache: OneboxCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.cache = cache or get_onebox_cache()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self.env = Environment(
            loader=DictLoader({"onebox.html": ONEBOX_TEMPLATE}),
            autoescape=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={"User-Agent": "postbake/0.1.0", "Accept": "text/html"},
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

    async def _fetch_preview(self, url: str) -> PagePreview | None:
        client = await self._get_client()
        try:
            response = await client.get(url)
            if response.status_code != 200:
                return None
            if "html" not in response.headers.get("content-type", "text/html"):
                return None
            return extract_preview(url, response.text)
        except httpx.HTTPError as e:
            logger.debug("Onebox fetch of %s failed: %s", url, e)
            return None

    async def render(self, url: str, *, post_id: int | None = None, invalidate: bool = False) -> str | None:
        """
        Render the onebox for a URL.

        Args:
            url: The linked page
            post_id: Post the onebox is baked into (for logging)
            invalidate: Skip the cached preview and fetch again

        Returns:
            Preview markup, or None if the page can't be previewed
        """
        if not is_http_url(url):
            return None

        if invalidate:
            await self.cache.invalidate(url)
        else:
            cached = await self.cache.get(url)
            if cached is not None:
                return cached

        preview = await self._fetch_preview(url)
        if preview is None:
            logger.debug("No onebox for %s (post %s)", url, post_id)
            return None

        markup = self.env.get_template("onebox.html").render(
            url=preview.url,
            title=preview.title,
            site_name=preview.site_name,
            description=preview.description,
            image=preview.image,
        )
        await self.cache.set(url, markup)
        return markup


# Global renderer instance
_onebox_renderer: OneboxRenderer | None = None


def get_onebox_renderer() -> OneboxRenderer:
    """Get the global onebox renderer instance."""
    global _onebox_renderer
    if _onebox_renderer is None:
        _onebox_renderer = OneboxRenderer(get_settings())
    return _onebox_renderer


async def shutdown_onebox_renderer() -> None:
    """Close the global onebox renderer's HTTP client."""
    global _onebox_renderer
    if _onebox_renderer is not None:
        await _onebox_renderer.close()
        _onebox_renderer = None
