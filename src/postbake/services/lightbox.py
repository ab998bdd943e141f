"""Lightbox treatment for images displayed smaller than their source."""

import posixpath
from urllib.parse import unquote, urlsplit

from bs4 import BeautifulSoup, Tag

from postbake.config import Settings
from postbake.models.db import Upload
from postbake.services.sizes import SizeResolver

# Ancestor walks stop here and treat the element as unreachable
MAX_ANCESTOR_DEPTH = 256

_SIZE_UNITS = ["KB", "MB", "GB", "TB"]


def number_to_human_size(size: int) -> str:
    """Format a byte count like "1.21 KB", keeping three significant digits."""
    if size < 1024:
        return "1 Byte" if size == 1 else f"{size} Bytes"

    value = float(size)
    unit = "Bytes"
    for unit in _SIZE_UNITS:
        value /= 1024.0
        if value < 1024 or unit == _SIZE_UNITS[-1]:
            break

    rounded = float(f"{value:.3g}")
    formatted = f"{rounded:f}".rstrip("0").rstrip(".")
    return f"{formatted} {unit}"


def filename_from_url(url: str) -> str:
    """Return the basename of a URL's path."""
    try:
        path = urlsplit(url).path
    except ValueError:
        path = url
    return posixpath.basename(unquote(path))


def _parse_int(value: str | None) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def has_link_ancestor(element: Tag) -> bool:
    """
    Check if an element is nested inside a hyperlink.

    Returns True as well when the ancestor chain is deeper than
    MAX_ANCESTOR_DEPTH, so callers leave such elements alone.
    """
    parent = element.parent
    depth = 0
    while parent is not None:
        if parent.name == "a":
            return True
        depth += 1
        if depth > MAX_ANCESTOR_DEPTH:
            return True
        parent = parent.parent
    return False


class LightboxConverter:
    """Wraps large images in a link to the full-size original."""

    def __init__(self, soup: BeautifulSoup, settings: Settings, sizes: SizeResolver) -> None:
        self.soup = soup
        self.settings = settings
        self.sizes = sizes

    async def maybe_wrap(self, img: Tag, upload: Upload | None = None) -> bool:
        """
        Apply the lightbox structure to an image when it qualifies.

        Args:
            img: The image element, already carrying its resolved dimensions
            upload: The upload the image was served from, if any

        Returns:
            True if the document was changed
        """
        src = img.get("src") or ""
        if not isinstance(src, str) or not src:
            return False

        width = _parse_int(img.get("width"))  # type: ignore[arg-type]
        height = _parse_int(img.get("height"))  # type: ignore[arg-type]

        if width <= self.settings.auto_link_threshold_width:
            return False

        original = await self.sizes.size_of(src)
        if original is None:
            return False
        original_width, original_height = original
        if not (original_width > width and original_height > height):
            return False

        if has_link_ancestor(img):
            return False

        if upload is not None and upload.thumbnail_url:
            img["src"] = upload.thumbnail_url

        # Container first, then the link to the larger image
        wrapper = self.soup.new_tag("div", attrs={"class": "lightbox-wrapper"})
        img.insert_after(wrapper)
        wrapper.append(img)

        link = self.soup.new_tag("a", attrs={"href": src, "class": "lightbox"})
        img.insert_after(link)
        link.append(img)

        # Overlay information
        meta = self.soup.new_tag("div", attrs={"class": "meta"})
        img.insert_after(meta)

        filename = (upload.original_filename if upload is not None else "") or filename_from_url(src)
        informations = f"{original_width}x{original_height}"
        if upload is not None and upload.filesize:
            informations += f" | {number_to_human_size(upload.filesize)}"

        meta.append(self._span("filename", filename))
        meta.append(self._span("informations", informations))
        meta.append(self._span("expand"))

        return True

    def _span(self, css_class: str, content: str | None = None) -> Tag:
        span = self.soup.new_tag("span", attrs={"class": css_class})
        if content:
            span.string = content
        return span
