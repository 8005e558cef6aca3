"""HTML metadata extraction for archived documents."""

from __future__ import annotations

import logging

from bs4 import BeautifulSoup
from bs4.builder import ParserRejectedMarkup

from wayback_meta.models.snapshot.document import ExtractedMetadata

logger = logging.getLogger(__name__)

# Tried in order; lxml accepts markup html.parser rejects (e.g. IE marked sections).
PARSER_FEATURES = ("html.parser", "lxml")

# Nodes the archive injects into served pages (toolbar, banners, assets).
ARCHIVE_CHROME_SELECTORS = (
    'script[src*="web.archive.org"]',
    'link[href*="web.archive.org"]',
    ".wb-autocomplete-suggestions",
    "#wm-ipp-base",
    "#donato",
    '[id*="wm-"]',
)


def _parse(html: str | bytes) -> BeautifulSoup | None:
    """Parse *html* with the first parser that accepts it, or return ``None``."""
    for features in PARSER_FEATURES:
        try:
            return BeautifulSoup(html, features)
        except ParserRejectedMarkup as exc:
            logger.debug("%s rejected document: %s", features, exc)
    logger.warning("Every parser rejected the document.")
    return None


def _attr(soup: BeautifulSoup, selector: str, attr: str = "content") -> str:
    node = soup.select_one(selector)
    if node is None:
        return ""
    value = node.get(attr)
    if isinstance(value, list):
        value = " ".join(value)
    return value or ""


def extract_metadata(html: str | bytes) -> ExtractedMetadata:
    """Parse *html* into :class:`ExtractedMetadata`.

    Never raises on malformed markup: elements that cannot be found resolve
    to their empty defaults.
    """
    soup = _parse(html)
    if soup is None:
        return ExtractedMetadata()

    title = soup.find("title")
    return ExtractedMetadata(
        title=title.get_text().strip() if title is not None else "",
        description=_attr(soup, 'meta[name="description"]'),
        canonical_url=_attr(soup, 'link[rel="canonical"]', "href"),
        robots=_attr(soup, 'meta[name="robots"]'),
        og_title=_attr(soup, 'meta[property="og:title"]'),
        og_description=_attr(soup, 'meta[property="og:description"]'),
        h1_count=len(soup.find_all("h1")),
    )


def strip_archive_chrome(html: str | bytes) -> str | None:
    """Return *html* with archive-injected scripts, styles and toolbars removed.

    Returns ``None`` when no parser accepts the document.
    """
    soup = _parse(html)
    if soup is None:
        return None
    for selector in ARCHIVE_CHROME_SELECTORS:
        for node in soup.select(selector):
            if not node.decomposed:  # nested matches go with their parent
                node.decompose()
    return str(soup)
