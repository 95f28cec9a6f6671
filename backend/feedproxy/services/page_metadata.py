from __future__ import annotations

from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from backend.feedproxy.services.input_classifier import url_origin

FAVICON_SELECTORS: tuple[str, ...] = (
    'link[rel="icon"][type="image/png"]',
    'link[rel="apple-touch-icon"]',
    'link[rel="icon"]',
    'link[rel="shortcut icon"]',
)
SOCIAL_IMAGE_SELECTORS: tuple[str, ...] = (
    'meta[property="og:image"]',
    'meta[name="twitter:image"]',
)
SITE_NAME_SELECTORS: tuple[str, ...] = (
    'meta[property="og:site_name"]',
    'meta[name="application-name"]',
)


def parse_html_document(html_text: str) -> BeautifulSoup:
    return BeautifulSoup(html_text, "html.parser")


def resolve_url(url: str, base_url: str) -> str:
    if not url:
        return url
    if url.startswith(("http://", "https://", "data:")):
        return url
    try:
        return urljoin(base_url, url)
    except ValueError:
        return url


def extract_favicon(document: BeautifulSoup, base_url: str) -> str | None:
    for selector in FAVICON_SELECTORS:
        href = _attribute_of(document.select_one(selector), "href")
        if href:
            return resolve_url(href, base_url)
    try:
        return f"{url_origin(base_url)}/favicon.ico"
    except ValueError:
        return None


def extract_og_image(
    document: BeautifulSoup,
    base_url: str,
    *,
    include_article_image: bool = False,
) -> str | None:
    for selector in SOCIAL_IMAGE_SELECTORS:
        content = _attribute_of(document.select_one(selector), "content")
        if content:
            return resolve_url(content, base_url)
    if include_article_image:
        src = _attribute_of(document.select_one("article img[src]"), "src")
        if src:
            return resolve_url(src, base_url)
    return None


def extract_site_name(document: BeautifulSoup) -> str | None:
    return extract_meta_content(document, *SITE_NAME_SELECTORS)


def extract_meta_content(document: BeautifulSoup, *selectors: str) -> str | None:
    for selector in selectors:
        content = _attribute_of(document.select_one(selector), "content")
        if content:
            return content
    return None


def _attribute_of(element: Tag | None, name: str) -> str | None:
    if element is None:
        return None
    value = element.get(name)
    if isinstance(value, list):
        value = " ".join(value)
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None
