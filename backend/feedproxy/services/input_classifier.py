from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal
from urllib.parse import urlsplit

InputType = Literal["username", "feed", "article", "homepage"]

USERNAME_PATTERN = re.compile(r"@?[A-Za-z0-9_-]+")
FEED_PATH_SUFFIXES: tuple[str, ...] = (".xml", ".rss", ".atom")
FEED_PATH_MARKERS: tuple[str, ...] = ("/feed", "/rss", "/atom")
ARTICLE_PATH_MARKERS: tuple[str, ...] = ("/post/", "/posts/", "/article/", "/articles/")
DATED_SEGMENT_PATTERN = re.compile(r"/\d{4}/")

# Tried in order; the first match wins and group 1 is the path kept for the homepage.
HOMEPAGE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^(.*?)/\d{4}/\d{2}/.*$"),
    re.compile(r"^(.*?)/\d{4}/.*$"),
    re.compile(r"^(.*?)/posts?/.*$"),
    re.compile(r"^(.*?)/articles?/.*$"),
    re.compile(r"^(.*?)/blog/[^/]+$"),
)


@dataclass(frozen=True)
class UsernameInput:
    name: str
    input_type: Literal["username"] = "username"


@dataclass(frozen=True)
class FeedInput:
    url: str
    input_type: Literal["feed"] = "feed"


@dataclass(frozen=True)
class ArticleInput:
    url: str
    input_type: Literal["article"] = "article"

    @property
    def homepage_url(self) -> str:
        return derive_homepage(self.url)


@dataclass(frozen=True)
class HomepageInput:
    url: str
    input_type: Literal["homepage"] = "homepage"


InputClassification = UsernameInput | FeedInput | ArticleInput | HomepageInput


def is_username(raw: str) -> bool:
    return USERNAME_PATTERN.fullmatch(raw) is not None and "." not in raw


def normalize_url(raw: str) -> str:
    trimmed = raw.strip()
    if trimmed.startswith(("http://", "https://")):
        return trimmed
    return f"https://{trimmed}"


def classify(raw: str) -> InputClassification:
    trimmed = raw.strip()
    if is_username(trimmed):
        return UsernameInput(name=trimmed.removeprefix("@"))

    url = normalize_url(trimmed)
    path = urlsplit(url).path.lower()

    if path.endswith(FEED_PATH_SUFFIXES) or any(marker in path for marker in FEED_PATH_MARKERS):
        return FeedInput(url=url)
    if _looks_like_article_path(path):
        return ArticleInput(url=url)
    return HomepageInput(url=url)


def derive_homepage(article_url: str) -> str:
    parts = urlsplit(article_url)
    origin = url_origin(article_url)
    for pattern in HOMEPAGE_PATTERNS:
        match = pattern.match(parts.path)
        if match is not None:
            return f"{origin}{match.group(1)}"
    return origin


def url_origin(url: str) -> str:
    parts = urlsplit(url)
    host = parts.netloc.rpartition("@")[2].lower()
    return f"{parts.scheme.lower()}://{host}"


def _looks_like_article_path(path: str) -> bool:
    if DATED_SEGMENT_PATTERN.search(path):
        return True
    if any(marker in path for marker in ARTICLE_PATH_MARKERS):
        return True
    return "/blog/" in path and len(path.split("/")) > 3
