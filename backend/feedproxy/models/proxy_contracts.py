from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from backend.feedproxy.errors import ErrorCode

InputType = Literal["homepage", "article", "feed", "username"]
FeedType = Literal["rss", "atom", "unknown"]
ParseFormat = Literal["html", "text", "both"]


class _ProxyRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: str
    timeout: float | None = None

    @field_validator("url")
    @classmethod
    def _require_url(cls, value: str) -> str:
        if not value:
            raise ValueError("url must not be empty")
        return value


class DiscoverRequest(_ProxyRequest):
    pass


class FetchRequest(_ProxyRequest):
    headers: dict[str, str] | None = None


class ParseRequest(_ProxyRequest):
    format: ParseFormat | None = None


class ErrorDetail(BaseModel):
    model_config = ConfigDict(extra="forbid")

    code: ErrorCode
    message: str
    status: int | None = None


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    success: Literal[False] = False
    error: ErrorDetail


class FeedInfo(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str
    title: str | None
    type: FeedType


class FeedMetadata(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str
    description: str | None
    link: str
    language: str | None
    last_build_date: str | None


class Images(BaseModel):
    model_config = ConfigDict(extra="forbid")

    site_icon: str | None = None
    og_image: str | None = None


class ContentAnalysis(BaseModel):
    model_config = ConfigDict(extra="forbid")

    has_full_content: bool
    average_content_length: int
    sample_size: int


class RecentPost(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str
    link: str
    pub_date: str | None


class DiscoverSuccessResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    success: Literal[True]
    input_type: InputType
    normalized_url: str
    feeds: list[FeedInfo]
    recommended_feed: str | None
    metadata: FeedMetadata | None
    images: Images
    content_analysis: ContentAnalysis | None
    recent_posts: list[RecentPost] | None
    message: str | None = None


class PlatformSuggestion(BaseModel):
    model_config = ConfigDict(extra="forbid")

    platform: str
    url: str
    label: str


class PlatformHintResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    success: Literal[True]
    platform_hint: Literal[True]
    input: str
    suggestions: list[PlatformSuggestion]


class FetchSuccessResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    success: Literal[True]
    status: int
    headers: dict[str, str]
    body: str | None


class ParseSuccessResponse(BaseModel):
    """Article payload; `htmlContent`/`content` and `textContent` depend on the requested format."""

    model_config = ConfigDict(extra="forbid")

    success: Literal[True]
    title: str | None
    byline: str | None
    siteName: str | None
    excerpt: str | None
    length: int
    image: str | None
    htmlContent: str | None = None
    content: str | None = None
    textContent: str | None = None


class HealthResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ok: bool
    version: str
    provider: str
    capabilities: list[str] = Field(default_factory=list)
