from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends

from backend.feedproxy.dependencies import (
    get_article_parser,
    get_discovery_orchestrator,
    get_fetch_proxy,
    require_api_key,
)
from backend.feedproxy.models.proxy_contracts import (
    ContentAnalysis,
    DiscoverRequest,
    DiscoverSuccessResponse,
    FeedInfo,
    FeedMetadata,
    FetchRequest,
    FetchSuccessResponse,
    Images,
    ParseRequest,
    ParseSuccessResponse,
    PlatformHintResponse,
    PlatformSuggestion,
    RecentPost,
)
from backend.feedproxy.services.article_parser import ArticleParser
from backend.feedproxy.services.discovery_orchestrator import (
    DiscoveryOrchestrator,
    DiscoveryResult,
    PlatformHint,
)
from backend.feedproxy.services.fetch_proxy import FeedFetchProxy

router = APIRouter(dependencies=[Depends(require_api_key)])


def _platform_hint_response(hint: PlatformHint) -> PlatformHintResponse:
    return PlatformHintResponse(
        success=True,
        platform_hint=True,
        input=hint.username,
        suggestions=[
            PlatformSuggestion(platform=item.platform, url=item.url, label=item.label)
            for item in hint.suggestions
        ],
    )


def _discover_response(result: DiscoveryResult) -> DiscoverSuccessResponse:
    analysis = result.analysis
    metadata = None
    content_analysis = None
    recent_posts = None
    if analysis is not None:
        metadata = FeedMetadata(
            title=analysis.summary.title,
            description=analysis.summary.description,
            link=analysis.summary.link,
            language=analysis.summary.language,
            last_build_date=analysis.summary.last_build_date,
        )
        content_analysis = ContentAnalysis(
            has_full_content=analysis.signal.has_full_content,
            average_content_length=analysis.signal.average_content_length,
            sample_size=analysis.signal.sample_size,
        )
        recent_posts = [
            RecentPost(title=post.title, link=post.link, pub_date=post.pub_date)
            for post in analysis.posts
        ]

    extra: dict[str, Any] = {}
    if result.message is not None:
        extra["message"] = result.message
    return DiscoverSuccessResponse(
        success=True,
        input_type=result.input_type,
        normalized_url=result.normalized_url,
        feeds=[
            FeedInfo(url=feed.url, title=feed.title, type=feed.kind)
            for feed in result.feeds
        ],
        recommended_feed=result.recommended_feed,
        metadata=metadata,
        images=Images(site_icon=result.images.site_icon, og_image=result.images.og_image),
        content_analysis=content_analysis,
        recent_posts=recent_posts,
        **extra,
    )


@router.post(
    "/discover",
    response_model=DiscoverSuccessResponse | PlatformHintResponse,
    response_model_exclude_unset=True,
    tags=["discovery"],
    operation_id="discover_feeds",
)
async def discover_feeds(
    request: DiscoverRequest,
    orchestrator: Annotated[DiscoveryOrchestrator, Depends(get_discovery_orchestrator)],
) -> DiscoverSuccessResponse | PlatformHintResponse:
    outcome = await orchestrator.discover(request.url, timeout_ms=request.timeout)
    if isinstance(outcome, PlatformHint):
        return _platform_hint_response(outcome)
    return _discover_response(outcome)


@router.post(
    "/fetch",
    response_model=FetchSuccessResponse,
    tags=["proxy"],
    operation_id="fetch_feed",
)
async def fetch_feed(
    request: FetchRequest,
    proxy: Annotated[FeedFetchProxy, Depends(get_fetch_proxy)],
) -> FetchSuccessResponse:
    result = await proxy.fetch(request.url, headers=request.headers, timeout_ms=request.timeout)
    return FetchSuccessResponse(
        success=True,
        status=result.status,
        headers=result.headers,
        body=result.body,
    )


@router.post(
    "/parse",
    response_model=ParseSuccessResponse,
    response_model_exclude_unset=True,
    tags=["proxy"],
    operation_id="parse_article",
)
async def parse_article(
    request: ParseRequest,
    parser: Annotated[ArticleParser, Depends(get_article_parser)],
) -> ParseSuccessResponse:
    article = await parser.parse(
        request.url,
        output_format=request.format or "both",
        timeout_ms=request.timeout,
    )

    content_fields: dict[str, Any] = {}
    if article.html_content is not None:
        content_fields["htmlContent"] = article.html_content
        content_fields["content"] = article.html_content
    if article.text_content is not None:
        content_fields["textContent"] = article.text_content
    return ParseSuccessResponse(
        success=True,
        title=article.title,
        byline=article.byline,
        siteName=article.site_name,
        excerpt=article.excerpt,
        length=article.length,
        image=article.image,
        **content_fields,
    )
