"""Web page fetcher using httpx, trafilatura and BeautifulSoup.

Fetches a bookmarked URL, extracts the readable article body as markdown
with trafilatura, and reads title / description / favicon / Open Graph
image from the HTML head with BeautifulSoup.

Only ``text/html`` and ``text/plain`` responses are accepted.  Plain text
is stored verbatim as the markdown body.
"""

from __future__ import annotations

from urllib.parse import urljoin, urlparse

import httpx
import structlog
import trafilatura
from bs4 import BeautifulSoup

from bookmark_pipeline.config.settings import Settings
from bookmark_pipeline.interfaces.content_fetcher import IContentFetcher
from bookmark_pipeline.models.bookmark import PageContent
from bookmark_pipeline.providers.http_errors import raise_for_status
from bookmark_pipeline.utils.errors import FetchError
from bookmark_pipeline.utils.retry import RetryPolicy
from bookmark_pipeline.utils.urls import hostname

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,text/plain;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}
_SUPPORTED_CONTENT_TYPES = ("text/html", "text/plain")

_TITLE_SELECTORS = ('meta[property="og:title"]', 'meta[name="twitter:title"]')
_DESCRIPTION_SELECTORS = (
    'meta[property="og:description"]',
    'meta[name="description"]',
    'meta[name="twitter:description"]',
)
_FAVICON_SELECTORS = (
    'link[rel="icon"]',
    'link[rel="shortcut icon"]',
    'link[rel="apple-touch-icon"]',
    'link[rel="apple-touch-icon-precomposed"]',
)
_IMAGE_SELECTORS = (
    'meta[property="og:image"]',
    'meta[name="twitter:image"]',
    'meta[property="og:image:url"]',
)


def _resolve_url(href: str, base_url: str) -> str:
    if href.startswith("//"):
        return f"https:{href}"
    return urljoin(base_url, href)


def _first_attr(soup: BeautifulSoup, selectors: tuple[str, ...], attr: str) -> str | None:
    for selector in selectors:
        element = soup.select_one(selector)
        if element is not None:
            value = element.get(attr)
            if isinstance(value, list):
                value = " ".join(value)
            if value and value.strip():
                return value.strip()
    return None


def extract_page_metadata(html: str, url: str) -> dict[str, str | None]:
    """Read title, description, favicon and preview image from *html*.

    Relative URLs are resolved against *url*.  The favicon falls back to
    ``/favicon.ico`` on the page's origin.
    """
    soup = BeautifulSoup(html, "html.parser")

    title = _first_attr(soup, _TITLE_SELECTORS, "content")
    if not title and soup.title and soup.title.string:
        title = soup.title.string.strip() or None
    if not title:
        heading = soup.select_one("h1")
        if heading is not None:
            title = heading.get_text(strip=True) or None

    favicon = _first_attr(soup, _FAVICON_SELECTORS, "href")
    parsed = urlparse(url)
    if favicon:
        favicon = _resolve_url(favicon, url)
    elif parsed.scheme and parsed.netloc:
        favicon = f"{parsed.scheme}://{parsed.netloc}/favicon.ico"

    og_image = _first_attr(soup, _IMAGE_SELECTORS, "content")
    return {
        "title": title,
        "description": _first_attr(soup, _DESCRIPTION_SELECTORS, "content"),
        "favicon": favicon,
        "og_image": _resolve_url(og_image, url) if og_image else None,
    }


def html_to_markdown(html: str, url: str) -> str:
    """Extract the readable body of *html* as markdown.

    Falls back to the visible ``<body>`` text when trafilatura finds no
    main content (very short or script-heavy pages).
    """
    markdown = trafilatura.extract(
        html,
        url=url,
        output_format="markdown",
        include_comments=False,
        include_tables=True,
        include_formatting=True,
    )
    if markdown and markdown.strip():
        return markdown.strip()

    logger.debug("trafilatura_extraction_empty", url=url)
    soup = BeautifulSoup(html, "html.parser")
    for element in soup(["script", "style", "noscript"]):
        element.decompose()
    body = soup.body or soup
    lines = [line.strip() for line in body.get_text("\n").splitlines()]
    return "\n\n".join(line for line in lines if line)


class WebPageFetcher(IContentFetcher):
    """Fetches pages over httpx and converts them to markdown."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.fetch_timeout_seconds),
            headers=_DEFAULT_HEADERS,
            follow_redirects=True,
        )
        self._get = (retry_policy or settings.retry_policy())(self._get_once)

    # ------------------------------------------------------------------
    # IContentFetcher implementation
    # ------------------------------------------------------------------

    async def fetch(self, url: str) -> PageContent:
        try:
            response = await self._get(url)
        except httpx.TimeoutException as exc:
            raise FetchError(
                message=f"Timeout fetching {url}",
                provider_name=self.get_provider_name(),
            ) from exc
        except httpx.HTTPError as exc:
            raise FetchError(
                message=f"HTTP error fetching {url}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
        if content_type not in _SUPPORTED_CONTENT_TYPES:
            raise FetchError(
                message=f"Unsupported content type: {content_type or 'unknown'}",
                provider_name=self.get_provider_name(),
            )

        if content_type == "text/plain":
            markdown = response.text.strip()
            metadata: dict[str, str | None] = {"title": None, "description": None, "favicon": None, "og_image": None}
        else:
            markdown = html_to_markdown(response.text, url)
            metadata = extract_page_metadata(response.text, url)

        if not markdown:
            raise FetchError(
                message=f"No readable content at {url}",
                provider_name=self.get_provider_name(),
            )

        page = PageContent(
            title=metadata["title"] or hostname(url),
            markdown=markdown,
            description=metadata["description"],
            favicon=metadata["favicon"],
            og_image=metadata["og_image"],
        )
        logger.info("page_fetched", url=url, title=page.title, markdown_length=len(markdown))
        return page

    def get_provider_name(self) -> str:
        return "web_fetcher"

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get_once(self, url: str) -> httpx.Response:
        response = await self._client.get(url)
        raise_for_status(response, self.get_provider_name())
        return response
