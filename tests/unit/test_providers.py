"""Unit tests for the httpx and openai adapters, driven by mock transports."""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from pydantic import BaseModel

from bookmark_pipeline.config.settings import Settings
from bookmark_pipeline.interfaces.llm_provider import ChatMessage
from bookmark_pipeline.models.entities import EntityType
from bookmark_pipeline.providers.catalog.openlibrary_provider import OpenLibraryProvider
from bookmark_pipeline.providers.catalog.tmdb_provider import TMDBMovieProvider, TMDBTvProvider
from bookmark_pipeline.providers.embedding.jina_embedding_provider import JinaEmbeddingProvider
from bookmark_pipeline.providers.fetch.web_page_fetcher import WebPageFetcher, extract_page_metadata
from bookmark_pipeline.providers.llm.openai_compatible_provider import OpenAICompatibleLLMProvider
from bookmark_pipeline.utils.errors import (
    CatalogError,
    EmbeddingError,
    FetchError,
    HttpStatusError,
    LLMError,
    RateLimitError,
)
from bookmark_pipeline.utils.retry import RetryPolicy


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# Open Library
# ---------------------------------------------------------------------------


class TestOpenLibraryProvider:
    @pytest.mark.asyncio()
    async def test_search_maps_documents(self, settings: Settings, no_retry: RetryPolicy) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "docs": [
                        {
                            "key": "/works/OL893415W",
                            "title": "Dune",
                            "author_name": ["Frank Herbert"],
                            "first_publish_year": 1965,
                            "cover_i": 11481354,
                            "isbn": ["9780441013593", "0441013597"],
                            "number_of_pages_median": 604,
                            "subject": ["Science fiction", "Deserts", "Ecology", "Politics", "Religion", "Spice"],
                        },
                        {"key": "/works/OL2W", "title": "Dune Messiah"},
                    ]
                },
            )

        provider = OpenLibraryProvider(settings, http_client=_client(handler), retry_policy=no_retry)

        dune, messiah = await provider.search("Dune")

        assert seen[0].url.path == "/search.json"
        assert seen[0].url.params["q"] == "Dune"
        assert dune.external_id == "openlibrary:/works/OL893415W"
        assert dune.authors == ["Frank Herbert"]
        assert dune.year == 1965
        assert dune.isbn == "9780441013593"
        assert dune.cover_url == "https://covers.openlibrary.org/b/id/11481354-M.jpg"
        assert dune.page_count == 604
        assert dune.subjects is not None and len(dune.subjects) == 5
        assert messiah.authors == []
        assert messiah.cover_url is None

    @pytest.mark.asyncio()
    async def test_server_error_raises_status_error(self, settings: Settings, no_retry: RetryPolicy) -> None:
        provider = OpenLibraryProvider(
            settings,
            http_client=_client(lambda request: httpx.Response(503)),
            retry_policy=no_retry,
        )

        with pytest.raises(HttpStatusError) as exc_info:
            await provider.search("Dune")
        assert exc_info.value.status == 503

    @pytest.mark.asyncio()
    async def test_transport_error_becomes_catalog_error(self, settings: Settings, no_retry: RetryPolicy) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        provider = OpenLibraryProvider(settings, http_client=_client(handler), retry_policy=no_retry)

        with pytest.raises(CatalogError):
            await provider.search("Dune")

    @pytest.mark.asyncio()
    async def test_malformed_documents_become_catalog_error(
        self, settings: Settings, no_retry: RetryPolicy
    ) -> None:
        provider = OpenLibraryProvider(
            settings,
            http_client=_client(lambda request: httpx.Response(200, json={"docs": [{"title": "No key"}]})),
            retry_policy=no_retry,
        )

        with pytest.raises(CatalogError, match="Malformed Open Library response"):
            await provider.search("Dune")

    @pytest.mark.asyncio()
    async def test_non_json_body_becomes_catalog_error(self, settings: Settings, no_retry: RetryPolicy) -> None:
        provider = OpenLibraryProvider(
            settings,
            http_client=_client(lambda request: httpx.Response(200, text="<html>maintenance</html>")),
            retry_policy=no_retry,
        )

        with pytest.raises(CatalogError):
            await provider.search("Dune")

    def test_metadata(self, settings: Settings) -> None:
        provider = OpenLibraryProvider(settings, http_client=_client(lambda request: httpx.Response(200)))

        assert provider.get_entity_type() == EntityType.BOOK
        assert provider.is_available()


# ---------------------------------------------------------------------------
# TMDB
# ---------------------------------------------------------------------------


def _tmdb_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/3/search/movie":
        return httpx.Response(200, json={"results": [{"id": 603}]})
    if path == "/3/movie/603":
        return httpx.Response(
            200,
            json={
                "id": 603,
                "title": "The Matrix",
                "popularity": 85.2,
                "release_date": "1999-03-30",
                "poster_path": "/matrix.jpg",
                "imdb_id": "tt0133093",
                "runtime": 136,
                "genres": [{"id": 28, "name": "Action"}, {"id": 878, "name": "Science Fiction"}],
            },
        )
    if path == "/3/movie/603/credits":
        return httpx.Response(
            200,
            json={
                "crew": [
                    {"name": "Lana Wachowski", "job": "Director"},
                    {"name": "Joel Silver", "job": "Producer"},
                    {"name": "Lilly Wachowski", "job": "Director"},
                ]
            },
        )
    if path == "/3/search/tv":
        return httpx.Response(200, json={"results": [{"id": 1399}]})
    if path == "/3/tv/1399":
        return httpx.Response(
            200,
            json={
                "id": 1399,
                "name": "Game of Thrones",
                "popularity": 300.0,
                "first_air_date": "2011-04-17",
                "created_by": [{"name": "David Benioff"}, {"name": "D. B. Weiss"}],
                "number_of_seasons": 8,
                "genres": [{"name": "Drama"}],
            },
        )
    return httpx.Response(404)


class TestTMDBProviders:
    @pytest.mark.asyncio()
    async def test_movie_search_hydrates_details_and_directors(
        self, settings: Settings, no_retry: RetryPolicy
    ) -> None:
        provider = TMDBMovieProvider(settings, http_client=_client(_tmdb_handler), retry_policy=no_retry)

        [movie] = await provider.search("The Matrix")

        assert movie.external_id == "tmdb:603"
        assert movie.tmdb_id == 603
        assert movie.year == 1999
        assert movie.directors == ["Lana Wachowski", "Lilly Wachowski"]
        assert movie.poster_url == "https://image.tmdb.org/t/p/w500/matrix.jpg"
        assert movie.imdb_id == "tt0133093"
        assert movie.runtime == 136
        assert movie.genres == ["Action", "Science Fiction"]
        assert movie.popularity == 85.2

    @pytest.mark.asyncio()
    async def test_missing_credits_leave_directors_empty(self, settings: Settings, no_retry: RetryPolicy) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/credits"):
                return httpx.Response(404)
            return _tmdb_handler(request)

        provider = TMDBMovieProvider(settings, http_client=_client(handler), retry_policy=no_retry)

        [movie] = await provider.search("The Matrix")

        assert movie.directors is None

    @pytest.mark.asyncio()
    async def test_tv_search(self, settings: Settings, no_retry: RetryPolicy) -> None:
        provider = TMDBTvProvider(settings, http_client=_client(_tmdb_handler), retry_policy=no_retry)

        [show] = await provider.search("Game of Thrones")

        assert show.external_id == "tmdb:1399"
        assert show.creators == ["David Benioff", "D. B. Weiss"]
        assert show.first_air_year == 2011
        assert show.seasons == 8
        assert show.poster_url is None
        assert provider.get_entity_type() == EntityType.TV_SHOW

    @pytest.mark.asyncio()
    async def test_api_key_is_sent_but_not_leaked(self, settings: Settings, no_retry: RetryPolicy) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["api_key"] == "test-tmdb-key"
            return httpx.Response(401)

        provider = TMDBMovieProvider(settings, http_client=_client(handler), retry_policy=no_retry)

        with pytest.raises(HttpStatusError) as exc_info:
            await provider.search("Heat")
        assert exc_info.value.status == 401
        assert "TMDB API key invalid" in str(exc_info.value)
        assert "test-tmdb-key" not in (exc_info.value.url or "")

    @pytest.mark.asyncio()
    async def test_rate_limit_carries_retry_after(self, settings: Settings, no_retry: RetryPolicy) -> None:
        provider = TMDBMovieProvider(
            settings,
            http_client=_client(lambda request: httpx.Response(429, headers={"Retry-After": "12"})),
            retry_policy=no_retry,
        )

        with pytest.raises(RateLimitError) as exc_info:
            await provider.search("Heat")
        assert exc_info.value.retry_after_seconds == 12.0

    @pytest.mark.asyncio()
    async def test_null_title_becomes_catalog_error(self, settings: Settings, no_retry: RetryPolicy) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/3/movie/603":
                return httpx.Response(200, json={"id": 603, "title": None, "popularity": 10.0})
            return _tmdb_handler(request)

        provider = TMDBMovieProvider(settings, http_client=_client(handler), retry_policy=no_retry)

        with pytest.raises(CatalogError, match="Malformed TMDB response") as exc_info:
            await provider.search("The Matrix")
        assert exc_info.value.provider_name == "tmdb"

    @pytest.mark.asyncio()
    async def test_search_hit_without_id_becomes_catalog_error(
        self, settings: Settings, no_retry: RetryPolicy
    ) -> None:
        provider = TMDBTvProvider(
            settings,
            http_client=_client(lambda request: httpx.Response(200, json={"results": [{"name": "Lost"}]})),
            retry_policy=no_retry,
        )

        with pytest.raises(CatalogError):
            await provider.search("Lost")

    def test_unavailable_without_key(self) -> None:
        provider = TMDBMovieProvider(
            Settings(_env_file=None, tmdb_api_key=""),
            http_client=_client(_tmdb_handler),
        )

        assert not provider.is_available()


# ---------------------------------------------------------------------------
# Jina embeddings
# ---------------------------------------------------------------------------


class TestJinaEmbeddingProvider:
    @pytest.mark.asyncio()
    async def test_vectors_are_returned_in_input_order(self, settings: Settings, no_retry: RetryPolicy) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(
                200,
                json={
                    "data": [
                        {"index": 1, "embedding": [0.0, 1.0]},
                        {"index": 0, "embedding": [1.0, 0.0]},
                    ],
                    "usage": {"total_tokens": 4},
                },
            )

        provider = JinaEmbeddingProvider(settings, http_client=_client(handler), retry_policy=no_retry)

        vectors = await provider.embed_batch(["first", "second"])

        assert vectors == [[1.0, 0.0], [0.0, 1.0]]
        assert bodies[0]["input"] == ["first", "second"]
        assert bodies[0]["task"] == "retrieval.passage"
        assert bodies[0]["normalized"] is True

    @pytest.mark.asyncio()
    async def test_count_mismatch_raises(self, settings: Settings, no_retry: RetryPolicy) -> None:
        provider = JinaEmbeddingProvider(
            settings,
            http_client=_client(lambda request: httpx.Response(200, json={"data": [{"index": 0, "embedding": [1.0]}]})),
            retry_policy=no_retry,
        )

        with pytest.raises(EmbeddingError):
            await provider.embed_batch(["a", "b"])

    @pytest.mark.asyncio()
    async def test_empty_batch_makes_no_request(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("unexpected request")

        provider = JinaEmbeddingProvider(settings, http_client=_client(handler))

        assert await provider.embed_batch([]) == []


# ---------------------------------------------------------------------------
# Web page fetcher
# ---------------------------------------------------------------------------

_ARTICLE_SENTENCE = "The spice must flow across every dune of the desert planet Arrakis."

_HTML_PAGE = f"""<!DOCTYPE html>
<html>
<head>
  <title>Fallback title</title>
  <meta property="og:title" content="Dune Review">
  <meta name="description" content="A look back at Dune.">
  <meta property="og:image" content="/img/cover.jpg">
  <link rel="icon" href="/static/favicon.png">
</head>
<body>
  <article>
    <h1>Dune Review</h1>
    <p>{_ARTICLE_SENTENCE} {_ARTICLE_SENTENCE}</p>
    <p>{_ARTICLE_SENTENCE} {_ARTICLE_SENTENCE} {_ARTICLE_SENTENCE}</p>
  </article>
</body>
</html>
"""


class TestWebPageFetcher:
    @pytest.mark.asyncio()
    async def test_html_page(self, settings: Settings, no_retry: RetryPolicy) -> None:
        fetcher = WebPageFetcher(
            settings,
            http_client=_client(
                lambda request: httpx.Response(
                    200, text=_HTML_PAGE, headers={"content-type": "text/html; charset=utf-8"}
                )
            ),
            retry_policy=no_retry,
        )

        page = await fetcher.fetch("https://blog.example.com/posts/dune")

        assert page.title == "Dune Review"
        assert page.description == "A look back at Dune."
        assert page.favicon == "https://blog.example.com/static/favicon.png"
        assert page.og_image == "https://blog.example.com/img/cover.jpg"
        assert "Arrakis" in page.markdown

    @pytest.mark.asyncio()
    async def test_plain_text_is_stored_verbatim(self, settings: Settings, no_retry: RetryPolicy) -> None:
        fetcher = WebPageFetcher(
            settings,
            http_client=_client(
                lambda request: httpx.Response(200, text="  line one\nline two  ", headers={"content-type": "text/plain"})
            ),
            retry_policy=no_retry,
        )

        page = await fetcher.fetch("https://example.com/notes.txt")

        assert page.markdown == "line one\nline two"
        assert page.title == "example.com"
        assert page.favicon is None

    @pytest.mark.asyncio()
    async def test_unsupported_content_type(self, settings: Settings, no_retry: RetryPolicy) -> None:
        fetcher = WebPageFetcher(
            settings,
            http_client=_client(
                lambda request: httpx.Response(200, content=b"%PDF-1.7", headers={"content-type": "application/pdf"})
            ),
            retry_policy=no_retry,
        )

        with pytest.raises(FetchError, match="application/pdf"):
            await fetcher.fetch("https://example.com/paper.pdf")

    @pytest.mark.asyncio()
    async def test_transport_error_becomes_fetch_error(self, settings: Settings, no_retry: RetryPolicy) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        fetcher = WebPageFetcher(settings, http_client=_client(handler), retry_policy=no_retry)

        with pytest.raises(FetchError):
            await fetcher.fetch("https://example.com/down")

    def test_metadata_fallbacks(self) -> None:
        metadata = extract_page_metadata("<html><body><h1>Heading</h1></body></html>", "https://example.com/a/b")

        assert metadata["title"] == "Heading"
        assert metadata["favicon"] == "https://example.com/favicon.ico"
        assert metadata["description"] is None
        assert metadata["og_image"] is None


# ---------------------------------------------------------------------------
# OpenAI-compatible LLM provider
# ---------------------------------------------------------------------------


class _Verdict(BaseModel):
    label: str
    score: float


def _completion(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(total_tokens=42),
    )


def _openai_client(*replies: str | None) -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=[_completion(reply) for reply in replies])
    return client


class TestOpenAICompatibleLLMProvider:
    @pytest.mark.asyncio()
    async def test_complete_sends_user_message(self, settings: Settings, no_retry: RetryPolicy) -> None:
        client = _openai_client("A short summary.")
        provider = OpenAICompatibleLLMProvider(settings, client=client, retry_policy=no_retry)

        result = await provider.complete("Summarize this", temperature=0.3, max_tokens=300)

        assert result == "A short summary."
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["messages"] == [{"role": "user", "content": "Summarize this"}]
        assert kwargs["max_tokens"] == 300
        assert "response_format" not in kwargs

    @pytest.mark.asyncio()
    async def test_structured_output_strips_fence(self, settings: Settings, no_retry: RetryPolicy) -> None:
        client = _openai_client('```json\n{"label": "book", "score": 0.9}\n```')
        provider = OpenAICompatibleLLMProvider(settings, client=client, retry_policy=no_retry)

        verdict = await provider.generate_structured([ChatMessage(role="user", content="classify")], _Verdict)

        assert verdict == _Verdict(label="book", score=0.9)
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][0]["role"] == "system"
        assert "Schema" in kwargs["messages"][0]["content"]

    @pytest.mark.asyncio()
    async def test_invalid_structured_output_raises(self, settings: Settings, no_retry: RetryPolicy) -> None:
        provider = OpenAICompatibleLLMProvider(
            settings, client=_openai_client('{"label": "book"}'), retry_policy=no_retry
        )

        with pytest.raises(LLMError, match="_Verdict"):
            await provider.generate_structured([ChatMessage(role="user", content="classify")], _Verdict)

    @pytest.mark.asyncio()
    async def test_empty_reply_raises(self, settings: Settings, no_retry: RetryPolicy) -> None:
        provider = OpenAICompatibleLLMProvider(settings, client=_openai_client(None), retry_policy=no_retry)

        with pytest.raises(LLMError, match="empty response"):
            await provider.complete("hello")

    def test_provider_label_follows_base_url(self, settings: Settings) -> None:
        provider = OpenAICompatibleLLMProvider(settings, client=MagicMock())

        assert provider.get_provider_name() == "openrouter"
        assert provider.is_available()
