"""Page fetcher adapters implementing IContentFetcher."""

from bookmark_pipeline.providers.fetch.web_page_fetcher import WebPageFetcher

__all__ = ["WebPageFetcher"]
