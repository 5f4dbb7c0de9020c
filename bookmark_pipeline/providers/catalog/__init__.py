"""Media catalog adapters implementing ICatalogProvider.

    - OpenLibraryProvider -- books (no credentials)
    - TMDBMovieProvider   -- movies (TMDB_API_KEY)
    - TMDBTvProvider      -- TV shows (TMDB_API_KEY)
"""

from bookmark_pipeline.providers.catalog.openlibrary_provider import OpenLibraryProvider
from bookmark_pipeline.providers.catalog.tmdb_provider import TMDBMovieProvider, TMDBTvProvider

__all__ = ["OpenLibraryProvider", "TMDBMovieProvider", "TMDBTvProvider"]
