"""URL helpers shared by the fetcher and the pipeline."""

from urllib.parse import urlparse


def hostname(url: str) -> str:
    """Return the host part of *url*, or *url* itself when it has none."""
    return urlparse(url).hostname or url
