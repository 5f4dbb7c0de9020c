"""Entity-name normalization used as the per-user de-duplication key.

"The Matrix", "the matrix!" and "  THE   MATRIX " must collapse onto the
same stored entity, so extraction looks entities up by the normalized form
produced here, and the entities table carries a unique index on
``(user_id, type, normalized_name)``.
"""

import re

# Anything that is not a letter, digit or whitespace (Unicode aware).
# ``\w`` also matches "_", which is punctuation for our purposes.
_PUNCTUATION_RE = re.compile(r"[^\w\s]|_")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_entity_name(name: str) -> str:
    """Normalize an entity name for de-duplication.

    Lowercases, strips punctuation, collapses whitespace runs to a single
    space and trims.

    Args:
        name: Raw entity name as returned by the extractor.

    Returns:
        The normalized dedup key, e.g. ``"Harry Potter & the Goblet"`` ->
        ``"harry potter the goblet"``.
    """
    normalized = name.lower()
    normalized = _PUNCTUATION_RE.sub("", normalized)
    normalized = _WHITESPACE_RE.sub(" ", normalized)
    return normalized.strip()
