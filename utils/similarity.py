"""Cheap textual similarity used to detect chapter rewrites."""

import structlog

from config import settings

logger = structlog.get_logger(__name__)


def text_similarity(
    old_text: str | None, new_text: str | None, sample_chars: int | None = None
) -> float:
    """Return a similarity score in [0, 1] between two chapter texts.

    The score averages a length ratio with the share of matching characters
    at equal positions over a leading sample of both texts.
    """
    if old_text is None or new_text is None:
        return 0.0
    if old_text == new_text:
        return 1.0

    max_len = max(len(old_text), len(new_text))
    if max_len == 0:
        return 1.0

    length_similarity = 1.0 - abs(len(old_text) - len(new_text)) / max_len

    limit = sample_chars if sample_chars is not None else settings.REWRITE_SAMPLE_CHARS
    sample_len = min(limit, len(old_text), len(new_text))
    if sample_len == 0:
        positional_similarity = 0.0
    else:
        matches = sum(
            1 for a, b in zip(old_text[:sample_len], new_text[:sample_len]) if a == b
        )
        positional_similarity = matches / sample_len

    return (length_similarity + positional_similarity) / 2.0


def is_rewrite(
    old_text: str | None, new_text: str | None, threshold: float | None = None
) -> tuple[bool, float]:
    """Decide whether ``new_text`` replaces ``old_text`` materially.

    Only an existing, non-empty, changed text can be rewritten.
    """
    if not old_text or old_text == new_text:
        return False, 1.0 if old_text else 0.0
    cutoff = threshold if threshold is not None else settings.REWRITE_SIMILARITY_THRESHOLD
    similarity = text_similarity(old_text, new_text)
    logger.debug("Chapter similarity computed", similarity=round(similarity, 3))
    return similarity < cutoff, similarity
