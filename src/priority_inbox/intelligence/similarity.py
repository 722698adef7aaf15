"""Vector similarity over stored message embeddings."""

from __future__ import annotations

import math
import re
from collections.abc import Sequence
from dataclasses import dataclass

from priority_inbox.core.interfaces import InboxRepository, NotFoundError

MIN_EMBEDDING_TEXT = 10
_MAX_EMBEDDING_TEXT = 8000
_WHITESPACE = re.compile(r"\s+")


@dataclass(slots=True, frozen=True)
class SimilarMessage:
    message_id: str
    similarity: float


def clean_text_for_embedding(text: str) -> str:
    """Collapse whitespace and cap the length of text sent for embedding."""
    return _WHITESPACE.sub(" ", text).strip()[:_MAX_EMBEDDING_TEXT]


def cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    """Return the cosine similarity of two equal-length vectors."""
    if len(left) != len(right):
        raise ValueError("Embeddings must have the same dimensions")
    dot = sum(a * b for a, b in zip(left, right, strict=True))
    norm_left = math.sqrt(sum(a * a for a in left))
    norm_right = math.sqrt(sum(b * b for b in right))
    if norm_left == 0 or norm_right == 0:
        return 0.0
    return dot / (norm_left * norm_right)


def find_similar_messages(
    repository: InboxRepository,
    message_id: str,
    *,
    limit: int = 10,
    min_similarity: float = 0.7,
) -> list[SimilarMessage]:
    """Return the user's messages closest to ``message_id``, best first."""
    source = repository.fetch_embedding(message_id)
    if source is None:
        raise NotFoundError(f"No embedding stored for message {message_id}")
    matches = []
    for candidate in repository.list_embeddings(source.user_id):
        if candidate.message_id == message_id:
            continue
        if len(candidate.vector) != len(source.vector):
            continue
        similarity = cosine_similarity(source.vector, candidate.vector)
        if similarity >= min_similarity:
            matches.append(SimilarMessage(candidate.message_id, similarity))
    matches.sort(key=lambda match: match.similarity, reverse=True)
    return matches[:limit]


__all__ = [
    "MIN_EMBEDDING_TEXT",
    "SimilarMessage",
    "clean_text_for_embedding",
    "cosine_similarity",
    "find_similar_messages",
]
