# data_access/__init__.py
"""Storage backends for story facts."""

from __future__ import annotations

from config import settings

from .repository import InMemoryStoryRepository, StoryRepository


def build_repository(backend: str | None = None) -> StoryRepository:
    """Return the repository selected by ``STORAGE_BACKEND``."""
    selected = backend or settings.STORAGE_BACKEND
    if selected == "neo4j":
        from .neo4j_repository import Neo4jStoryRepository

        return Neo4jStoryRepository()
    return InMemoryStoryRepository()


__all__ = ["InMemoryStoryRepository", "StoryRepository", "build_repository"]
