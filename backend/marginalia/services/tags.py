"""
Tag index derived from stored annotations.

The index is never persisted. It is cached per session and dropped
whenever the store reports a committed write.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from .storage import AnnotationStorage

logger = logging.getLogger(__name__)

SUGGESTION_LIMIT = 10


class TagIndex:
    """
    Distinct tags across all annotations.

    ``all_tags`` keeps every stored spelling ("Todo" and "todo" are two
    entries) while ``suggest`` matches case-insensitively.
    """

    def __init__(self, storage: AnnotationStorage, limit: int = SUGGESTION_LIMIT):
        self.storage = storage
        self.limit = limit
        self._cache: Optional[List[str]] = None
        storage.add_listener(self._on_store_change)

    def all_tags(self) -> List[str]:
        if self._cache is None:
            tags: set[str] = set()
            for annotation in self.storage.get_all():
                tags.update(annotation.tags)
            self._cache = sorted(tags)
            logger.debug("Rebuilt tag index: %d tags", len(self._cache))
        return list(self._cache)

    def suggest(self, partial: str, already_entered: Iterable[str] = ()) -> List[str]:
        """
        Tags containing ``partial`` (case-insensitive), minus ones already entered.

        Results keep the index order and are capped at ``limit``.
        """
        needle = (partial or "").strip().lower()
        if not needle:
            return []

        entered = {tag.strip().lower() for tag in already_entered}
        matches = [
            tag for tag in self.all_tags()
            if needle in tag.lower() and tag.lower() not in entered
        ]
        return matches[:self.limit]

    def invalidate(self) -> None:
        self._cache = None

    def _on_store_change(self, action: str, annotation_id: Optional[str]) -> None:
        self.invalidate()
