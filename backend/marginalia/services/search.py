"""
Term search over annotation content, anchor text and tags.
"""

from __future__ import annotations

from typing import List

from .models import Annotation
from .storage import AnnotationStorage


def annotation_matches_terms(annotation: Annotation, terms: List[str]) -> bool:
    """True if any term occurs in the content or, for passages, the anchor text."""
    content = annotation.content.lower()
    # Article-level notes have no anchor; they are searched on content only.
    selected = annotation.anchor.text.lower() if annotation.anchor is not None else ""
    return any(term in content or (selected and term in selected) for term in terms)


def has_tag(annotation: Annotation, tag: str) -> bool:
    wanted = tag.lower()
    return any(existing.lower() == wanted for existing in annotation.tags)


class SearchEngine:
    def __init__(self, storage: AnnotationStorage):
        self.storage = storage

    def search_by_content(self, query: str) -> List[Annotation]:
        """Annotations where any whitespace-separated term is a substring (case-insensitive)."""
        terms = (query or "").lower().split()
        if not terms:
            return []
        return [a for a in self.storage.get_all() if annotation_matches_terms(a, terms)]

    def search_by_tag(self, tag: str) -> List[Annotation]:
        if not tag:
            return []
        return [a for a in self.storage.get_all() if has_tag(a, tag)]
