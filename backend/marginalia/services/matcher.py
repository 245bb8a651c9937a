"""
Anchor restoration: re-find a stored passage in a freshly rendered document.

The search is deliberately simple. Leaves containing the anchor text are
checked in document order, and the first one whose surrounding text and
the stored context contain one another wins. Documents that repeat the
same sentence with similar surroundings may therefore highlight an
earlier occurrence than the one that was annotated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

from .anchors import CONTEXT_WINDOW
from .models import Anchor
from .text_tree import Element, Highlight, TextNode

logger = logging.getLogger(__name__)


@dataclass
class HighlightTarget:
    """A span inside a single text leaf."""
    node: TextNode
    start: int
    end: int

    @property
    def text(self) -> str:
        return self.node.text[self.start:self.end]


@dataclass
class HighlightHandle:
    annotation_id: str
    region: Highlight

    @property
    def attached(self) -> bool:
        return self.region.parent is not None


def context_matches(extracted: str, stored: str) -> bool:
    """Bidirectional containment, tolerant of a window clipped differently."""
    return stored in extracted or extracted in stored


class AnchorMatcher:
    def __init__(self, window: int = CONTEXT_WINDOW):
        self.window = window

    def candidates(self, container: Element, anchor: Anchor) -> List[TextNode]:
        """Leaves, in document order, whose text contains the anchor text."""
        if not anchor.text:
            return []
        return [leaf for leaf in container.text_leaves() if anchor.text in leaf.text]

    def restore(self, container: Element, anchor: Anchor) -> Optional[HighlightTarget]:
        """
        Locate ``anchor`` inside ``container``.

        Returns:
            The first accepted span, or None when nothing matches. A miss is
            not an error; the annotation simply stays unhighlighted.
        """
        for node in self.candidates(container, anchor):
            content = node.text
            index = content.find(anchor.text)
            end = index + len(anchor.text)

            if anchor.context:
                extracted = content[max(0, index - self.window):min(len(content), end + self.window)]
                if not context_matches(extracted, anchor.context):
                    continue

            return HighlightTarget(node=node, start=index, end=end)

        logger.debug("Anchor text not found in document: %r", anchor.text[:50])
        return None

    def highlight(
        self,
        target: HighlightTarget,
        annotation_id: str,
        on_activate: Optional[Callable[[], None]] = None,
    ) -> HighlightHandle:
        """Wrap the target span in a highlight region carrying ``annotation_id``."""
        node = target.node
        parent = node.parent
        if parent is None:
            raise ValueError("Cannot highlight a detached text node")

        text = node.text
        region = Highlight(annotation_id, [text[target.start:target.end]], on_activate=on_activate)
        pieces: List[Union[Element, TextNode]] = [region]
        if target.end < len(text):
            pieces.append(TextNode(text[target.end:]))

        if target.start > 0:
            # Keep the original leaf object for the leading text.
            node.text = text[:target.start]
            parent.replace_child(node, [node] + pieces)
        else:
            parent.replace_child(node, pieces)

        return HighlightHandle(annotation_id=annotation_id, region=region)

    def unhighlight(self, handle: HighlightHandle) -> None:
        """Remove the region and merge its text back into the neighbouring leaves."""
        region = handle.region
        parent = region.parent
        if parent is None:
            return

        children = list(region.children)
        index = parent.replace_child(region, children)
        region.children = []
        _merge_text_run(parent, max(0, index - 1), index + len(children))


def _merge_text_run(parent: Element, lo: int, hi: int) -> None:
    """Join adjacent text leaves between child positions lo..hi (inclusive)."""
    hi = min(hi, len(parent.children) - 1)
    i = lo
    while i < hi:
        current, following = parent.children[i], parent.children[i + 1]
        if isinstance(current, TextNode) and isinstance(following, TextNode):
            current.text += following.text
            following.parent = None
            del parent.children[i + 1]
            hi -= 1
        else:
            i += 1
