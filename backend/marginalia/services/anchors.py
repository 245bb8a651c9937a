"""
Anchor capture: turn a live selection into a serializable Anchor.

Context is taken from the selection's own start and end leaves only, so
it never crosses an element boundary and may be shorter than the window
near the edges of a leaf.
"""

from __future__ import annotations

import logging

from .errors import EmptySelectionError
from .models import Anchor
from .text_tree import Element, TextRange

logger = logging.getLogger(__name__)

CONTEXT_WINDOW = 30


def capture(selection: TextRange, window: int = CONTEXT_WINDOW) -> Anchor:
    """
    Build an anchor from a selection.

    ``text`` is the exact selected text, untrimmed. ``context`` is that text
    padded with up to ``window`` characters from the start leaf (before) and
    the end leaf (after). If the text cannot be found in the context the
    anchor falls back to ``context = text``.

    Raises:
        EmptySelectionError: the selection is blank once trimmed.
    """
    text = selection.to_string()
    if not text.strip():
        logger.warning("Rejected anchor capture: empty selection")
        raise EmptySelectionError()

    start = selection.start_offset
    end = selection.end_offset
    before = selection.start_node.text[max(0, start - window):start]
    after = selection.end_node.text[end:end + window]
    context = before + text + after

    position = context.find(text)
    if position == -1:
        logger.warning("Selected text not found in context, using text as context")
        return Anchor(text=text, context=text, text_position=0)

    return Anchor(text=text, context=context, text_position=position)


def capture_block(element: Element) -> Anchor:
    """
    Anchor a whole rendered block (tap-to-annotate on touch screens).

    The block's text is its own context.
    """
    text = element.text_content()
    if not text.strip():
        raise EmptySelectionError()
    return Anchor(text=text, context=text, text_position=0)
