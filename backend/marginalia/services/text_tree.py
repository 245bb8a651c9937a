"""
In-memory text tree for a rendered document.

The renderer hands us a container of elements and text leaves. Anchors
only care about the leaf sequence in document order, so that is the
main thing this module exposes. Highlights are elements spliced into the
tree around a span of one leaf.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, Iterator, List, Optional, Union


class TextNode:
    """A text leaf. Compared by identity, like a DOM node."""

    def __init__(self, text: str = ""):
        self.text = text
        self.parent: Optional[Element] = None

    def __repr__(self) -> str:
        return f"TextNode({self.text!r})"


class Element:
    def __init__(
        self,
        tag: str = "div",
        children: Optional[Iterable[Union["Element", TextNode, str]]] = None,
        attrs: Optional[Dict[str, str]] = None,
    ):
        self.tag = tag
        self.attrs: Dict[str, str] = dict(attrs or {})
        self.parent: Optional[Element] = None
        self.children: List[Union[Element, TextNode]] = []
        for child in children or []:
            self.append(child)

    def append(self, child: Union["Element", TextNode, str]) -> Union["Element", TextNode]:
        if isinstance(child, str):
            child = TextNode(child)
        child.parent = self
        self.children.append(child)
        return child

    def index_of(self, child: Union["Element", TextNode]) -> int:
        for i, candidate in enumerate(self.children):
            if candidate is child:
                return i
        raise ValueError(f"{child!r} is not a child of {self!r}")

    def replace_child(
        self,
        child: Union["Element", TextNode],
        replacements: List[Union["Element", TextNode]],
    ) -> int:
        """Swap ``child`` for ``replacements`` in place; returns the insertion index."""
        index = self.index_of(child)
        child.parent = None
        for node in replacements:
            node.parent = self
        self.children[index:index + 1] = replacements
        return index

    def text_leaves(self) -> Iterator[TextNode]:
        """Every text leaf below this element, depth-first in document order."""
        for child in self.children:
            if isinstance(child, TextNode):
                yield child
            else:
                yield from child.text_leaves()

    def text_content(self) -> str:
        return "".join(leaf.text for leaf in self.text_leaves())

    def iter_elements(self) -> Iterator["Element"]:
        for child in self.children:
            if isinstance(child, Element):
                yield child
                yield from child.iter_elements()

    def __repr__(self) -> str:
        return f"<{self.tag} children={len(self.children)}>"


class Highlight(Element):
    """Highlight region wrapping an annotated span."""

    def __init__(
        self,
        annotation_id: str,
        children: Optional[Iterable[Union[Element, TextNode, str]]] = None,
        on_activate: Optional[Callable[[], None]] = None,
    ):
        super().__init__(
            "span",
            children,
            attrs={"class": "annotation-highlight", "data-annotation-id": annotation_id},
        )
        self.annotation_id = annotation_id
        self.on_activate = on_activate

    def activate(self) -> None:
        if self.on_activate is not None:
            self.on_activate()


class TextTree(Element):
    """Root container of a rendered document."""

    def __init__(self, children: Optional[Iterable[Union[Element, TextNode, str]]] = None):
        super().__init__("article", children)

    @classmethod
    def from_blocks(cls, blocks: Iterable[str], tag: str = "p") -> "TextTree":
        """Build a document where each rendered block is one element holding one leaf."""
        return cls(Element(tag, [block]) for block in blocks)

    def blocks(self) -> List[Element]:
        return [child for child in self.children if isinstance(child, Element)]

    def highlights(self) -> List[Highlight]:
        return [el for el in self.iter_elements() if isinstance(el, Highlight)]

    def find_highlight(self, annotation_id: str) -> Optional[Highlight]:
        for highlight in self.highlights():
            if highlight.annotation_id == annotation_id:
                return highlight
        return None


def root_of(node: Union[Element, TextNode]) -> Element:
    current = node
    while current.parent is not None:
        current = current.parent
    return current


class TextRange:
    """
    A live selection: start/end leaf plus offsets.

    Start and end may be different leaves; the covered text is the
    concatenation of every leaf between them in document order.
    """

    def __init__(self, start_node: TextNode, start_offset: int, end_node: TextNode, end_offset: int):
        self.start_node = start_node
        self.start_offset = start_offset
        self.end_node = end_node
        self.end_offset = end_offset

    @classmethod
    def within(cls, node: TextNode, start: int, end: int) -> "TextRange":
        return cls(node, start, node, end)

    @property
    def collapsed(self) -> bool:
        return self.start_node is self.end_node and self.start_offset == self.end_offset

    def to_string(self) -> str:
        if self.start_node is self.end_node:
            return self.start_node.text[self.start_offset:self.end_offset]

        parts = []
        inside = False
        for leaf in root_of(self.start_node).text_leaves():
            if leaf is self.start_node:
                inside = True
                parts.append(leaf.text[self.start_offset:])
            elif leaf is self.end_node:
                parts.append(leaf.text[:self.end_offset])
                break
            elif inside:
                parts.append(leaf.text)
        return "".join(parts)

    def __str__(self) -> str:
        return self.to_string()
