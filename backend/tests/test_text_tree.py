"""
Tests for the in-memory text tree and live selections.
"""
from __future__ import annotations

import pytest

from marginalia.services.text_tree import Element, Highlight, TextNode, TextRange, TextTree, root_of


@pytest.fixture()
def nested_tree() -> TextTree:
    return TextTree(
        [
            Element("h1", ["Title"]),
            Element("p", ["Hello ", Element("em", ["brave"]), " new world"]),
        ]
    )


def test_from_blocks_builds_one_leaf_per_block():
    tree = TextTree.from_blocks(["First block.", "Second block."])

    assert [b.tag for b in tree.blocks()] == ["p", "p"]
    assert [leaf.text for leaf in tree.text_leaves()] == ["First block.", "Second block."]


def test_text_leaves_are_depth_first(nested_tree):
    assert [leaf.text for leaf in nested_tree.text_leaves()] == ["Title", "Hello ", "brave", " new world"]
    assert nested_tree.text_content() == "TitleHello brave new world"


def test_string_children_become_parented_leaves(nested_tree):
    leaf = list(nested_tree.text_leaves())[2]

    assert isinstance(leaf, TextNode)
    assert leaf.parent.tag == "em"
    assert root_of(leaf) is nested_tree


def test_replace_child_reuses_original_node():
    paragraph = Element("p", ["abcdef"])
    leaf = paragraph.children[0]
    tail = TextNode("def")
    leaf.text = "abc"

    index = paragraph.replace_child(leaf, [leaf, tail])

    assert index == 0
    assert paragraph.children == [leaf, tail]
    assert leaf.parent is paragraph
    assert tail.parent is paragraph


def test_index_of_unknown_child_raises():
    with pytest.raises(ValueError):
        Element("p").index_of(TextNode("stray"))


def test_range_within_single_leaf():
    leaf = TextNode("The quick brown fox")
    selection = TextRange.within(leaf, 4, 9)

    assert selection.to_string() == "quick"
    assert str(selection) == "quick"
    assert not selection.collapsed


def test_range_across_leaves_concatenates(nested_tree):
    leaves = list(nested_tree.text_leaves())
    selection = TextRange(leaves[1], 2, leaves[3], 4)

    assert selection.to_string() == "llo brave new"


def test_collapsed_range():
    leaf = TextNode("abc")
    assert TextRange.within(leaf, 1, 1).collapsed


def test_find_highlight_and_activate():
    fired = []
    tree = TextTree([Element("p", ["before ", Highlight("annotation-1", ["marked"], on_activate=lambda: fired.append(1))])])

    highlight = tree.find_highlight("annotation-1")

    assert highlight is not None
    assert highlight.attrs["data-annotation-id"] == "annotation-1"
    assert tree.find_highlight("annotation-2") is None
    highlight.activate()
    assert fired == [1]
