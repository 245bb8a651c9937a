"""
Tests for the per-document annotation controller.

Covers:
- Capture, validation and save of passage and article-level notes
- Restoration ordering against the renderer signal
- Delete, edit and activation flows
- Store failures reported without partial local changes
"""
from __future__ import annotations

from pathlib import Path

import pytest

from marginalia.services.controller import AnnotationController, AnnotationWorkspace, ControllerState
from marginalia.services.errors import AnnotationValidationError, EmptySelectionError, StorageError
from marginalia.services.matcher import AnchorMatcher
from marginalia.services.models import Anchor
from marginalia.services.storage import AnnotationStorage
from marginalia.services.text_tree import TextRange, TextTree

BLOCKS = [
    "Rivers shape the cities built beside them.",
    "The quick brown fox jumps over the lazy dog near the old mill.",
    "Nothing else worth noting in this closing paragraph.",
]


# ============================================================================
# TEST FAKES
# ============================================================================


class _CountingMatcher(AnchorMatcher):
    def __init__(self):
        super().__init__()
        self.restored = []

    def restore(self, container, anchor):
        self.restored.append(anchor.text)
        return super().restore(container, anchor)


class _FailingStorage(AnnotationStorage):
    def __init__(self, *args, fail_on=("save",), **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_on = set(fail_on)

    def save(self, annotation):
        if "save" in self.fail_on:
            raise StorageError("Failed to save annotation: disk I/O error")
        return super().save(annotation)

    def delete(self, annotation_id):
        if "delete" in self.fail_on:
            raise StorageError("Failed to delete annotation: disk I/O error")
        return super().delete(annotation_id)


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture()
def storage(tmp_path: Path) -> AnnotationStorage:
    return AnnotationStorage(db_path=tmp_path / "controller_test.db")


@pytest.fixture()
def statuses():
    return []


@pytest.fixture()
def controller(storage, statuses) -> AnnotationController:
    ctrl = AnnotationController(
        "doc-1",
        "essays/fox.md",
        storage,
        status_callback=lambda kind, message: statuses.append((kind, message)),
    )
    ctrl.load()
    return ctrl


@pytest.fixture()
def tree(controller) -> TextTree:
    tree = TextTree.from_blocks(BLOCKS)
    controller.content_rendered(tree)
    return tree


def _select(tree: TextTree, block: int, text: str) -> TextRange:
    leaf = list(tree.text_leaves())[block]
    start = leaf.text.index(text)
    return TextRange.within(leaf, start, start + len(text))


# ============================================================================
# CAPTURE AND SAVE
# ============================================================================


def test_save_passage_highlights_selection(controller, storage, tree):
    anchor = controller.begin_capture(_select(tree, 1, "brown fox"))
    assert controller.state is ControllerState.CAPTURING

    annotation = controller.on_save(anchor, "  Classic pangram  ", ["typing", " "])

    assert annotation is not None
    assert annotation.content == "Classic pangram"
    assert annotation.tags == ["typing"]
    assert storage.get(annotation.id) == annotation
    assert controller.state is ControllerState.IDLE
    region = tree.find_highlight(annotation.id)
    assert region is not None
    assert region.text_content() == "brown fox"
    assert controller.highlight_for(annotation.id).region is region
    assert tree.text_content() == "".join(BLOCKS)


def test_article_level_note_is_never_restored(storage):
    """Article-level notes are stored with no anchor and never passed to the matcher."""
    first = AnnotationController("doc-1", "essays/fox.md", storage)
    first.load()
    first.content_rendered(TextTree.from_blocks(BLOCKS))
    first.begin_article_note()
    saved = first.on_save(None, "Remember this", ["review"])

    stored = storage.get_by_document("doc-1")
    assert len(stored) == 1
    assert stored[0].anchor is None
    assert stored[0].id == saved.id

    matcher = _CountingMatcher()
    reopened = AnnotationController("doc-1", "essays/fox.md", storage, matcher=matcher)
    reopened.load()
    applied = reopened.content_rendered(TextTree.from_blocks(BLOCKS))

    assert applied == 0
    assert matcher.restored == []


def test_tags_only_note_is_accepted(controller):
    annotation = controller.on_save(None, "", ["todo"])

    assert annotation is not None
    assert annotation.content == ""


def test_note_without_content_or_tags_rejected(controller, storage):
    with pytest.raises(AnnotationValidationError) as excinfo:
        controller.on_save(None, "   ", ["", "  "])

    assert "need either text or tags" in str(excinfo.value)
    assert storage.count() == 0
    assert controller.state is ControllerState.IDLE


def test_blank_anchor_text_rejected(controller, storage):
    with pytest.raises(AnnotationValidationError):
        controller.on_save(Anchor(text="  ", context="  "), "content", [])

    assert storage.count() == 0


def test_empty_selection_returns_to_idle(controller, tree):
    leaf = list(tree.text_leaves())[0]

    with pytest.raises(EmptySelectionError):
        controller.begin_capture(TextRange.within(leaf, 3, 3))

    assert controller.state is ControllerState.IDLE


def test_cancel_discards_pending_capture(controller, storage, tree):
    controller.begin_capture(_select(tree, 0, "Rivers"))

    controller.on_cancel()

    assert controller.state is ControllerState.IDLE
    assert storage.count() == 0


def test_numeric_ids_continue_across_sessions(controller, storage):
    first = controller.on_save(None, "one", [])
    second = controller.on_save(None, "two", [])

    reopened = AnnotationController("doc-1", "essays/fox.md", storage)
    reopened.load()
    third = reopened.on_save(None, "three", [])

    assert [first.numeric_id, second.numeric_id, third.numeric_id] == [1, 2, 3]


# ============================================================================
# RESTORATION ORDERING
# ============================================================================


def _seed_passage(storage) -> str:
    tree = TextTree.from_blocks(BLOCKS)
    ctrl = AnnotationController("doc-1", "essays/fox.md", storage)
    ctrl.load()
    ctrl.content_rendered(tree)
    anchor = ctrl.begin_capture(_select(tree, 1, "lazy dog"))
    return ctrl.on_save(anchor, "Poor dog", []).id


def test_restore_waits_for_render(storage):
    annotation_id = _seed_passage(storage)
    ctrl = AnnotationController("doc-1", "essays/fox.md", storage)

    ctrl.load()
    assert ctrl.highlight_for(annotation_id) is None

    tree = TextTree.from_blocks(BLOCKS)
    assert ctrl.content_rendered(tree) == 1
    assert tree.find_highlight(annotation_id).text_content() == "lazy dog"


def test_restore_waits_for_load(storage):
    annotation_id = _seed_passage(storage)
    ctrl = AnnotationController("doc-1", "essays/fox.md", storage)
    tree = TextTree.from_blocks(BLOCKS)

    assert ctrl.content_rendered(tree) == 0
    assert tree.highlights() == []

    ctrl.load()
    assert tree.find_highlight(annotation_id) is not None


def test_rerender_restores_into_new_tree(storage):
    annotation_id = _seed_passage(storage)
    ctrl = AnnotationController("doc-1", "essays/fox.md", storage)
    ctrl.load()
    ctrl.content_rendered(TextTree.from_blocks(BLOCKS))

    fresh = TextTree.from_blocks(BLOCKS)
    ctrl.content_rendered(fresh)

    assert fresh.find_highlight(annotation_id) is not None
    assert ctrl.highlight_for(annotation_id).region.parent is not None


def test_unmatched_anchor_stays_unhighlighted(storage):
    annotation_id = _seed_passage(storage)
    ctrl = AnnotationController("doc-1", "essays/fox.md", storage)
    ctrl.load()

    applied = ctrl.content_rendered(TextTree.from_blocks(["The document was rewritten entirely."]))

    assert applied == 0
    assert ctrl.highlight_for(annotation_id) is None
    assert [a.id for a in ctrl.annotations] == [annotation_id]


# ============================================================================
# DELETE / EDIT / ACTIVATE
# ============================================================================


def test_delete_removes_everywhere(controller, storage, tree):
    anchor = controller.begin_capture(_select(tree, 1, "old mill"))
    annotation = controller.on_save(anchor, "Check the mill", [])

    assert controller.on_delete(annotation) is True

    assert storage.get_by_document("doc-1") == []
    assert controller.annotations == []
    assert tree.highlights() == []
    assert tree.text_content() == "".join(BLOCKS)

    matcher = _CountingMatcher()
    reopened = AnnotationController("doc-1", "essays/fox.md", storage, matcher=matcher)
    reopened.load()
    reopened.content_rendered(TextTree.from_blocks(BLOCKS))
    assert "old mill" not in matcher.restored


def test_edit_replaces_content_and_tags(controller, storage):
    annotation = controller.on_save(None, "draft", ["a"])

    updated = controller.on_edit(annotation, "final", ["b", " c "])

    assert updated.id == annotation.id
    assert updated.date_created == annotation.date_created
    assert storage.get(annotation.id).content == "final"
    assert storage.get(annotation.id).tags == ["b", "c"]
    assert controller.annotations == [updated]


def test_clicking_highlight_activates_annotation(storage):
    activated = []
    ctrl = AnnotationController("doc-1", "essays/fox.md", storage, on_activate=activated.append)
    ctrl.load()
    tree = TextTree.from_blocks(BLOCKS)
    ctrl.content_rendered(tree)
    anchor = ctrl.begin_capture(_select(tree, 0, "cities"))
    annotation = ctrl.on_save(anchor, "Urban", [])

    tree.find_highlight(annotation.id).activate()

    assert activated == [annotation]


def test_controller_suggests_tags(controller):
    controller.on_save(None, "", ["todo", "to-read"])

    assert controller.suggest("to", ["todo"]) == ["to-read"]


# ============================================================================
# STORE FAILURES
# ============================================================================


def test_failed_save_changes_nothing(tmp_path):
    statuses = []
    storage = _FailingStorage(db_path=tmp_path / "failing.db")
    ctrl = AnnotationController(
        "doc-1", "essays/fox.md", storage, status_callback=lambda kind, message: statuses.append((kind, message))
    )
    ctrl.load()
    tree = TextTree.from_blocks(BLOCKS)
    ctrl.content_rendered(tree)

    anchor = ctrl.begin_capture(_select(tree, 1, "quick"))
    result = ctrl.on_save(anchor, "will not persist", [])

    assert result is None
    assert ctrl.annotations == []
    assert tree.highlights() == []
    assert ctrl.state is ControllerState.IDLE
    assert statuses and statuses[-1][0] == "error"


def test_failed_delete_keeps_annotation(tmp_path):
    storage = _FailingStorage(db_path=tmp_path / "failing.db", fail_on=())
    ctrl = AnnotationController("doc-1", "essays/fox.md", storage)
    ctrl.load()
    tree = TextTree.from_blocks(BLOCKS)
    ctrl.content_rendered(tree)
    anchor = ctrl.begin_capture(_select(tree, 1, "quick"))
    annotation = ctrl.on_save(anchor, "keep me", [])

    storage.fail_on = {"delete"}

    assert ctrl.on_delete(annotation) is False
    assert ctrl.annotations == [annotation]
    assert tree.find_highlight(annotation.id) is not None
    assert storage.get(annotation.id) == annotation


def test_failed_load_reports_and_returns_empty(tmp_path):
    statuses = []
    storage = AnnotationStorage(db_path=tmp_path / "broken.db")
    with storage.engine.begin() as conn:
        conn.exec_driver_sql("DROP TABLE annotations")
    ctrl = AnnotationController(
        "doc-1", "essays/fox.md", storage, status_callback=lambda kind, message: statuses.append((kind, message))
    )

    assert ctrl.load() == []
    assert statuses[-1][0] == "error"


# ============================================================================
# WORKSPACE
# ============================================================================


def test_workspace_switches_documents(storage):
    storage_ctrl = AnnotationController("doc-1", "essays/fox.md", storage)
    storage_ctrl.load()
    storage_ctrl.on_save(None, "first doc note", [])

    workspace = AnnotationWorkspace(storage)
    first = workspace.open("doc-1", "essays/fox.md")
    assert len(first.annotations) == 1

    second = workspace.open("doc-2", "essays/other.md")

    assert workspace.current is second
    assert first.annotations == []
    assert second.annotations == []


# ============================================================================
# REGRESSIONS
# ============================================================================


def test_comma_separated_tags_are_split(controller, storage):
    annotation = controller.on_save(None, "note", "review, todo,,")

    assert annotation.tags == ["review", "todo"]
    assert storage.get(annotation.id).tags == ["review", "todo"]


def test_non_string_content_is_a_validation_error(controller, storage):
    with pytest.raises(AnnotationValidationError):
        controller.on_save(None, 5, ["a"])
    with pytest.raises(AnnotationValidationError):
        controller.on_save(None, "note", 7)

    assert storage.count() == 0
    assert controller.state is ControllerState.IDLE


def test_repeated_render_signal_does_not_nest_highlights(controller, tree):
    activated = []
    controller.on_activate = activated.append
    anchor = controller.begin_capture(_select(tree, 1, "brown fox"))
    annotation = controller.on_save(anchor, "Classic pangram", [])

    assert controller.content_rendered(tree) == 0
    assert controller.content_rendered(tree) == 0

    assert len(tree.highlights()) == 1
    assert tree.text_content() == "".join(BLOCKS)
    handle = controller.highlight_for(annotation.id)
    assert handle.region is tree.find_highlight(annotation.id)

    handle.region.activate()
    assert activated == [annotation]

    assert controller.on_delete(annotation) is True
    assert tree.highlights() == []


def test_shared_status_callback_reports_failure_once(tmp_path):
    statuses = []

    def report(kind, message):
        statuses.append((kind, message))

    storage = AnnotationStorage(db_path=tmp_path / "shared.db", status_callback=report)
    with storage.engine.begin() as conn:
        conn.exec_driver_sql("DROP TABLE annotations")
    ctrl = AnnotationController("doc-1", "essays/fox.md", storage, status_callback=report)

    assert ctrl.load() == []
    assert ctrl.on_save(None, "lost", []) is None

    errors = [message for kind, message in statuses if kind == "error"]
    assert len(errors) == 2
    assert errors[0].startswith("Failed to get document annotations")
    assert errors[1].startswith("Failed to save annotation")
