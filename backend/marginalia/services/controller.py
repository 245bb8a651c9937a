"""
Annotation controller for one open document.

Orchestrates capture, validation, persistence, highlighting and removal.
A controller is built when a document is opened and thrown away when the
reader switches to another one; AnnotationWorkspace does that switching.

Store failures are caught here and reported through the status callback.
Capture and validation failures are raised to the caller, which is the
form that triggered them.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError

from .anchors import capture
from .errors import AnnotationValidationError, CaptureError, StorageError
from .matcher import AnchorMatcher, HighlightHandle, HighlightTarget
from .models import Anchor, Annotation, AnnotationDraft
from .storage import AnnotationStorage, StatusCallback
from .tags import TagIndex
from .text_tree import Element, Highlight, TextRange, root_of

logger = logging.getLogger(__name__)

ActivateCallback = Callable[[Annotation], None]


class ControllerState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    SAVING = "saving"
    RESTORING = "restoring"
    DELETING = "deleting"


def _validation_message(error: ValidationError) -> str:
    messages = []
    for item in error.errors():
        msg = item.get("msg", "")
        messages.append(msg.removeprefix("Value error, "))
    return "; ".join(messages) or "Invalid annotation"


class AnnotationController:
    """
    Live annotation set for a single document.

    Restoration only runs once both the stored annotations are loaded and
    the renderer has called ``content_rendered``, whichever comes last.
    """

    def __init__(
        self,
        document_id: Any,
        document_path: str,
        storage: AnnotationStorage,
        matcher: Optional[AnchorMatcher] = None,
        tag_index: Optional[TagIndex] = None,
        status_callback: Optional[StatusCallback] = None,
        on_activate: Optional[ActivateCallback] = None,
    ):
        self.document_id = str(document_id)
        self.document_path = document_path
        self.storage = storage
        self.matcher = matcher or AnchorMatcher()
        self.tag_index = tag_index or TagIndex(storage)
        self.status_callback = status_callback
        self.on_activate = on_activate

        self.state = ControllerState.IDLE
        self._annotations: List[Annotation] = []
        self._handles: Dict[str, HighlightHandle] = {}
        self._container: Optional[Element] = None
        self._loaded = False
        self._next_numeric_id = 1
        self._pending_anchor: Optional[Anchor] = None
        self._pending_selection: Optional[TextRange] = None

    @property
    def annotations(self) -> List[Annotation]:
        return list(self._annotations)

    @property
    def container(self) -> Optional[Element]:
        return self._container

    def highlight_for(self, annotation_id: str) -> Optional[HighlightHandle]:
        return self._handles.get(annotation_id)

    # ------------------------------------------------------------------
    # Loading and restoration
    # ------------------------------------------------------------------

    def load(self) -> List[Annotation]:
        """Fetch this document's annotations; restores highlights if already rendered."""
        try:
            annotations = self.storage.get_by_document(self.document_id)
        except StorageError as e:
            self._report("error", str(e))
            return []

        self._annotations = annotations
        self._loaded = True
        numeric_ids = [a.numeric_id for a in annotations if a.numeric_id is not None]
        self._next_numeric_id = max(numeric_ids, default=0) + 1
        logger.info("Loaded %d annotations for %s", len(annotations), self.document_path)

        if self._container is not None:
            self._restore_all()
        return self.annotations

    def content_rendered(self, container: Element) -> int:
        """
        Renderer signal: ``container`` now holds the fully rendered document.

        Returns:
            Number of highlights applied (0 if annotations are not loaded yet).
        """
        self._container = container
        # Highlights already in the container are adopted instead of applied twice.
        self._handles = {
            region.annotation_id: HighlightHandle(region.annotation_id, region)
            for region in container.iter_elements()
            if isinstance(region, Highlight)
        }
        for annotation_id, handle in self._handles.items():
            handle.region.on_activate = self._activator(annotation_id)
        if not self._loaded:
            return 0
        return self._restore_all()

    def _restore_all(self) -> int:
        self.state = ControllerState.RESTORING
        applied = 0
        try:
            for annotation in self._annotations:
                if annotation.anchor is None:
                    continue
                handle = self._handles.get(annotation.id)
                if handle is not None and handle.attached:
                    continue
                if self._apply_highlight(annotation):
                    applied += 1
        finally:
            self.state = ControllerState.IDLE

        anchored = sum(1 for a in self._annotations if a.anchor is not None)
        logger.info("Restored %d of %d passage highlights in %s", applied, anchored, self.document_path)
        return applied

    def _apply_highlight(self, annotation: Annotation, target: Optional[HighlightTarget] = None) -> bool:
        if self._container is None or annotation.anchor is None:
            return False
        if target is None:
            target = self.matcher.restore(self._container, annotation.anchor)
        if target is None:
            return False

        self._handles[annotation.id] = self.matcher.highlight(
            target, annotation.id, on_activate=self._activator(annotation.id)
        )
        return True

    def _activator(self, annotation_id: str) -> Callable[[], None]:
        return lambda: self.activate(annotation_id)

    def activate(self, annotation_id: str) -> None:
        """A highlight was clicked: hand the annotation to the details view."""
        for annotation in self._annotations:
            if annotation.id == annotation_id:
                if self.on_activate is not None:
                    self.on_activate(annotation)
                return

    # ------------------------------------------------------------------
    # Capture flow: begin_capture -> on_save | on_cancel
    # ------------------------------------------------------------------

    def begin_capture(self, selection: Optional[TextRange]) -> Optional[Anchor]:
        """
        Start a new annotation. ``None`` means an article-level note.

        Raises:
            CaptureError: the selection is empty.
        """
        self.state = ControllerState.CAPTURING
        try:
            anchor = capture(selection) if selection is not None else None
        except CaptureError:
            self.state = ControllerState.IDLE
            raise
        self._pending_anchor = anchor
        self._pending_selection = selection
        return anchor

    def begin_article_note(self) -> None:
        self.begin_capture(None)

    def on_save(self, anchor: Optional[Anchor], text: str, tags: Iterable[str] = ()) -> Optional[Annotation]:
        """
        Validate and persist a new annotation, then highlight it.

        Returns:
            The stored annotation, or None if the store rejected the write
            (the failure is reported through the status callback).

        Raises:
            AnnotationValidationError: neither content nor tags, or blank anchor text.
        """
        draft = self._validate(anchor, text, tags)
        annotation = Annotation(
            numeric_id=self._next_numeric_id,
            document_id=self.document_id,
            document_path=self.document_path,
            anchor=draft.anchor,
            content=draft.content,
            tags=draft.tags,
        )

        selection = self._pending_selection if anchor is not None and anchor is self._pending_anchor else None
        if not self._persist(annotation):
            return None

        self._next_numeric_id += 1
        self._annotations.append(annotation)
        if annotation.anchor is not None:
            self._apply_highlight(annotation, self._target_from_selection(selection))
        logger.info("Created %s annotation %s", "article" if annotation.is_article_level else "passage", annotation.id)
        return annotation

    def on_cancel(self) -> None:
        self._pending_anchor = None
        self._pending_selection = None
        self.state = ControllerState.IDLE

    def on_edit(self, annotation: Annotation, text: str, tags: Iterable[str] = ()) -> Optional[Annotation]:
        """Replace content and tags wholesale; anchor, id and creation time are kept."""
        draft = self._validate(annotation.anchor, text, tags)
        updated = annotation.model_copy(update={"content": draft.content, "tags": draft.tags})
        if not self._persist(updated):
            return None

        self._annotations = [updated if a.id == updated.id else a for a in self._annotations]
        return updated

    def _validate(self, anchor: Optional[Anchor], text: str, tags: Iterable[str]) -> AnnotationDraft:
        try:
            return AnnotationDraft(anchor=anchor, content=text, tags=tags)
        except ValidationError as e:
            self.state = ControllerState.IDLE
            message = _validation_message(e)
            logger.warning("Rejected annotation for %s: %s", self.document_path, message)
            raise AnnotationValidationError(message) from e

    def _persist(self, annotation: Annotation) -> bool:
        self.state = ControllerState.SAVING
        try:
            self.storage.save(annotation)
            return True
        except StorageError as e:
            self._report("error", str(e))
            return False
        finally:
            self._pending_anchor = None
            self._pending_selection = None
            self.state = ControllerState.IDLE

    def _target_from_selection(self, selection: Optional[TextRange]) -> Optional[HighlightTarget]:
        # The live selection pins the exact occurrence; only usable inside one leaf.
        if selection is None or selection.start_node is not selection.end_node:
            return None
        if root_of(selection.start_node) is not self._container:
            return None
        return HighlightTarget(selection.start_node, selection.start_offset, selection.end_offset)

    # ------------------------------------------------------------------
    # Details flow: on_delete | on_close
    # ------------------------------------------------------------------

    def on_delete(self, annotation: Annotation) -> bool:
        """
        Delete from the store, then drop it from memory and the page.

        Returns:
            False if the store failed; nothing local is changed in that case.
        """
        self.state = ControllerState.DELETING
        try:
            self.storage.delete(annotation.id)
        except StorageError as e:
            self._report("error", str(e))
            return False
        finally:
            self.state = ControllerState.IDLE

        self._annotations = [a for a in self._annotations if a.id != annotation.id]
        handle = self._handles.pop(annotation.id, None)
        if handle is not None:
            self.matcher.unhighlight(handle)
        return True

    def on_close(self) -> None:
        self.state = ControllerState.IDLE

    # ------------------------------------------------------------------
    # Tag input
    # ------------------------------------------------------------------

    def suggest(self, partial: str, already_entered: Iterable[str] = ()) -> List[str]:
        try:
            return self.tag_index.suggest(partial, already_entered)
        except StorageError as e:
            self.tag_index.invalidate()
            self._report("error", str(e))
            return []

    def close(self) -> None:
        """Discard the live set; the store is untouched."""
        self._annotations = []
        self._handles.clear()
        self._container = None
        self._loaded = False
        self.on_cancel()

    def _report(self, kind: str, message: str) -> None:
        if kind == "error":
            logger.error(message)
        else:
            logger.info(message)
        if self.status_callback:
            self.status_callback(kind, message)


class AnnotationWorkspace:
    """
    Holds the single live document.

    Opening a document closes the previous controller and builds a fresh
    one, so no annotation state leaks between documents.
    """

    def __init__(
        self,
        storage: AnnotationStorage,
        matcher: Optional[AnchorMatcher] = None,
        tag_index: Optional[TagIndex] = None,
        status_callback: Optional[StatusCallback] = None,
        on_activate: Optional[ActivateCallback] = None,
    ):
        self.storage = storage
        self.matcher = matcher or AnchorMatcher()
        self.tag_index = tag_index or TagIndex(storage)
        self.status_callback = status_callback
        self.on_activate = on_activate
        self.current: Optional[AnnotationController] = None

    def open(self, document_id: Any, document_path: str) -> AnnotationController:
        if self.current is not None:
            self.current.close()
        self.current = AnnotationController(
            document_id,
            document_path,
            self.storage,
            matcher=self.matcher,
            tag_index=self.tag_index,
            status_callback=self.status_callback,
            on_activate=self.on_activate,
        )
        self.current.load()
        return self.current
