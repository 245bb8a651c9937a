"""
REST API routes for the annotation service.

Organized into logical groups:
- Documents: annotations of one document, creation, restoration
- Annotations: lookup, edit, delete
- Tags: listing, autocomplete, lookup by tag
- Search / Export: term search, flat export, backup
- Maintenance: diagnostics, pruning, clearing

Storage failures are reported as 503 and never retried here.
"""

from flask import Blueprint, jsonify, request
from pydantic import ValidationError

from .config import Config
from .services.anchors import CONTEXT_WINDOW
from .services.container import get_services
from .services.errors import (
    AnnotationNotFoundError,
    AnnotationValidationError,
    StorageError,
)
from .services.export import backup_filename, build_backup, export_by_tag
from .services.models import Anchor, RestoredSpan
from .services.tags import SUGGESTION_LIMIT
from .services.text_tree import TextTree

bp = Blueprint("api", __name__)


def _json_error(message: str, status: int = 400):
    return jsonify({"error": message}), status


class _StatusLog:
    """Collects controller status messages for the response."""

    def __init__(self):
        self.errors = []

    def __call__(self, kind: str, message: str) -> None:
        if kind == "error":
            self.errors.append(message)


# ============================================================================
# DOCUMENT ENDPOINTS
# ============================================================================


@bp.get("/documents/<document_id>/annotations")
def list_document_annotations(document_id: str):
    """
    List all annotations of a document.

    Returns:
        JSON: {"document_id": str, "annotations": [...]}
    """
    svc = get_services()

    try:
        annotations = svc.storage.get_by_document(document_id)
    except StorageError as e:
        return _json_error(str(e), 503)

    return jsonify(
        {
            "document_id": document_id,
            "annotations": [a.model_dump(mode="json") for a in annotations],
        }
    )


@bp.post("/documents/<document_id>/annotations")
def create_annotation(document_id: str):
    """
    Create an annotation on a document.

    Body:
        JSON: {
            "document_path": str,
            "anchor": {"text", "context", "text_position"} | null,
            "content": str (may be empty when tags are given),
            "tags": list
        }

    Returns:
        JSON: Annotation object (201)
    """
    svc = get_services()
    data = request.get_json(silent=True)

    if not data:
        return _json_error("No data provided")

    document_path = data.get("document_path")
    if not document_path:
        return _json_error("document_path is required")

    try:
        anchor = Anchor.model_validate(data["anchor"]) if data.get("anchor") else None
    except ValidationError as e:
        return _json_error(f"Invalid anchor: {e.errors()[0].get('msg', 'invalid')}")

    status = _StatusLog()
    controller = svc.controller_for(document_id, document_path, status_callback=status)

    try:
        controller.load()
        annotation = controller.on_save(anchor, data.get("content", ""), data.get("tags") or [])
    except AnnotationValidationError as e:
        return _json_error(str(e))

    if annotation is None:
        return _json_error("; ".join(status.errors) or "Failed to save annotation", 503)

    return jsonify(annotation.model_dump(mode="json")), 201


@bp.post("/documents/<document_id>/restore")
def restore_document_annotations(document_id: str):
    """
    Locate every passage annotation of a document inside freshly rendered blocks.

    Body:
        JSON: {"blocks": [str, ...]} (rendered text, one entry per block)

    Returns:
        JSON: {"spans": [{"annotation_id", "block", "start", "end"}], "found": int}
    """
    svc = get_services()
    data = request.get_json(silent=True) or {}
    blocks = data.get("blocks")

    if not isinstance(blocks, list) or not all(isinstance(b, str) for b in blocks):
        return _json_error("blocks must be a list of strings")

    try:
        annotations = svc.storage.get_by_document(document_id)
    except StorageError as e:
        return _json_error(str(e), 503)

    tree = TextTree.from_blocks(blocks)
    block_elements = tree.blocks()
    spans = []
    for annotation in annotations:
        if annotation.anchor is None:
            continue
        target = svc.matcher.restore(tree, annotation.anchor)
        if target is None:
            spans.append(RestoredSpan(annotation_id=annotation.id))
            continue
        block = next(i for i, el in enumerate(block_elements) if el is target.node.parent)
        spans.append(
            RestoredSpan(annotation_id=annotation.id, block=block, start=target.start, end=target.end)
        )

    return jsonify(
        {
            "document_id": document_id,
            "spans": [s.model_dump() for s in spans],
            "found": sum(1 for s in spans if s.found),
        }
    )


# ============================================================================
# ANNOTATION ENDPOINTS
# ============================================================================


@bp.get("/annotations")
def list_annotations():
    """
    List annotations, optionally for one document path.

    Query params:
        - path: Filter by document path (optional)
    """
    svc = get_services()
    path = request.args.get("path")

    try:
        annotations = svc.storage.get_by_path(path) if path else svc.storage.get_all()
    except StorageError as e:
        return _json_error(str(e), 503)

    return jsonify(
        {
            "annotations": [a.model_dump(mode="json") for a in annotations],
            "total": len(annotations),
        }
    )


@bp.get("/annotations/<annotation_id>")
def get_annotation(annotation_id: str):
    """
    Get a specific annotation by ID.

    Returns:
        JSON: Annotation object or 404 error
    """
    svc = get_services()

    try:
        annotation = svc.storage.get(annotation_id)
    except AnnotationNotFoundError as e:
        return _json_error(str(e), 404)
    except StorageError as e:
        return _json_error(str(e), 503)

    return jsonify(annotation.model_dump(mode="json"))


@bp.put("/annotations/<annotation_id>")
def update_annotation(annotation_id: str):
    """
    Replace the content and tags of an annotation.

    Body:
        JSON: {"content": str, "tags": list}
    """
    svc = get_services()
    data = request.get_json(silent=True)

    if not data:
        return _json_error("No data provided")

    try:
        annotation = svc.storage.get(annotation_id)
    except AnnotationNotFoundError as e:
        return _json_error(str(e), 404)
    except StorageError as e:
        return _json_error(str(e), 503)

    status = _StatusLog()
    controller = svc.controller_for(annotation.document_id, annotation.document_path, status_callback=status)

    try:
        updated = controller.on_edit(
            annotation,
            data.get("content", annotation.content),
            data.get("tags", annotation.tags) or [],
        )
    except AnnotationValidationError as e:
        return _json_error(str(e))

    if updated is None:
        return _json_error("; ".join(status.errors) or "Failed to update annotation", 503)

    return jsonify(updated.model_dump(mode="json"))


@bp.delete("/annotations/<annotation_id>")
def delete_annotation(annotation_id: str):
    """
    Delete an annotation by ID. Unknown IDs succeed too.

    Returns:
        JSON: {"success": bool, "message": str}
    """
    svc = get_services()

    try:
        svc.storage.delete(annotation_id)
    except StorageError as e:
        return _json_error(str(e), 503)

    return jsonify({"success": True, "message": f"Annotation {annotation_id} deleted"})


# ============================================================================
# TAG ENDPOINTS
# ============================================================================


@bp.get("/tags")
def get_tags():
    """
    Get all distinct tags (every stored spelling).

    Returns:
        JSON: {"tags": [...]}
    """
    svc = get_services()

    try:
        tags = svc.tags.all_tags()
    except StorageError as e:
        return _json_error(str(e), 503)

    return jsonify({"tags": tags})


@bp.get("/tags/suggest")
def suggest_tags():
    """
    Autocomplete for the tag input.

    Query params:
        - q: partial tag being typed
        - entered: comma-separated tags already in the input (optional)
    """
    svc = get_services()
    partial = request.args.get("q", "")
    entered = [t for t in request.args.get("entered", "").split(",") if t.strip()]

    try:
        suggestions = svc.tags.suggest(partial, entered)
    except StorageError as e:
        return _json_error(str(e), 503)

    return jsonify({"query": partial, "suggestions": suggestions})


@bp.get("/tags/<tag>/annotations")
def get_annotations_by_tag(tag: str):
    """
    Get all annotations carrying a tag (case-insensitive).

    Returns:
        JSON: {"tag": str, "annotations": [...]}
    """
    svc = get_services()

    try:
        annotations = svc.search.search_by_tag(tag)
    except StorageError as e:
        return _json_error(str(e), 503)

    return jsonify({"tag": tag, "annotations": [a.model_dump(mode="json") for a in annotations]})


# ============================================================================
# SEARCH / EXPORT ENDPOINTS
# ============================================================================


@bp.get("/search")
def search_annotations():
    """
    Term search across annotation content and highlighted text.

    Query params:
        - q: Search query (required)

    Returns:
        JSON: {"results": [...], "query": str}
    """
    svc = get_services()
    query = request.args.get("q")

    if not query:
        return _json_error("Query parameter 'q' is required")

    try:
        results = svc.search.search_by_content(query)
    except StorageError as e:
        return _json_error(str(e), 503)

    return jsonify({"query": query, "results": [a.model_dump(mode="json") for a in results]})


@bp.get("/export")
def export_annotations():
    """
    Flat export records, optionally filtered by tag.

    Query params:
        - tag: only annotations carrying this tag (optional)
    """
    svc = get_services()
    tag = request.args.get("tag")

    try:
        records = export_by_tag(svc.storage, tag)
    except StorageError as e:
        return _json_error(str(e), 503)

    return jsonify({"tag": tag, "records": [r.model_dump() for r in records]})


@bp.get("/backup")
def backup_annotations():
    """Full JSON backup of the store, served as a download."""
    svc = get_services()

    try:
        backup = build_backup(svc.storage)
    except StorageError as e:
        return _json_error(str(e), 503)

    response = jsonify(backup.model_dump(mode="json"))
    response.headers["Content-Disposition"] = f'attachment; filename="{backup_filename()}"'
    return response


# ============================================================================
# MAINTENANCE ENDPOINTS
# ============================================================================


@bp.get("/maintenance/diagnostics")
def diagnostics():
    svc = get_services()

    try:
        entries = svc.storage.diagnostics()
    except StorageError as e:
        return _json_error(str(e), 503)

    return jsonify(
        {
            "total": len(entries),
            "flagged": sum(1 for e in entries if e.missing_anchor_text or e.missing_context),
            "annotations": [e.model_dump(mode="json") for e in entries],
        }
    )


@bp.post("/maintenance/prune")
def prune_annotations():
    """Delete passage annotations whose anchor text is blank."""
    svc = get_services()

    try:
        removed = svc.storage.prune_problematic()
    except StorageError as e:
        return _json_error(str(e), 503)

    return jsonify({"removed": removed})


@bp.post("/maintenance/clear")
def clear_annotations():
    """Delete every annotation. Requires {"confirm": true}."""
    svc = get_services()
    data = request.get_json(silent=True) or {}

    if data.get("confirm") is not True:
        return _json_error("Clearing requires {\"confirm\": true}")

    try:
        svc.storage.clear()
    except StorageError as e:
        return _json_error(str(e), 503)

    return jsonify({"success": True})


# ============================================================================
# UTILITY ENDPOINTS
# ============================================================================


@bp.get("/health")
def health():
    """Health check endpoint."""
    return jsonify({"status": "ok"})


@bp.get("/settings")
def client_settings():
    """Presentation hints for the reader UI."""
    return jsonify(
        {
            "status_display_seconds": Config.STATUS_DISPLAY_SECONDS,
            "context_window": CONTEXT_WINDOW,
            "suggestion_limit": SUGGESTION_LIMIT,
        }
    )
