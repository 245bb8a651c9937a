"""
Export helpers: flat per-tag records and a full JSON backup.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from .models import Annotation, AnnotationBackup, ExportRecord
from .search import has_tag
from .storage import AnnotationStorage

BACKUP_VERSION = 1


def to_export_record(annotation: Annotation) -> ExportRecord:
    return ExportRecord(
        id=annotation.id,
        content=annotation.content,
        tags=list(annotation.tags),
        document_path=annotation.document_path,
        date_created=annotation.date_created.isoformat(),
    )


def export_by_tag(storage: AnnotationStorage, tag: Optional[str] = None) -> List[ExportRecord]:
    """Flat records for every annotation carrying ``tag`` (all annotations when tag is empty)."""
    annotations = storage.get_all()
    if tag:
        annotations = [a for a in annotations if has_tag(a, tag)]
    return [to_export_record(a) for a in annotations]


def build_backup(storage: AnnotationStorage) -> AnnotationBackup:
    return AnnotationBackup(
        version=BACKUP_VERSION,
        timestamp=datetime.now(timezone.utc).isoformat(),
        annotations=storage.get_all(),
    )


def backup_filename(today: Optional[datetime] = None) -> str:
    today = today or datetime.now(timezone.utc)
    return f"annotations-backup-{today.date().isoformat()}.json"
