"""
SQLAlchemy-backed storage service for annotations.

Every public call runs in its own transaction and blocks until that
transaction commits or rolls back. Failures from the database layer are
re-raised as StorageError; nothing is retried here.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Generator, List, Optional

from sqlalchemy import desc, func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..database import (
    Annotation as AnnotationORM,
    Base,
    create_engine_for_url,
    get_engine,
    get_session_factory,
    make_session_factory,
)
from .errors import AnnotationNotFoundError, StorageError
from .models import Anchor, Annotation as AnnotationDTO, DiagnosticEntry

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str, str], None]
ChangeListener = Callable[[str, Optional[str]], None]


def _serialize_tags(tags: List[str]) -> Optional[str]:
    if not tags:
        return None
    return json.dumps(tags)


def _deserialize_tags(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, (bytes, bytearray)):
        value = value.decode()
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return []


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _coerce_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(value.replace(" ", "T"))
        except ValueError:
            return None
    return None


def _annotation_to_row(annotation: AnnotationDTO, row: Optional[AnnotationORM] = None) -> AnnotationORM:
    row = row if row is not None else AnnotationORM(id=annotation.id)
    row.numeric_id = annotation.numeric_id
    row.document_id = annotation.document_id
    row.document_path = annotation.document_path
    if annotation.anchor is None:
        row.anchor_text = None
        row.anchor_context = None
        row.anchor_text_position = None
    else:
        row.anchor_text = annotation.anchor.text
        row.anchor_context = annotation.anchor.context
        row.anchor_text_position = annotation.anchor.text_position
    row.content = annotation.content
    row.tags = _serialize_tags(annotation.tags)
    row.date_created = _serialize_datetime(annotation.date_created)
    return row


def _row_to_annotation(row: AnnotationORM) -> AnnotationDTO:
    date_created = _coerce_datetime(row.date_created)
    if date_created is None:
        logger.warning(
            "Annotation %s has unparsable date_created %r, using current time", row.id, row.date_created
        )
        date_created = datetime.now()

    anchor = None
    if row.anchor_text is not None:
        anchor = Anchor(
            text=row.anchor_text,
            context=row.anchor_context or "",
            text_position=row.anchor_text_position or 0,
        )
    return AnnotationDTO(
        id=row.id,
        numeric_id=row.numeric_id,
        document_id=row.document_id,
        document_path=row.document_path,
        anchor=anchor,
        content=row.content or "",
        tags=_deserialize_tags(row.tags),
        date_created=date_created,
    )


def _is_problematic(row: AnnotationORM) -> bool:
    return row.anchor_text is not None and not row.anchor_text.strip()


class AnnotationStorage:
    """
    Durable annotation store with lookups by id, document and path.

    Args:
        db_path: SQLite file to use (tests and local runs).
        database_url: Full SQLAlchemy URL; wins over db_path.
        timeout: Seconds a connection may wait on a locked database.
        status_callback: Optional ``(kind, message)`` hook for user-visible
            status lines after completed writes; kind is success or info.
            Failures are raised as StorageError and reported by the caller.
    """

    def __init__(
        self,
        db_path: Optional[Path] = None,
        database_url: Optional[str] = None,
        timeout: Optional[float] = None,
        status_callback: Optional[StatusCallback] = None,
    ):
        self.status_callback = status_callback
        self._listeners: List[ChangeListener] = []
        try:
            self.engine, self.session_factory = self._configure_engine(db_path, database_url, timeout)
            Base.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as e:
            logger.error("Failed to open annotation database: %s", e)
            raise StorageError(f"Failed to open database: {e}", original=e) from e
        self.dialect = self.engine.dialect.name

    def add_listener(self, listener: ChangeListener) -> None:
        """Register a callback fired after every committed write as ``(action, annotation_id)``."""
        self._listeners.append(listener)

    def save(self, annotation: AnnotationDTO) -> str:
        """Upsert by id. The whole record is replaced when the id exists."""
        with self._session_scope("save annotation") as session:
            existing = session.get(AnnotationORM, annotation.id)
            session.add(_annotation_to_row(annotation, existing))

        logger.info(
            "Saved annotation %s for document %s (%s)",
            annotation.id,
            annotation.document_id,
            "article" if annotation.anchor is None else "passage",
        )
        self._show_status("success", "Annotation saved successfully")
        self._notify("save", annotation.id)
        return annotation.id

    def get(self, annotation_id: str) -> AnnotationDTO:
        with self._session_scope("get annotation") as session:
            row = session.get(AnnotationORM, annotation_id)
            if row is None:
                raise AnnotationNotFoundError(annotation_id)
            return _row_to_annotation(row)

    def get_all(self) -> List[AnnotationDTO]:
        with self._session_scope("get annotations") as session:
            rows = (
                session.query(AnnotationORM)
                .order_by(AnnotationORM.date_created, AnnotationORM.id)
                .all()
            )
            return [_row_to_annotation(row) for row in rows]

    def get_by_document(self, document_id: Any) -> List[AnnotationDTO]:
        with self._session_scope("get document annotations") as session:
            rows = (
                session.query(AnnotationORM)
                .filter(AnnotationORM.document_id == str(document_id))
                .order_by(AnnotationORM.date_created, AnnotationORM.id)
                .all()
            )
            return [_row_to_annotation(row) for row in rows]

    def get_by_path(self, document_path: str) -> List[AnnotationDTO]:
        with self._session_scope("get document annotations") as session:
            rows = (
                session.query(AnnotationORM)
                .filter(AnnotationORM.document_path == document_path)
                .order_by(AnnotationORM.date_created, AnnotationORM.id)
                .all()
            )
            return [_row_to_annotation(row) for row in rows]

    def list_recent(self, limit: int = 10) -> List[AnnotationDTO]:
        """Newest annotations first, by creation time."""
        with self._session_scope("list annotations") as session:
            rows = (
                session.query(AnnotationORM)
                .order_by(desc(AnnotationORM.date_created))
                .limit(max(1, limit))
                .all()
            )
            return [_row_to_annotation(row) for row in rows]

    def count(self) -> int:
        with self._session_scope("count annotations") as session:
            return int(session.query(func.count(AnnotationORM.id)).scalar() or 0)

    def delete(self, annotation_id: str) -> None:
        """Remove an annotation. Deleting an unknown id is a no-op."""
        with self._session_scope("delete annotation") as session:
            removed = (
                session.query(AnnotationORM)
                .filter(AnnotationORM.id == annotation_id)
                .delete(synchronize_session=False)
            )

        if removed:
            logger.info("Deleted annotation %s", annotation_id)
        else:
            logger.debug("Delete of unknown annotation %s ignored", annotation_id)
        self._show_status("success", "Annotation deleted successfully")
        self._notify("delete", annotation_id)

    def clear(self) -> None:
        """Wipe every annotation."""
        with self._session_scope("clear annotations") as session:
            removed = session.query(AnnotationORM).delete(synchronize_session=False)

        logger.warning("Cleared annotation store (%d rows)", removed)
        self._show_status("success", "All annotations cleared successfully")
        self._notify("clear", None)

    def prune_problematic(self) -> int:
        """
        Delete text-level annotations whose anchor text is blank.

        Such rows can never be restored. Article-level annotations are kept.

        Returns:
            Number of annotations removed.
        """
        with self._session_scope("prune annotations") as session:
            rows = session.query(AnnotationORM).filter(AnnotationORM.anchor_text.isnot(None)).all()
            doomed = [row.id for row in rows if _is_problematic(row)]
            if doomed:
                session.query(AnnotationORM).filter(AnnotationORM.id.in_(doomed)).delete(
                    synchronize_session=False
                )

        if not doomed:
            self._show_status("info", "No problematic annotations found")
            return 0

        logger.warning("Pruned %d annotations with empty anchor text", len(doomed))
        self._show_status("success", f"Removed {len(doomed)} problematic annotations")
        for annotation_id in doomed:
            self._notify("delete", annotation_id)
        return len(doomed)

    def diagnostics(self) -> List[DiagnosticEntry]:
        """Describe every stored annotation, flagging missing anchor data."""
        entries = []
        for annotation in self.get_all():
            anchor = annotation.anchor
            entries.append(
                DiagnosticEntry(
                    id=annotation.id,
                    document_path=annotation.document_path,
                    date_created=annotation.date_created,
                    content=annotation.content,
                    tags=annotation.tags,
                    anchor_text=anchor.text if anchor else "",
                    anchor_context=anchor.context if anchor else "",
                    article_level=anchor is None,
                    missing_anchor_text=anchor is not None and not anchor.text.strip(),
                    missing_context=anchor is not None and not anchor.context.strip(),
                )
            )
        flagged = sum(1 for e in entries if e.missing_anchor_text or e.missing_context)
        logger.info("Diagnostics: %d annotations, %d flagged", len(entries), flagged)
        return entries

    def _show_status(self, kind: str, message: str) -> None:
        if self.status_callback:
            self.status_callback(kind, message)

    def _notify(self, action: str, annotation_id: Optional[str]) -> None:
        for listener in self._listeners:
            listener(action, annotation_id)

    def _configure_engine(
        self,
        db_path: Optional[Path],
        database_url: Optional[str],
        timeout: Optional[float],
    ) -> tuple[Engine, sessionmaker]:
        if database_url:
            engine = create_engine_for_url(database_url, timeout=timeout)
            return engine, make_session_factory(engine)

        if db_path:
            resolved = Path(db_path).resolve()
            engine = create_engine_for_url(f"sqlite:///{resolved}", timeout=timeout)
            return engine, make_session_factory(engine)

        return get_engine(), get_session_factory()

    @contextmanager
    def _session_scope(self, action: str) -> Generator[Session, None, None]:
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("Failed to %s: %s", action, e)
            raise StorageError(f"Failed to {action}: {e}", original=e) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
