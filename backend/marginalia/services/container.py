"""
Dependency injection container for annotation services.

We store a single Services instance on the Flask app (app.extensions["services"]).
Routes can then fetch dependencies via get_services() which makes route tests able
to inject fakes without importing/initializing global singletons.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from flask import current_app

from .controller import ActivateCallback, AnnotationController
from .matcher import AnchorMatcher
from .search import SearchEngine
from .storage import AnnotationStorage, StatusCallback
from .tags import TagIndex


@dataclass(frozen=True)
class Services:
    storage: AnnotationStorage
    tags: TagIndex
    search: SearchEngine
    matcher: AnchorMatcher

    def controller_for(
        self,
        document_id: Any,
        document_path: str,
        status_callback: Optional[StatusCallback] = None,
        on_activate: Optional[ActivateCallback] = None,
    ) -> AnnotationController:
        return AnnotationController(
            document_id,
            document_path,
            self.storage,
            matcher=self.matcher,
            tag_index=self.tags,
            status_callback=status_callback,
            on_activate=on_activate,
        )


def build_services(storage: AnnotationStorage) -> Services:
    return Services(
        storage=storage,
        tags=TagIndex(storage),
        search=SearchEngine(storage),
        matcher=AnchorMatcher(),
    )


def create_services(*, database_url: Optional[str] = None, db_path: Optional[Path] = None) -> Services:
    """
    Build the production Services container.

    Args:
        database_url: Optional override for database URL (useful for tests).
        db_path: Optional SQLite file, used when no URL is given.
    """
    return build_services(AnnotationStorage(db_path=db_path, database_url=database_url))


def get_services() -> Services:
    """
    Fetch the Services container from the current Flask app.

    Raises:
        RuntimeError if services have not been attached to the app.
    """
    services = current_app.extensions.get("services")
    if services is None:
        raise RuntimeError('Services not configured. Expected app.extensions["services"].')
    return services
