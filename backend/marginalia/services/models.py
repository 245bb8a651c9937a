"""
Data models for annotations.

Uses Pydantic for validation and serialization.
"""

import secrets
import time
from datetime import datetime
from typing import Any, Iterable, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

_ID_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def generate_annotation_id() -> str:
    """
    Build a process-wide unique annotation ID.

    Derived from the wall clock plus a random suffix so it can be minted
    before the store is reachable.
    """
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"annotation-{int(time.time() * 1000)}-{suffix}"


class Anchor(BaseModel):
    """Serializable descriptor of an annotated passage"""
    text: str = Field(..., description="Exact selected text")
    context: str = Field("", description="Selected text plus up to 30 chars on each side")
    text_position: int = Field(0, description="Offset of text within context")


class AnnotationDraft(BaseModel):
    """User submission from the capture form, validated before it is stored"""
    anchor: Optional[Anchor] = None
    content: str = ""
    tags: List[str] = Field(default_factory=list)

    @field_validator("content", mode="before")
    @classmethod
    def _strip_content(cls, value: Any) -> str:
        if value is None:
            return ""
        if not isinstance(value, str):
            raise ValueError("Annotation text must be a string")
        return value.strip()

    @field_validator("tags", mode="before")
    @classmethod
    def _clean_tags(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        elif not isinstance(value, Iterable):
            raise ValueError("Tags must be a list or a comma-separated string")
        return [str(tag).strip() for tag in value if str(tag).strip()]

    @model_validator(mode="after")
    def _check_policy(self) -> "AnnotationDraft":
        if self.anchor is not None and not self.anchor.text.strip():
            raise ValueError("Cannot create text annotation: empty anchor text")
        if not self.content and not self.tags:
            raise ValueError("Cannot create annotation: need either text or tags")
        return self


class Annotation(BaseModel):
    """A note attached to a whole document (anchor is None) or to a passage"""
    id: str = Field(default_factory=generate_annotation_id)
    numeric_id: Optional[int] = Field(None, description="Legacy per-session ordering aid")
    document_id: str
    document_path: str
    anchor: Optional[Anchor] = None
    content: str = ""
    tags: List[str] = Field(default_factory=list)
    date_created: datetime = Field(default_factory=datetime.now)

    @field_validator("document_id", mode="before")
    @classmethod
    def _coerce_document_id(cls, value: Any) -> str:
        # Importers hand out integer file ids; keys are stored as strings.
        return str(value) if isinstance(value, int) else value

    @property
    def is_article_level(self) -> bool:
        return self.anchor is None


class ExportRecord(BaseModel):
    """Flat annotation row for downstream packaging"""
    id: str
    content: str
    tags: List[str]
    document_path: str
    date_created: str


class AnnotationBackup(BaseModel):
    """Full dump of the annotation store"""
    version: int = 1
    timestamp: str
    annotations: List[Annotation] = Field(default_factory=list)


class DiagnosticEntry(BaseModel):
    """One annotation in a store diagnostic report"""
    id: str
    document_path: str
    date_created: datetime
    content: str
    tags: List[str]
    anchor_text: str = ""
    anchor_context: str = ""
    article_level: bool
    missing_anchor_text: bool
    missing_context: bool


class RestoredSpan(BaseModel):
    """Where an anchored annotation landed in a set of rendered blocks"""
    annotation_id: str
    block: Optional[int] = Field(None, description="Index of the matching block, None when not found")
    start: Optional[int] = None
    end: Optional[int] = None

    @property
    def found(self) -> bool:
        return self.block is not None
