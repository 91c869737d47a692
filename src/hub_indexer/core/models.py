"""Data models for hubs and their sources.

Every model is treated as an immutable value: status changes build a copy
with ``model_copy(update=...)`` and the source tree writes it back whole.
"""

from __future__ import annotations

import uuid
from enum import StrEnum
from pathlib import PurePath
from typing import Literal

from pydantic import BaseModel, Field

from .exceptions import FailureKind


class HubStatus(StrEnum):
    DRAFT = "draft"
    COMPOSING = "composing"
    READY = "ready"
    ERROR = "error"


class SourceStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


# Item status implied by a hub-wide status change
HUB_TO_SOURCE_STATUS: dict[HubStatus, SourceStatus] = {
    HubStatus.DRAFT: SourceStatus.PENDING,
    HubStatus.COMPOSING: SourceStatus.PROCESSING,
    HubStatus.READY: SourceStatus.READY,
    HubStatus.ERROR: SourceStatus.ERROR,
}


def new_id() -> str:
    return str(uuid.uuid4())


def file_type_from_name(name: str) -> str:
    """Extension tag of a file name ("paper.PDF" -> "pdf", "Makefile" -> "")."""
    return PurePath(name).suffix.lstrip(".").lower()


class FileSource(BaseModel):
    """A single file linked into a hub (directly or through a folder)."""

    type: Literal["file"] = "file"
    id: str = Field(default_factory=new_id)
    name: str
    path: str
    file_type: str = ""
    status: SourceStatus = SourceStatus.PENDING
    error_message: str | None = None

    @classmethod
    def from_path(cls, path: str, name: str | None = None, **kwargs) -> FileSource:
        name = name or PurePath(path).name
        return cls(name=name, path=path, file_type=file_type_from_name(name), **kwargs)


class FolderSource(BaseModel):
    """A folder whose file descendants are tracked as a flat item list."""

    type: Literal["folder"] = "folder"
    id: str = Field(default_factory=new_id)
    path: str
    status: SourceStatus = SourceStatus.PENDING
    error_message: str | None = None
    items: list[FileSource] = Field(default_factory=list)


class NoteSource(BaseModel):
    """Free-text note entered directly into a hub."""

    type: Literal["note"] = "note"
    id: str = Field(default_factory=new_id)
    title: str | None = None
    content: str = ""
    status: SourceStatus = SourceStatus.PENDING
    error_message: str | None = None

    @property
    def text(self) -> str:
        """Text that gets embedded for this note."""
        if self.title:
            return f"{self.title}\n\n{self.content}"
        return self.content


class Hub(BaseModel):
    """A named collection of files, folders and notes indexed together."""

    id: str = Field(default_factory=new_id)
    name: str
    status: HubStatus = HubStatus.DRAFT
    files: list[FileSource] = Field(default_factory=list)
    folders: list[FolderSource] = Field(default_factory=list)
    notes: list[NoteSource] = Field(default_factory=list)
    bookmarked: bool = False

    def item_counts(self) -> dict[str, int]:
        return {
            "files": len(self.files),
            "folders": len(self.folders),
            "folder_items": sum(len(f.items) for f in self.folders),
            "notes": len(self.notes),
        }


class FolderEntry(BaseModel):
    """One entry of a recursive folder listing returned by the store."""

    name: str
    path: str
    kind: Literal["file", "folder"]


class NoteRef(BaseModel):
    """A note of the corpus that still needs an embedding."""

    id: str
    path: str
    title: str = ""


class NotesIndexPlan(BaseModel):
    """Partition of the notes corpus into indexed / needs-indexing."""

    needs_indexing: list[NoteRef] = Field(default_factory=list)
    already_indexed: list[str] = Field(default_factory=list)
    total: int = 0


class ItemOutcome(BaseModel):
    """Result of running the per-item pipeline once."""

    item_id: str
    success: bool
    failure: FailureKind | None = None
    message: str | None = None

    @classmethod
    def ok(cls, item_id: str) -> ItemOutcome:
        return cls(item_id=item_id, success=True)

    @classmethod
    def failed(
        cls, item_id: str, failure: FailureKind, message: str | None = None
    ) -> ItemOutcome:
        return cls(item_id=item_id, success=False, failure=failure, message=message)
