"""Typed records persisted and exchanged by the knowledge base."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class DocumentType(str, Enum):
    """Source document families recognised by the knowledge base."""

    PDF = "pdf"
    WORD = "word"
    EXCEL = "excel"
    PRESENTATION = "presentation"
    TEXT = "text"

    @classmethod
    def from_path(cls, path: str | Path) -> Optional["DocumentType"]:
        """
        Classify a file by its extension.

        Args:
            path: File name or path

        Returns:
            The document type, or None if the extension is not a source format
        """
        return _EXTENSION_TYPES.get(Path(path).suffix.lower())


_EXTENSION_TYPES = {
    ".pdf": DocumentType.PDF,
    ".docx": DocumentType.WORD,
    ".doc": DocumentType.WORD,
    ".xlsx": DocumentType.EXCEL,
    ".xls": DocumentType.EXCEL,
    ".pptx": DocumentType.PRESENTATION,
    ".ppt": DocumentType.PRESENTATION,
    ".txt": DocumentType.TEXT,
    ".md": DocumentType.TEXT,
    ".markdown": DocumentType.TEXT,
}

SOURCE_EXTENSIONS = frozenset(_EXTENSION_TYPES)


class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class Chunk(_Record):
    """A bounded span of document text stored as an independent unit."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    text: str
    source: str
    page_or_slide: Optional[int] = Field(None, alias="pageOrSlide")
    sequence_number: int = Field(..., alias="sequenceNumber", ge=0)
    important: bool = False
    start: Optional[int] = Field(None, ge=0)


class TextSegment(BaseModel):
    """One page (or slide) of already-extracted text."""

    text: str
    page: Optional[int] = None


class DocumentRecord(_Record):
    """Manifest entry describing one ingested or discovered document."""

    id: str = Field(..., min_length=1)
    title: str
    source_path: str = Field(
        ...,
        alias="sourcePath",
        validation_alias=AliasChoices("sourcePath", "source_path", "path"),
    )
    type: DocumentType
    chunk_count: int = Field(0, alias="chunkCount", ge=0)
    added_at: datetime = Field(default_factory=datetime.now, alias="addedAt")


class RetrievalHit(_Record):
    """A scored chunk returned by the retriever."""

    chunk: Chunk
    score: float
    document_id: str = Field(..., alias="documentId")
    document_title: str = Field("", alias="documentTitle")


class RemovalResult(BaseModel):
    """
    Outcome of removing a document.

    `removed` tracks the manifest entry only. Problems deleting the physical
    source file or storage unit are reported in `warnings`.
    """

    removed: bool
    warnings: list[str] = Field(default_factory=list)

    def __bool__(self) -> bool:
        return self.removed
