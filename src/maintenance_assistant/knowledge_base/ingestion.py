"""
Document ingestion pipeline for the knowledge base.

Handles source text reading, chunking, and persisting of maintenance documents.
"""

import asyncio
import re
import time
import uuid
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence, Union

from loguru import logger
from pydantic import BaseModel, Field, field_validator

from .errors import CorruptRecordError, ExtractionError, UnsupportedFormatError
from .models import Chunk, DocumentRecord, DocumentType, TextSegment

DEFAULT_CHUNK_SIZE = 500
DEFAULT_CHUNK_OVERLAP = 150
DEFAULT_IMPORTANT_PAD = 50

Extractor = Callable[[Path], list[TextSegment]]


def _normalize_text(text: str) -> str:
    """Normalize extracted text to improve chunking.

    Args:
        text: Raw extracted text.

    Returns:
        Normalized text.
    """

    text = text.replace("\r\n", "\n").replace("\r", "\n")
    # Collapse excessive whitespace while keeping paragraph-ish separation.
    text = re.sub(r"[ \t\f\v]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def new_document_id() -> str:
    """Generate a fresh document id (`doc_<epoch millis>_<8 hex>`)."""
    return f"doc_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


class ImportantSpanRule(BaseModel):
    """
    A pattern whose matches are extracted as standalone important chunks.

    Each match is widened by `pad` characters on both sides (clamped to the
    text bounds) so the chunk keeps some surrounding context.
    """

    pattern: str
    pad: int = Field(DEFAULT_IMPORTANT_PAD, ge=0)

    @field_validator("pattern")
    @classmethod
    def _check_pattern(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"Invalid important-span pattern '{value}': {e}") from e
        return value

    def compiled(self) -> re.Pattern:
        return re.compile(self.pattern)


class TextChunker:
    """
    Splits document text into overlapping fixed-size windows.

    Spans matching the configured important rules are emitted first as
    their own chunks; the sequential windows follow. The two passes are not
    deduplicated against each other.
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
        important_rules: Sequence[ImportantSpanRule] = (),
    ):
        """
        Initialize the text chunker.

        Args:
            chunk_size: Size of each sequential window in characters
            chunk_overlap: Number of characters shared by consecutive windows
            important_rules: Patterns extracted as standalone important chunks

        Raises:
            ValueError: If the size/overlap combination would never advance
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        if chunk_overlap < 0:
            raise ValueError("chunk_overlap must be >= 0")
        if chunk_overlap >= chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")

        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.important_rules = list(important_rules)
        self._compiled = [(rule.compiled(), rule.pad) for rule in self.important_rules]

    def chunk_text(
        self, text: str, source: str, page: Optional[int] = None
    ) -> list[Chunk]:
        """
        Chunk a single block of text.

        Args:
            text: Extracted text
            source: Source label stored on every chunk
            page: Optional page or slide number

        Returns:
            Important chunks followed by sequential chunks
        """
        return self.chunk_segments([TextSegment(text=text, page=page)], source)

    def chunk_segments(
        self, segments: Sequence[TextSegment], source: str
    ) -> list[Chunk]:
        """
        Chunk a document made of one or more pages.

        Important chunks for every page come before any sequential chunk, and
        sequence numbers run across the whole document.

        Args:
            segments: Ordered pages of extracted text
            source: Source label stored on every chunk

        Returns:
            Ordered list of chunks for the document
        """
        chunks: list[Chunk] = []

        for segment in segments:
            for text, start in self._important_spans(segment.text):
                chunks.append(
                    Chunk(
                        text=text,
                        source=source,
                        page_or_slide=segment.page,
                        sequence_number=len(chunks),
                        important=True,
                        start=start,
                    )
                )

        for segment in segments:
            for text, start in self._windows(segment.text):
                chunks.append(
                    Chunk(
                        text=text,
                        source=source,
                        page_or_slide=segment.page,
                        sequence_number=len(chunks),
                        important=False,
                        start=start,
                    )
                )

        return chunks

    def _important_spans(self, text: str) -> list[tuple[str, int]]:
        spans = []
        for pattern, pad in self._compiled:
            for match in pattern.finditer(text):
                if match.end() == match.start():
                    continue
                start = max(0, match.start() - pad)
                end = min(len(text), match.end() + pad)
                spans.append((text[start:end].strip(), start))
                logger.debug(
                    f"⭐ Important span extracted at {match.start()}: {match.group(0)[:60]}"
                )
        return spans

    def _windows(self, text: str) -> list[tuple[str, int]]:
        windows = []
        step = self.chunk_size - self.chunk_overlap
        start = 0
        text_length = len(text)

        while start < text_length:
            end = min(text_length, start + self.chunk_size)
            window = text[start:end].strip()
            if window:
                windows.append((window, start))
            if end >= text_length:
                break
            start += step

        return windows


class DocumentProcessor:
    """
    Reads source text for documents whose text was not supplied by the caller.

    Plain text and PDF are handled here; other formats need an extractor
    registered with `register_extractor`.
    """

    def __init__(self, extractors: Optional[dict[DocumentType, Extractor]] = None):
        self._extractors: dict[DocumentType, Extractor] = {
            DocumentType.TEXT: self._read_text,
            DocumentType.PDF: self._read_pdf,
        }
        if extractors:
            self._extractors.update(extractors)

    def register_extractor(self, doc_type: DocumentType, extractor: Extractor) -> None:
        """Install an extractor for a document type, replacing any existing one."""
        self._extractors[doc_type] = extractor

    async def extract(self, file_path: Path) -> list[TextSegment]:
        """
        Extract the text of a source file as page segments.

        Args:
            file_path: Path to the source file

        Returns:
            Ordered list of non-empty segments

        Raises:
            UnsupportedFormatError: If no extractor handles the extension
            ExtractionError: If the file is unreadable or contains no text
        """
        doc_type = DocumentType.from_path(file_path)
        extractor = self._extractors.get(doc_type) if doc_type else None
        if extractor is None:
            raise UnsupportedFormatError(
                f"Unsupported file format: {file_path.suffix or '(none)'}"
            )

        if not file_path.is_file():
            raise ExtractionError(f"Source file not found: {file_path}")

        try:
            segments = await asyncio.to_thread(extractor, file_path)
        except ExtractionError:
            raise
        except (OSError, UnicodeDecodeError) as e:
            raise ExtractionError(f"Failed to read '{file_path.name}': {e}") from e

        segments = [s for s in segments if s.text.strip()]
        if not segments:
            raise ExtractionError(f"Document contains no text content: {file_path.name}")
        return segments

    @staticmethod
    def _read_text(file_path: Path) -> list[TextSegment]:
        return [TextSegment(text=file_path.read_text(encoding="utf-8"))]

    @staticmethod
    def _read_pdf(file_path: Path) -> list[TextSegment]:
        try:
            from pypdf import PdfReader  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ExtractionError(
                "PDF ingestion requires the 'pypdf' package. "
                "Install it with `pip install pypdf`."
            ) from e

        try:
            reader = PdfReader(str(file_path))
            return [
                TextSegment(text=_normalize_text(page.extract_text() or ""), page=number)
                for number, page in enumerate(reader.pages, start=1)
            ]
        except Exception as e:
            raise ExtractionError(f"PDF text extraction failed for '{file_path.name}': {e}") from e


SourceText = Union[str, Sequence[TextSegment]]


class IngestionPipeline:
    """
    Coordinates document ingestion: chunking, storage, and manifest update.

    The manifest is only touched after the storage unit has been written, so a
    failed write never leaves a registered document without chunks.
    """

    def __init__(self, store, manifest, chunker: TextChunker, processor: DocumentProcessor):
        """
        Initialize the ingestion pipeline.

        Args:
            store: DocumentStore instance
            manifest: IndexManifest instance
            chunker: Chunker used for every document
            processor: Reader for source files when no text is supplied
        """
        self.store = store
        self.manifest = manifest
        self.chunker = chunker
        self.processor = processor
        # Serialises writes of one document's storage unit
        self._doc_locks: Dict[str, asyncio.Lock] = {}

    def _doc_lock(self, doc_id: str) -> asyncio.Lock:
        return self._doc_locks.setdefault(doc_id, asyncio.Lock())

    async def ingest_document(
        self,
        file_path: Union[str, Path],
        text: Optional[SourceText] = None,
        *,
        title: Optional[str] = None,
        doc_id: Optional[str] = None,
    ) -> DocumentRecord:
        """
        Ingest a single document and register it in the manifest.

        Args:
            file_path: Path of the source document
            text: Already-extracted text (string or page segments); read from
                `file_path` when omitted
            title: Display title (defaults to the file name)
            doc_id: Existing id to re-ingest; when omitted the id of a manifest
                entry with the same source path is reused, else a new one is made

        Returns:
            The manifest record for the document

        Raises:
            ExtractionError: If the text is missing, unreadable, or empty
            StorageError: If the chunks could not be persisted
        """
        path = Path(file_path).resolve()
        doc_type = DocumentType.from_path(path)
        if doc_type is None:
            raise UnsupportedFormatError(f"Unsupported file format: {path.suffix or '(none)'}")

        segments = await self._resolve_segments(path, text)

        if doc_id is None:
            doc_id = await self.manifest.assign_id(path)

        chunks = self.chunker.chunk_segments(segments, source=path.name)
        record = DocumentRecord(
            id=doc_id,
            title=title or path.name,
            source_path=str(path),
            type=doc_type,
            chunk_count=len(chunks),
        )

        metadata = record.to_json_dict()
        metadata["pageCount"] = sum(1 for s in segments if s.page is not None) or None
        metadata["characterCount"] = sum(len(s.text) for s in segments)

        async with self._doc_lock(doc_id):
            await self.store.put(doc_id, metadata, chunks)
            await self.manifest.upsert(record)

        logger.success(
            f"✅ Ingested '{record.title}' as '{doc_id}' ({len(chunks)} chunks)"
        )
        return record

    async def rechunk(self, record: DocumentRecord, *, force: bool = False) -> list[Chunk]:
        """
        Re-read a document's source, chunk it, and persist the result.

        Used when a manifest entry has no (valid) persisted chunks. Callers
        racing on the same document are serialised; unless `force` is set,
        a caller that finds valid chunks once it holds the lock returns those
        instead of chunking again.

        Args:
            record: Manifest entry to rebuild
            force: Re-chunk even if valid chunks are already stored

        Returns:
            The persisted chunks
        """
        async with self._doc_lock(record.id):
            if not force:
                try:
                    stored = await self.store.get_chunks(record.id)
                except CorruptRecordError:
                    stored = None
                if stored is not None:
                    return stored

            path = Path(record.source_path)
            segments = await self.processor.extract(path)
            chunks = self.chunker.chunk_segments(segments, source=path.name)

            metadata = record.model_copy(update={"chunk_count": len(chunks)}).to_json_dict()
            await self.store.put(record.id, metadata, chunks)
            await self.manifest.update_chunk_count(record.id, len(chunks))

        logger.info(f"♻️ Re-chunked '{record.title}' ({len(chunks)} chunks)")
        return chunks

    async def rebuild_index(self) -> int:
        """
        Re-chunk every document in the manifest from its source.

        Returns:
            Number of documents rebuilt successfully
        """
        logger.info("🔄 Rebuilding knowledge base index...")

        rebuilt = 0
        for record in await self.manifest.load():
            try:
                await self.rechunk(record, force=True)
                rebuilt += 1
            except Exception as e:
                logger.error(f"Failed to re-index '{record.id}': {e}")
                continue

        logger.success(f"✅ Index rebuild complete ({rebuilt} documents)")
        return rebuilt

    async def _resolve_segments(
        self, path: Path, text: Optional[SourceText]
    ) -> list[TextSegment]:
        if text is None:
            return await self.processor.extract(path)

        if isinstance(text, str):
            segments = [TextSegment(text=text)]
        else:
            segments = list(text)

        if not any(s.text.strip() for s in segments):
            raise ExtractionError(f"Document contains no text content: {path.name}")
        return segments
