"""
Main knowledge base manager interface.

Coordinates storage, manifest, ingestion, retrieval, and prompt assembly.
"""

import asyncio
import hashlib
import os
import re
from collections import Counter
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from loguru import logger

from .errors import PathContainmentError, StorageError
from .ingestion import (
    DEFAULT_CHUNK_OVERLAP,
    DEFAULT_CHUNK_SIZE,
    DocumentProcessor,
    ImportantSpanRule,
    IngestionPipeline,
    SourceText,
    TextChunker,
)
from .manifest import DEFAULT_MANIFEST_FILENAME, IndexManifest
from .models import Chunk, DocumentRecord, DocumentType, RemovalResult, RetrievalHit
from .prompt import PromptAssembler
from .retriever import DEFAULT_TOP_K, KeywordRetriever, KeywordScorer, ScoringWeights
from .storage_manager import DocumentStore, is_within


class KnowledgeBaseManager:
    """
    High-level manager for the maintenance knowledge base.

    Provides a unified interface for ingestion, retrieval, and management operations.
    """

    def __init__(
        self,
        root: Union[str, Path] = "knowledge-base",
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
        important_rules: Sequence[ImportantSpanRule] = (),
        top_k: int = DEFAULT_TOP_K,
        max_context_chars: Optional[int] = None,
        scoring: Optional[ScoringWeights] = None,
        manifest_filename: str = DEFAULT_MANIFEST_FILENAME,
        processor: Optional[DocumentProcessor] = None,
        assembler: Optional[PromptAssembler] = None,
    ):
        """
        Initialize the knowledge base manager.

        Args:
            root: Knowledge base root directory
            chunk_size: Sequential window size in characters
            chunk_overlap: Overlap between consecutive windows
            important_rules: Patterns extracted as standalone important chunks
            top_k: Maximum number of chunks returned per query
            max_context_chars: Optional character budget for retrieved text
            scoring: Keyword scoring weights
            manifest_filename: Manifest file name inside `root`
            processor: Source reader for documents ingested without text
            assembler: Prompt assembler for context rendering
        """
        self.root = Path(root).resolve()
        self.max_context_chars = max_context_chars

        self.store = DocumentStore(self.root)
        self.manifest = IndexManifest(self.root, self.store, manifest_filename)
        self.ingestion = IngestionPipeline(
            store=self.store,
            manifest=self.manifest,
            chunker=TextChunker(chunk_size, chunk_overlap, important_rules),
            processor=processor or DocumentProcessor(),
        )
        self.retriever = KeywordRetriever(
            manifest=self.manifest,
            store=self.store,
            rechunk=self.ingestion.rechunk,
            scorer=KeywordScorer(scoring),
            top_k=top_k,
        )
        self.assembler = assembler or PromptAssembler()

        logger.info(f"🧠 Knowledge Base Manager initialized at: {self.root}")

    @classmethod
    def from_config(cls, kb_config, prompt_config=None, **kwargs) -> "KnowledgeBaseManager":
        """
        Build a manager from `KnowledgeBaseConfig` (and optionally `PromptConfig`).

        Args:
            kb_config: Knowledge base configuration
            prompt_config: Prompt templates
            **kwargs: Extra constructor arguments (e.g. `processor`)
        """
        if prompt_config is not None and "assembler" not in kwargs:
            kwargs["assembler"] = PromptAssembler(
                base_prompt=prompt_config.base_prompt,
                context_header=prompt_config.context_header,
                context_footer=prompt_config.context_footer,
                no_context_notice=prompt_config.no_context_notice,
            )

        return cls(
            kb_config.root_dir,
            chunk_size=kb_config.chunk_size,
            chunk_overlap=kb_config.chunk_overlap,
            important_rules=kb_config.important_rules,
            top_k=kb_config.top_k,
            max_context_chars=kb_config.max_context_chars,
            scoring=kb_config.scoring,
            manifest_filename=kb_config.manifest_filename,
            **kwargs,
        )

    async def initialize(self) -> None:
        """Create the root directory and an empty manifest if missing."""
        await self.manifest.initialize()

    async def upload_document(
        self, filename: str, content: bytes, subdir: Optional[str] = None
    ) -> DocumentRecord:
        """
        Save uploaded bytes under the knowledge base root and ingest them.

        Args:
            filename: Original filename
            content: File content as bytes
            subdir: Optional topic directory (one level) to store the file in

        Returns:
            Manifest record of the ingested document
        """
        await self.initialize()

        target_dir = self.root
        if subdir:
            target_dir = self.root / self._sanitize_filename(subdir)
        file_path = target_dir / self._sanitize_filename(filename)
        if not is_within(file_path, self.root):
            raise PathContainmentError(f"Refusing to write outside knowledge base: {file_path}")
        if DocumentType.from_path(file_path) is None:
            raise ValueError(f"Unsupported file format: {file_path.suffix or '(none)'}")

        try:
            await asyncio.to_thread(target_dir.mkdir, parents=True, exist_ok=True)
            await asyncio.to_thread(file_path.write_bytes, content)
        except OSError as e:
            raise StorageError(f"Failed to save upload '{filename}': {e}") from e

        logger.info(
            f"💾 Saved upload '{filename}' -> '{file_path.name}' "
            f"(sha256 {hashlib.sha256(content).hexdigest()[:16]})"
        )

        title = f"{target_dir.name}/{file_path.name}" if subdir else file_path.name
        return await self.ingest_document(file_path, title=title)

    @staticmethod
    def _sanitize_filename(filename: str) -> str:
        # Remove path components, keep only basename
        filename = os.path.basename(filename)
        sanitized = re.sub(r'[<>:"|?*\\/ ]', "_", filename).lstrip(".")
        return sanitized or "unnamed_file"

    async def ingest_document(
        self,
        file_path: Union[str, Path],
        text: Optional[SourceText] = None,
        *,
        title: Optional[str] = None,
        doc_id: Optional[str] = None,
    ) -> DocumentRecord:
        """
        Ingest a document into the knowledge base.

        Args:
            file_path: Path of the source document
            text: Already-extracted text or page segments; read from disk if omitted
            title: Optional display title
            doc_id: Optional id of the document being re-ingested

        Returns:
            Manifest record of the document
        """
        await self.initialize()
        return await self.ingestion.ingest_document(
            file_path, text, title=title, doc_id=doc_id
        )

    async def search(self, query: str) -> List[Chunk]:
        """Return the top-ranked chunks for `query`."""
        return [hit.chunk for hit in await self.retrieve(query)]

    async def retrieve(self, query: str) -> List[RetrievalHit]:
        """
        Retrieve scored knowledge chunks for a query.

        Args:
            query: Search query

        Returns:
            Hits in rank order
        """
        logger.info(f"🔍 KB Manager: Searching for query='{query[:100]}'")
        hits = await self.retriever.search_hits(query, max_chars=self.max_context_chars)

        logger.info(f"✅ KB Manager: Retrieved {len(hits)} results")
        for i, hit in enumerate(hits[:3]):  # Log first 3 results
            logger.debug(
                f"  Result {i + 1}: {hit.document_title} ({hit.score:g}) - {hit.chunk.text[:100]}"
            )
        return hits

    def build_context(self, chunks: Sequence[Chunk]) -> str:
        """Render chunks (or the not-found notice) for the generation request."""
        return self.assembler.build_context(chunks)

    async def build_system_prompt(self, query: str) -> str:
        """Search for `query` and return base instructions plus context."""
        chunks = await self.search(query)
        return self.assembler.build_system_prompt(chunks)

    async def list_documents(self) -> List[DocumentRecord]:
        """
        List all documents, registering untracked source files first.

        Returns:
            Manifest records
        """
        await self.initialize()
        return await self.manifest.reconcile()

    async def delete_document(self, doc_id: str) -> RemovalResult:
        """
        Delete a document from the knowledge base.

        Args:
            doc_id: Document id to delete

        Returns:
            RemovalResult (truthy if the manifest entry was removed)
        """
        result = await self.manifest.remove(doc_id)
        if result:
            logger.info(f"🗑️ Deleted document '{doc_id}' from KB")
        return result

    async def rebuild_index(self) -> int:
        """Re-chunk every document from its source."""
        return await self.ingestion.rebuild_index()

    async def get_stats(self) -> Dict:
        """
        Get statistics about the knowledge base.

        Returns:
            Statistics dictionary
        """
        documents = await self.manifest.load()
        by_type = Counter(doc.type.value for doc in documents)

        return {
            "total_documents": len(documents),
            "total_chunks": sum(doc.chunk_count for doc in documents),
            "by_type": dict(by_type),
            "storage_size_bytes": await asyncio.to_thread(self.store.storage_size),
        }
