"""
Index manifest: the durable catalog of every document in the knowledge base.

The manifest is a single JSON file (`{"documents": [...]}`) that is safe to
inspect and hand-edit between runs. All read-modify-write cycles go through
one `asyncio.Lock` so concurrent ingestions and removals in the same process
cannot lose each other's updates.
"""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger
from pydantic import ValidationError

from .errors import KnowledgeBaseError, StorageError
from .ingestion import new_document_id
from .models import SOURCE_EXTENSIONS, DocumentRecord, DocumentType, RemovalResult
from .storage_manager import DocumentStore, atomic_write_json, is_within

DEFAULT_MANIFEST_FILENAME = "index.json"


class IndexManifest:
    """Repository object owning the manifest file and its mutex."""

    def __init__(
        self,
        root: str | Path,
        store: DocumentStore,
        manifest_filename: str = DEFAULT_MANIFEST_FILENAME,
    ):
        """
        Initialize the manifest.

        Args:
            root: Knowledge base root directory
            store: Document store whose units are removed alongside entries
            manifest_filename: Name of the manifest file inside `root`
        """
        self.root = Path(root).resolve()
        self.store = store
        self.path = self.root / manifest_filename
        self._lock = asyncio.Lock()
        # Ids handed out by `assign_id` but not yet written to the manifest
        self._reserved: Dict[Path, str] = {}

    async def initialize(self) -> None:
        """Create the root directory and an empty manifest if missing."""
        if not self.root.exists():
            await asyncio.to_thread(self.root.mkdir, parents=True, exist_ok=True)
            logger.info(f"📚 Created knowledge base directory at: {self.root}")

        if not self.path.exists():
            async with self._lock:
                await self._save_unlocked([])
            logger.info(f"📝 Created knowledge base index at: {self.path}")

    async def load(self) -> List[DocumentRecord]:
        """
        Load all manifest records.

        A missing or malformed manifest is treated as empty; malformed entries
        are skipped. Both cases are logged as warnings.

        Returns:
            Records in file order
        """
        if not self.path.exists():
            return []

        try:
            content = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
            data = json.loads(content)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"⚠️ Manifest {self.path} is unreadable, treating as empty: {e}")
            return []

        if not isinstance(data, dict) or not isinstance(data.get("documents"), list):
            logger.warning(
                f"⚠️ Manifest {self.path} has no 'documents' list, treating as empty"
            )
            return []

        records: List[DocumentRecord] = []
        seen: set[str] = set()
        for entry in data["documents"]:
            try:
                record = DocumentRecord.model_validate(entry)
            except ValidationError as e:
                logger.warning(f"⚠️ Skipping malformed manifest entry {entry!r}: {e}")
                continue
            if record.id in seen:
                logger.warning(f"⚠️ Skipping duplicate manifest entry '{record.id}'")
                continue
            seen.add(record.id)
            records.append(record)

        return records

    async def save(self, records: List[DocumentRecord]) -> None:
        """
        Replace the manifest with `records`.

        Raises:
            StorageError: If the manifest could not be written
        """
        async with self._lock:
            await self._save_unlocked(records)

    async def _save_unlocked(self, records: List[DocumentRecord]) -> None:
        payload = {"documents": [r.to_json_dict() for r in records]}
        try:
            await asyncio.to_thread(self.root.mkdir, parents=True, exist_ok=True)
            await asyncio.to_thread(atomic_write_json, self.path, payload)
        except OSError as e:
            logger.error(f"❌ Failed to save manifest {self.path}: {e}")
            raise StorageError(f"Failed to save manifest: {e}") from e
        logger.debug(f"📝 Saved manifest ({len(records)} documents)")

    async def get(self, doc_id: str) -> Optional[DocumentRecord]:
        """Return the record with `doc_id`, or None."""
        return next((r for r in await self.load() if r.id == doc_id), None)

    async def assign_id(self, source_path: str | Path) -> str:
        """
        Return the document id for a source path.

        The id of an existing entry with the same resolved path is reused.
        Otherwise a new id is reserved for the path until `upsert` registers
        it, so concurrent ingestions of one file agree on a single id.
        """
        target = Path(source_path).resolve()
        async with self._lock:
            for record in await self.load():
                if Path(record.source_path).resolve() == target:
                    return record.id
            return self._reserved.setdefault(target, new_document_id())

    async def upsert(self, record: DocumentRecord) -> None:
        """Insert `record`, or replace the entry with the same id in place."""
        async with self._lock:
            self._reserved.pop(Path(record.source_path).resolve(), None)
            records = await self.load()
            for i, existing in enumerate(records):
                if existing.id == record.id:
                    records[i] = record
                    break
            else:
                records.append(record)
            await self._save_unlocked(records)

    async def update_chunk_count(self, doc_id: str, chunk_count: int) -> bool:
        """
        Set the chunk count of an entry.

        Returns:
            True if the entry exists
        """
        async with self._lock:
            records = await self.load()
            for i, record in enumerate(records):
                if record.id != doc_id:
                    continue
                if record.chunk_count != chunk_count:
                    records[i] = record.model_copy(update={"chunk_count": chunk_count})
                    await self._save_unlocked(records)
                return True
        return False

    async def reconcile(self) -> List[DocumentRecord]:
        """
        Register source files present under the root but absent from the manifest.

        Scans the root and one level of sub-directories (titles of nested files
        are prefixed with the directory name). Hidden entries and the manifest
        itself are skipped. New entries are not chunked here; that happens on
        first query.

        Returns:
            All records after reconciliation
        """
        candidates = await asyncio.to_thread(self._scan_sources)

        async with self._lock:
            records = await self.load()
            known = {Path(r.source_path).resolve() for r in records}
            added = 0

            for path, title in candidates:
                if path in known:
                    continue
                records.append(
                    DocumentRecord(
                        id=self._reserved.pop(path, None) or new_document_id(),
                        title=title,
                        source_path=str(path),
                        type=DocumentType.from_path(path),
                        chunk_count=0,
                    )
                )
                known.add(path)
                added += 1
                logger.info(f"🔎 Discovered untracked source '{title}'")

            if added:
                await self._save_unlocked(records)

        return records

    def _scan_sources(self) -> List[tuple[Path, str]]:
        found: List[tuple[Path, str]] = []
        if not self.root.is_dir():
            return found

        for entry in sorted(self.root.iterdir()):
            if entry.name.startswith(".") or entry == self.path:
                continue
            if entry.is_file() and entry.suffix.lower() in SOURCE_EXTENSIONS:
                found.append((entry.resolve(), entry.name))
            elif entry.is_dir():
                for child in sorted(entry.iterdir()):
                    if child.name.startswith("."):
                        continue
                    if child.is_file() and child.suffix.lower() in SOURCE_EXTENSIONS:
                        found.append((child.resolve(), f"{entry.name}/{child.name}"))

        return found

    async def remove(self, doc_id: str) -> RemovalResult:
        """
        Remove a document from the manifest and delete its files.

        The manifest entry is removed first. Deleting the source file (only when
        it lies under the root) and the storage unit is best effort: failures
        are logged and returned as warnings without affecting `removed`.

        Args:
            doc_id: Document id

        Returns:
            RemovalResult; `removed` is False when the id is unknown

        Raises:
            StorageError: If the manifest could not be rewritten
        """
        async with self._lock:
            records = await self.load()
            target = next((r for r in records if r.id == doc_id), None)
            if target is None:
                return RemovalResult(removed=False)

            records.remove(target)
            await self._save_unlocked(records)

        result = RemovalResult(removed=True)

        source = Path(target.source_path)
        if not is_within(source, self.root):
            logger.info(f"Source of '{doc_id}' lies outside the knowledge base, left in place")
        elif source.exists():
            try:
                await asyncio.to_thread(os.remove, source)
            except OSError as e:
                message = f"Failed to delete source file {source}: {e}"
                logger.warning(f"⚠️ {message}")
                result.warnings.append(message)

        try:
            await self.store.delete(doc_id)
        except (OSError, KnowledgeBaseError) as e:
            message = f"Failed to delete storage for '{doc_id}': {e}"
            logger.warning(f"⚠️ {message}")
            result.warnings.append(message)

        logger.info(f"🗑️ Removed document '{doc_id}' from the manifest")
        return result
