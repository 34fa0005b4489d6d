"""
Knowledge base storage for per-document chunk and metadata files.

Handles file storage, path safety, and atomic replacement of the per-document
storage units kept under the knowledge base root.
"""

import asyncio
import json
import os
import re
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger
from pydantic import ValidationError

from .errors import CorruptRecordError, PathContainmentError, StorageError
from .models import Chunk

STORE_DIRNAME = ".kb_store"
METADATA_FILENAME = "metadata.json"
CHUNKS_FILENAME = "chunks.json"


def is_within(path: Path, root: Path) -> bool:
    """Return True if `path` resolves to `root` or somewhere beneath it."""
    try:
        path.resolve().relative_to(root.resolve())
    except ValueError:
        return False
    return True


def atomic_write_json(path: Path, payload: Any) -> None:
    """
    Write JSON to `path` via a temp file in the same directory and rename it.

    Readers see either the old file or the new one, never a partial write.
    """
    content = json.dumps(payload, indent=2, ensure_ascii=False)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent)
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class DocumentStore:
    """
    Persists each document's metadata and chunk list as a storage unit.

    Directory structure:
        {root}/
            .kb_store/
                {doc_id}/
                    metadata.json   # DocumentRecord fields plus extraction info
                    chunks.json     # Ordered chunk list
    """

    def __init__(self, root: str | Path):
        """
        Initialize the document store.

        Args:
            root: Knowledge base root directory
        """
        self.root = Path(root).resolve()
        self.store_dir = self.root / STORE_DIRNAME

    def _sanitize_doc_id(self, doc_id: str) -> str:
        """
        Validate a document id before using it as a directory name.

        Args:
            doc_id: Document id

        Returns:
            The unchanged id

        Raises:
            PathContainmentError: If the id is empty or could escape the store
        """
        if not doc_id:
            raise PathContainmentError("doc_id cannot be empty")

        if re.search(r'[<>:"|?*\\/]', doc_id) or doc_id.strip(". ") != doc_id:
            raise PathContainmentError(
                f"Invalid doc_id: '{doc_id}'. Must not contain path separators or special characters."
            )

        return doc_id

    def unit_dir(self, doc_id: str) -> Path:
        """Get the storage directory for a document (not created)."""
        unit = self.store_dir / self._sanitize_doc_id(doc_id)
        if not is_within(unit, self.store_dir):
            raise PathContainmentError(f"Refusing to use path outside knowledge base: {unit}")
        return unit

    async def put(self, doc_id: str, metadata: Dict, chunks: List[Chunk]) -> None:
        """
        Store a document, fully replacing any previous unit with the same id.

        Both files are written to a staging directory which is then swapped in.

        Args:
            doc_id: Document id
            metadata: Metadata dictionary (JSON-serialisable)
            chunks: Chunk list

        Raises:
            StorageError: If the unit could not be written
        """
        target = self.unit_dir(doc_id)
        try:
            await asyncio.to_thread(self._write_unit, target, metadata, chunks)
        except OSError as e:
            logger.error(f"❌ Failed to store document '{doc_id}': {e}")
            raise StorageError(f"Failed to store document '{doc_id}': {e}") from e

        logger.debug(f"💾 Stored {len(chunks)} chunks for '{doc_id}'")

    def _write_unit(self, target: Path, metadata: Dict, chunks: List[Chunk]) -> None:
        self.store_dir.mkdir(parents=True, exist_ok=True)
        suffix = uuid.uuid4().hex[:8]
        staging = self.store_dir / f".{target.name}.staging-{suffix}"
        retired = self.store_dir / f".{target.name}.old-{suffix}"

        staging.mkdir()
        try:
            atomic_write_json(staging / CHUNKS_FILENAME, [c.to_json_dict() for c in chunks])
            atomic_write_json(staging / METADATA_FILENAME, metadata)

            if target.exists():
                os.replace(target, retired)
            os.replace(staging, target)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            if retired.exists() and not target.exists():
                os.replace(retired, target)
            raise

        if retired.exists():
            shutil.rmtree(retired, ignore_errors=True)

    async def get_chunks(self, doc_id: str) -> Optional[List[Chunk]]:
        """
        Load the chunk list of a document.

        Args:
            doc_id: Document id

        Returns:
            Chunks, or None if no chunk file exists

        Raises:
            CorruptRecordError: If the chunk file is not a valid chunk list
        """
        chunks_path = self.unit_dir(doc_id) / CHUNKS_FILENAME
        raw = await self._read_json(chunks_path)
        if raw is None:
            return None

        if not isinstance(raw, list):
            raise CorruptRecordError(f"{chunks_path} must contain a JSON array")
        try:
            return [Chunk.model_validate(item) for item in raw]
        except ValidationError as e:
            raise CorruptRecordError(f"Malformed chunk in {chunks_path}: {e}") from e

    async def get_metadata(self, doc_id: str) -> Optional[Dict]:
        """
        Load the metadata of a document.

        Args:
            doc_id: Document id

        Returns:
            Metadata dictionary, or None if not found
        """
        metadata_path = self.unit_dir(doc_id) / METADATA_FILENAME
        raw = await self._read_json(metadata_path)
        if raw is not None and not isinstance(raw, dict):
            raise CorruptRecordError(f"{metadata_path} must contain a JSON object")
        return raw

    async def delete(self, doc_id: str) -> bool:
        """
        Delete a document's storage unit.

        Args:
            doc_id: Document id

        Returns:
            True if a unit was deleted, False if none existed

        Raises:
            PathContainmentError: If the id resolves outside the store
            StorageError: If the unit exists but could not be removed
        """
        target = self.unit_dir(doc_id)
        if not target.exists():
            return False

        try:
            await asyncio.to_thread(shutil.rmtree, target)
        except OSError as e:
            raise StorageError(f"Failed to delete storage for '{doc_id}': {e}") from e

        logger.info(f"🗑️ Deleted storage unit for '{doc_id}'")
        return True

    async def exists(self, doc_id: str) -> bool:
        """Return True if the document has a persisted chunk file."""
        return (self.unit_dir(doc_id) / CHUNKS_FILENAME).is_file()

    def storage_size(self) -> int:
        """Total size in bytes of all persisted storage units."""
        if not self.store_dir.exists():
            return 0
        return sum(p.stat().st_size for p in self.store_dir.rglob("*") if p.is_file())

    async def _read_json(self, path: Path) -> Any:
        if not path.is_file():
            return None
        try:
            content = await asyncio.to_thread(path.read_text, encoding="utf-8")
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise CorruptRecordError(f"Invalid JSON in {path}: {e}") from e
