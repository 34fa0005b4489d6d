"""Unit tests for knowledge base source reading.

These tests validate offline text extraction for supported KB document formats.

They are intentionally small and self-contained (no server required).
"""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
import sys


PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))


class TestKnowledgeBaseIngestionFormats(unittest.IsolatedAsyncioTestCase):
    """Tests for `DocumentProcessor.extract` format support."""

    async def test_extract_plain_text(self) -> None:
        from maintenance_assistant.knowledge_base.ingestion import DocumentProcessor

        processor = DocumentProcessor()

        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "保守用車ナレッジ.txt"
            path.write_text("軌道モータカーの始業点検", encoding="utf-8")

            segments = await processor.extract(path)

        self.assertEqual(len(segments), 1)
        self.assertEqual(segments[0].text, "軌道モータカーの始業点検")
        self.assertIsNone(segments[0].page)

    async def test_invalid_utf8_is_an_extraction_error(self) -> None:
        from maintenance_assistant.knowledge_base.errors import ExtractionError
        from maintenance_assistant.knowledge_base.ingestion import DocumentProcessor

        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "broken.txt"
            path.write_bytes(b"\xff\xfe\xfa broken")

            with self.assertRaises(ExtractionError):
                await DocumentProcessor().extract(path)

    async def test_missing_file_is_an_extraction_error(self) -> None:
        from maintenance_assistant.knowledge_base.errors import ExtractionError
        from maintenance_assistant.knowledge_base.ingestion import DocumentProcessor

        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(ExtractionError):
                await DocumentProcessor().extract(Path(tmp) / "missing.txt")

    async def test_extract_pdf_without_text_is_rejected(self) -> None:
        """A structurally-valid PDF with no text yields an extraction error."""
        from pypdf import PdfWriter

        from maintenance_assistant.knowledge_base.errors import ExtractionError
        from maintenance_assistant.knowledge_base.ingestion import DocumentProcessor

        with tempfile.TemporaryDirectory() as tmp:
            pdf_path = Path(tmp) / "empty.pdf"

            writer = PdfWriter()
            writer.add_blank_page(width=72, height=72)
            with pdf_path.open("wb") as f:
                writer.write(f)

            with self.assertRaises(ExtractionError):
                await DocumentProcessor().extract(pdf_path)

    async def test_office_formats_need_a_registered_extractor(self) -> None:
        from maintenance_assistant.knowledge_base.errors import UnsupportedFormatError
        from maintenance_assistant.knowledge_base.ingestion import DocumentProcessor
        from maintenance_assistant.knowledge_base.models import DocumentType, TextSegment

        processor = DocumentProcessor()

        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "slides.pptx"
            path.write_bytes(b"PK\x03\x04")

            with self.assertRaises(UnsupportedFormatError):
                await processor.extract(path)

            processor.register_extractor(
                DocumentType.PRESENTATION,
                lambda p: [TextSegment(text="スライド1: 点検", page=1), TextSegment(text="", page=2)],
            )
            segments = await processor.extract(path)

        self.assertEqual([s.page for s in segments], [1])


if __name__ == "__main__":
    unittest.main()
