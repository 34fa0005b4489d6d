"""Unit tests for keyword scoring and ranked retrieval."""

from __future__ import annotations

import asyncio
import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock
import sys


PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from maintenance_assistant.knowledge_base import KnowledgeBaseManager  # noqa: E402
from maintenance_assistant.knowledge_base.retriever import (  # noqa: E402
    KeywordScorer,
    ScoringWeights,
)
from maintenance_assistant.knowledge_base.storage_manager import CHUNKS_FILENAME  # noqa: E402


class TestKeywordScorer(unittest.TestCase):
    """Tests for `KeywordScorer` mode selection and scores."""

    def setUp(self) -> None:
        self.scorer = KeywordScorer(ScoringWeights(priority_terms=["ブレーキ"]))

    def test_single_token_query_uses_single_keyword_mode(self) -> None:
        plan = self.scorer.plan("エンジン")
        self.assertEqual(plan.mode, "single")
        self.assertEqual(plan.phrase, "エンジン")

    def test_two_token_query_uses_multi_token_mode(self) -> None:
        plan = self.scorer.plan("エンジン 停止")
        self.assertEqual(plan.mode, "multi")
        self.assertEqual(plan.tokens, ("エンジン",))

    def test_blank_or_too_short_queries_have_no_plan(self) -> None:
        for query in ("", "   ", "a", "ab cd"):
            self.assertIsNone(self.scorer.plan(query), query)

    def test_single_keyword_scores(self) -> None:
        plan = self.scorer.plan("エンジン")
        self.assertEqual(self.scorer.score(plan, "エンジンの始動"), 10)
        self.assertEqual(self.scorer.score(plan, "エンジンとエンジン"), 12)
        self.assertEqual(self.scorer.score(plan, "エンジン・エンジン・エンジン"), 14)
        self.assertEqual(self.scorer.score(plan, "油圧ポンプ"), 0)

    def test_priority_term_bonus(self) -> None:
        plan = self.scorer.plan("ブレーキ")
        self.assertEqual(self.scorer.score(plan, "ブレーキの点検"), 15)

    def test_multi_token_rewards_exact_phrase(self) -> None:
        plan = self.scorer.plan("brake fluid leak")
        self.assertEqual(self.scorer.score(plan, "Check for a brake fluid leak."), 14)
        self.assertEqual(self.scorer.score(plan, "leak near the brake; fluid low"), 9)
        self.assertEqual(self.scorer.score(plan, "only the brake"), 3)

    def test_matching_is_case_insensitive(self) -> None:
        plan = self.scorer.plan("HYDRAULIC")
        self.assertEqual(self.scorer.score(plan, "Hydraulic pump"), 10)


class TestKeywordRetriever(unittest.IsolatedAsyncioTestCase):
    """Tests for ranked retrieval through `KnowledgeBaseManager`."""

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name) / "kb"
        self.kb = KnowledgeBaseManager(self.root, chunk_size=200, chunk_overlap=50)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    async def _add(self, name: str, text: str):
        return await self.kb.ingest_document(self.root / name, text)

    async def test_empty_query_or_corpus_returns_nothing(self) -> None:
        self.assertEqual(await self.kb.search("エンジン"), [])
        await self._add("a.txt", "エンジンの始動手順")
        self.assertEqual(await self.kb.search(""), [])
        self.assertEqual(await self.kb.search("  "), [])

    async def test_repeat_occurrence_ranks_above_single_hit(self) -> None:
        other = await self._add("other.txt", "停止したエンジンの再始動。")
        target = await self._add("target.txt", "エンジンが停止した場合はエンジンを冷却する。")

        hits = await self.kb.retrieve("エンジン")

        self.assertEqual([h.document_id for h in hits], [target.id, other.id])
        self.assertEqual(hits[0].score, 12)
        self.assertEqual(hits[1].score, 10)

    async def test_results_are_bounded_by_top_k(self) -> None:
        for i in range(20):
            await self._add(f"doc{i}.txt", f"油圧ホースの交換手順 その{i}")

        results = await self.kb.search("油圧ホース")

        self.assertEqual(len(results), 7)

    async def test_ties_keep_manifest_order_and_repeat_deterministically(self) -> None:
        records = [await self._add(f"d{i}.txt", f"冷却水 点検 {i}") for i in range(5)]

        first = await self.kb.retrieve("冷却水")
        second = await self.kb.retrieve("冷却水")

        self.assertEqual([h.document_id for h in first], [r.id for r in records])
        self.assertEqual(first, second)

    async def test_unmatched_chunks_are_dropped(self) -> None:
        await self._add("a.txt", "パンタグラフの点検")
        self.assertEqual(await self.kb.search("ブレーキ"), [])

    async def test_discovered_source_is_chunked_on_first_query(self) -> None:
        self.root.mkdir(parents=True)
        (self.root / "保守用車ナレッジ.txt").write_text(
            "燃料フィルターの交換は500時間ごとに行う。", encoding="utf-8"
        )
        [record] = await self.kb.list_documents()
        self.assertFalse(await self.kb.store.exists(record.id))

        results = await self.kb.search("燃料フィルター")

        self.assertEqual(len(results), 1)
        self.assertTrue(await self.kb.store.exists(record.id))
        self.assertEqual((await self.kb.manifest.get(record.id)).chunk_count, 1)

    async def test_concurrent_queries_chunk_each_discovered_source_once(self) -> None:
        self.root.mkdir(parents=True)
        for i in range(5):
            (self.root / f"d{i}.txt").write_text(
                f"燃料フィルターの交換手順 その{i}", encoding="utf-8"
            )
        records = await self.kb.list_documents()
        processor = self.kb.ingestion.processor
        processor.extract = AsyncMock(wraps=processor.extract)

        results = await asyncio.gather(
            *(self.kb.retrieve("燃料フィルター") for _ in range(4))
        )

        expected = [r.id for r in records]
        for hits in results:
            self.assertEqual([h.document_id for h in hits], expected)
        self.assertEqual(processor.extract.await_count, 5)
        for record in records:
            self.assertEqual((await self.kb.manifest.get(record.id)).chunk_count, 1)

    async def test_corrupt_chunk_file_is_rebuilt_from_source(self) -> None:
        self.root.mkdir(parents=True)
        source = self.root / "brake.txt"
        source.write_text("ブレーキシューの摩耗限度は5mm。", encoding="utf-8")
        record = await self.kb.ingest_document(source)
        (self.kb.store.unit_dir(record.id) / CHUNKS_FILENAME).write_text(
            "[{]", encoding="utf-8"
        )

        results = await self.kb.search("ブレーキシュー")

        self.assertEqual(len(results), 1)
        self.assertIsNotNone(await self.kb.store.get_chunks(record.id))

    async def test_document_without_chunks_or_source_is_skipped(self) -> None:
        self.root.mkdir(parents=True)
        (self.root / "ghost.txt").write_text("エンジンオイル", encoding="utf-8")
        await self.kb.list_documents()
        (self.root / "ghost.txt").unlink()
        kept = await self._add("kept.txt", "エンジンオイルの量を確認する。")

        hits = await self.kb.retrieve("エンジンオイル")

        self.assertEqual([h.document_id for h in hits], [kept.id])

    async def test_char_budget_truncates_first_hit(self) -> None:
        kb = KnowledgeBaseManager(
            self.root, chunk_size=200, chunk_overlap=50, max_context_chars=10
        )
        await kb.ingest_document(self.root / "a.txt", "エンジン" + "あ" * 50)

        [hit] = await kb.retrieve("エンジン")

        self.assertEqual(hit.chunk.text, "エンジン" + "あ" * 3 + "...")
        self.assertEqual(len(hit.chunk.text), 10)


if __name__ == "__main__":
    unittest.main()
