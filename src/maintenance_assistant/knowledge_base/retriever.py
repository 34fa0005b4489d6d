"""Keyword retriever that scores persisted chunks against a free-text query.

Every document in the manifest is considered. Documents whose chunk file is
missing or corrupt are re-chunked from source on the fly and the result is
persisted for the next query. Failures are isolated per document.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Literal, Optional

from loguru import logger
from pydantic import BaseModel, Field

from .errors import CorruptRecordError
from .manifest import IndexManifest
from .models import Chunk, DocumentRecord, RetrievalHit
from .storage_manager import DocumentStore

DEFAULT_TOP_K = 7
ELLIPSIS = "..."

Rechunker = Callable[[DocumentRecord], Awaitable[List[Chunk]]]


class ScoringWeights(BaseModel):
    """Tunable constants of the keyword scorer.

    Only the relative ordering they produce matters; none of the values is
    calibrated.
    """

    keyword_match: float = 10
    priority_term_bonus: float = 5
    repeat_occurrence: float = 2
    token_match: float = 3
    phrase_bonus: float = 5
    min_token_length: int = Field(3, ge=1)
    min_single_keyword_length: int = Field(2, ge=1)
    priority_terms: List[str] = Field(
        default_factory=lambda: ["ブレーキ", "油圧", "冷却系統", "運転室", "車体"]
    )


@dataclass(frozen=True)
class QueryPlan:
    """How a query will be scored."""

    mode: Literal["single", "multi"]
    phrase: str
    tokens: tuple[str, ...] = field(default_factory=tuple)


class KeywordScorer:
    """
    Case-insensitive substring scorer with two modes.

    A query made of a single whitespace token is scored as one keyword
    (match, priority-term bonus, repeat bonus). Longer queries are scored per
    token with a bonus when the whole phrase appears verbatim.
    """

    def __init__(self, weights: Optional[ScoringWeights] = None):
        self.weights = weights or ScoringWeights()
        self._priority_terms = {t.lower() for t in self.weights.priority_terms}

    def plan(self, query: str) -> Optional[QueryPlan]:
        """
        Decide the scoring mode for a query.

        Returns:
            The plan, or None if the query cannot match anything
        """
        phrase = (query or "").strip().lower()
        if not phrase:
            return None

        raw_tokens = phrase.split()
        if len(raw_tokens) == 1 and len(phrase) >= self.weights.min_single_keyword_length:
            return QueryPlan(mode="single", phrase=phrase)

        tokens = tuple(t for t in raw_tokens if len(t) >= self.weights.min_token_length)
        if not tokens:
            return None
        return QueryPlan(mode="multi", phrase=phrase, tokens=tokens)

    def score(self, plan: QueryPlan, text: str) -> float:
        """Score one chunk text against a query plan."""
        haystack = text.lower()
        w = self.weights

        if plan.mode == "single":
            occurrences = haystack.count(plan.phrase)
            if occurrences == 0:
                return 0
            score = w.keyword_match
            if plan.phrase in self._priority_terms:
                score += w.priority_term_bonus
            score += w.repeat_occurrence * (occurrences - 1)
            return score

        score = sum(w.token_match for token in plan.tokens if token in haystack)
        if score and plan.phrase in haystack:
            score += w.phrase_bonus
        return score


class KeywordRetriever:
    """
    Ranks chunks from every manifest document against a query.

    Per-document chunk loading runs concurrently; ranking is a single
    deterministic pass in manifest order, so ties keep encounter order.
    """

    def __init__(
        self,
        manifest: IndexManifest,
        store: DocumentStore,
        rechunk: Optional[Rechunker] = None,
        scorer: Optional[KeywordScorer] = None,
        top_k: int = DEFAULT_TOP_K,
    ):
        """
        Initialize the retriever.

        Args:
            manifest: Manifest listing the documents to search
            store: Store holding persisted chunks
            rechunk: Coroutine rebuilding a document's chunks from its source
            scorer: Keyword scorer (defaults to the standard weights)
            top_k: Maximum number of results
        """
        self.manifest = manifest
        self.store = store
        self.rechunk = rechunk
        self.scorer = scorer or KeywordScorer()
        self.top_k = top_k

    async def search(self, query: str, max_chars: Optional[int] = None) -> List[Chunk]:
        """Return the top-ranked chunks for `query` (at most `top_k`)."""
        return [hit.chunk for hit in await self.search_hits(query, max_chars=max_chars)]

    async def search_hits(
        self, query: str, max_chars: Optional[int] = None
    ) -> List[RetrievalHit]:
        """
        Search the knowledge base.

        Args:
            query: Free-text query
            max_chars: Optional total character budget for the returned text

        Returns:
            Hits sorted by score, highest first, at most `top_k` of them
        """
        plan = self.scorer.plan(query)
        if plan is None:
            return []

        records = await self.manifest.load()
        if not records:
            return []

        loaded = await asyncio.gather(*(self._load_chunks(r) for r in records))

        candidates: List[RetrievalHit] = []
        for record, chunks in zip(records, loaded):
            for chunk in chunks:
                score = self.scorer.score(plan, chunk.text)
                if score <= 0:
                    continue
                candidates.append(
                    RetrievalHit(
                        chunk=chunk,
                        score=score,
                        document_id=record.id,
                        document_title=record.title,
                    )
                )

        candidates.sort(key=lambda hit: hit.score, reverse=True)
        hits = candidates[: self.top_k]
        if max_chars:
            hits = self._apply_char_budget(hits, max_chars)

        logger.debug(
            f"🔍 Found {len(hits)} of {len(candidates)} candidates for query "
            f"'{query[:50]}' ({plan.mode} mode)"
        )
        return hits

    async def _load_chunks(self, record: DocumentRecord) -> List[Chunk]:
        try:
            try:
                chunks = await self.store.get_chunks(record.id)
            except CorruptRecordError as e:
                logger.warning(f"⚠️ Corrupt chunks for '{record.id}', re-chunking: {e}")
                chunks = None

            if chunks is None:
                if self.rechunk is None:
                    return []
                chunks = await self.rechunk(record)
            return chunks
        except Exception as e:
            logger.warning(f"⚠️ Skipping document '{record.id}' ({record.title}): {e}")
            return []

    @staticmethod
    def _apply_char_budget(hits: List[RetrievalHit], max_chars: int) -> List[RetrievalHit]:
        results: List[RetrievalHit] = []
        total_chars = 0

        for hit in hits:
            text = hit.chunk.text
            if total_chars + len(text) > max_chars:
                if not results:
                    # Include at least one result, truncated to fit the budget
                    cut = text[: max(max_chars - len(ELLIPSIS), 0)] + ELLIPSIS
                    truncated = hit.chunk.model_copy(update={"text": cut[:max_chars]})
                    results.append(hit.model_copy(update={"chunk": truncated}))
                break
            results.append(hit)
            total_chars += len(text)

        return results
