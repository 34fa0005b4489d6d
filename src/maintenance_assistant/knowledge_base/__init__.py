"""
Knowledge base module for maintenance document storage and retrieval.

Provides keyword-scored RAG (Retrieval-Augmented Generation) over a local,
file-backed corpus.
"""

from .manager import KnowledgeBaseManager
from .storage_manager import DocumentStore
from .manifest import IndexManifest
from .retriever import KeywordRetriever, KeywordScorer, ScoringWeights
from .ingestion import IngestionPipeline, DocumentProcessor, TextChunker, ImportantSpanRule
from .prompt import PromptAssembler
from .models import Chunk, DocumentRecord, DocumentType, RemovalResult, RetrievalHit, TextSegment

__all__ = [
    "KnowledgeBaseManager",
    "DocumentStore",
    "IndexManifest",
    "KeywordRetriever",
    "KeywordScorer",
    "ScoringWeights",
    "IngestionPipeline",
    "DocumentProcessor",
    "TextChunker",
    "ImportantSpanRule",
    "PromptAssembler",
    "Chunk",
    "DocumentRecord",
    "DocumentType",
    "RemovalResult",
    "RetrievalHit",
    "TextSegment",
]
