"""
Configuration models for the maintenance knowledge base (RAG) settings.
"""

from pydantic import BaseModel, Field, model_validator
from typing import Dict, ClassVar, List, Optional

from ..knowledge_base.ingestion import (
    DEFAULT_CHUNK_OVERLAP,
    DEFAULT_CHUNK_SIZE,
    ImportantSpanRule,
)
from ..knowledge_base.manifest import DEFAULT_MANIFEST_FILENAME
from ..knowledge_base.retriever import DEFAULT_TOP_K, ScoringWeights
from .i18n import I18nMixin, Description

# Crew-door dimension sentences in the vehicle manuals are often split across
# windows, so they are kept as standalone chunks.
DOOR_WIDTH_PATTERN = r"運転キャビンへ乗務員が出入りするドア.+?(幅|寸法).+?(\d+).+?(\d+)mm"


def door_width_rule() -> ImportantSpanRule:
    return ImportantSpanRule(pattern=DOOR_WIDTH_PATTERN, pad=50)


class ScoringConfig(I18nMixin, ScoringWeights):
    """Keyword scoring weights."""

    DESCRIPTIONS: ClassVar[Dict[str, Description]] = {
        "keyword_match": Description(
            en="Score for a chunk containing a single-keyword query",
            ja="単一キーワードを含むチャンクのスコア",
        ),
        "priority_term_bonus": Description(
            en="Extra score when the single keyword is a priority term",
            ja="単一キーワードが重要語の場合の加点",
        ),
        "repeat_occurrence": Description(
            en="Score per additional occurrence of the single keyword",
            ja="単一キーワードの追加出現ごとの加点",
        ),
        "token_match": Description(
            en="Score per query token found in a chunk (multi-token queries)",
            ja="複数語クエリで各語がチャンクに含まれる場合の加点",
        ),
        "phrase_bonus": Description(
            en="Extra score when the whole query appears verbatim",
            ja="クエリ全体がそのまま含まれる場合の加点",
        ),
        "min_token_length": Description(
            en="Tokens shorter than this are ignored in multi-token queries",
            ja="複数語クエリで無視する語の最小長",
        ),
        "min_single_keyword_length": Description(
            en="Minimum length of a one-token query to use single-keyword scoring",
            ja="単一キーワード採点を使うクエリの最小長",
        ),
        "priority_terms": Description(
            en="High-value domain terms that earn the priority bonus",
            ja="加点対象となる重要な専門用語",
        ),
    }


class KnowledgeBaseConfig(I18nMixin, BaseModel):
    """Configuration for the maintenance knowledge base."""

    enabled: bool = Field(True, alias="enabled")
    root_dir: str = Field("knowledge-base", alias="root_dir")
    manifest_filename: str = Field(DEFAULT_MANIFEST_FILENAME, alias="manifest_filename")
    chunk_size: int = Field(DEFAULT_CHUNK_SIZE, alias="chunk_size", gt=0)
    chunk_overlap: int = Field(DEFAULT_CHUNK_OVERLAP, alias="chunk_overlap", ge=0)
    top_k: int = Field(DEFAULT_TOP_K, alias="top_k", gt=0)
    max_context_chars: Optional[int] = Field(None, alias="max_context_chars")
    important_rules: List[ImportantSpanRule] = Field(
        default_factory=lambda: [door_width_rule()], alias="important_rules"
    )
    scoring: ScoringConfig = Field(default_factory=ScoringConfig, alias="scoring")

    DESCRIPTIONS: ClassVar[Dict[str, Description]] = {
        "enabled": Description(
            en="Whether to inject knowledge base context into answers (default: True)",
            ja="回答にナレッジベースの情報を使うかどうか（デフォルト：True）",
        ),
        "root_dir": Description(
            en="Knowledge base root directory holding sources, index and chunk storage",
            ja="ソース・インデックス・チャンクを保存するルートディレクトリ",
        ),
        "manifest_filename": Description(
            en="File name of the document index inside the root (default: index.json)",
            ja="ルート内のインデックスファイル名（デフォルト：index.json）",
        ),
        "chunk_size": Description(
            en="Size of text chunks for indexing (default: 500 chars)",
            ja="索引用テキストチャンクのサイズ（デフォルト：500文字）",
        ),
        "chunk_overlap": Description(
            en="Overlap between consecutive chunks, must be below chunk_size (default: 150 chars)",
            ja="連続するチャンクの重なり。chunk_size未満であること（デフォルト：150文字）",
        ),
        "top_k": Description(
            en="Maximum number of chunks returned per query (default: 7)",
            ja="1回の検索で返す最大チャンク数（デフォルト：7）",
        ),
        "max_context_chars": Description(
            en="Optional cap on total characters of retrieved context",
            ja="取得する文脈の合計文字数の上限（任意）",
        ),
        "important_rules": Description(
            en="Regex rules whose matches (plus padding) become standalone important chunks",
            ja="一致箇所（前後の余白付き）を重要チャンクとして抽出する正規表現ルール",
        ),
        "scoring": Description(en="Keyword scoring weights", ja="キーワード採点の重み"),
    }

    @model_validator(mode="after")
    def _check_overlap(self) -> "KnowledgeBaseConfig":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be smaller than chunk_size ({self.chunk_size})"
            )
        return self
