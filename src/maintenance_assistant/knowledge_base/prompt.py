"""Renders retrieved chunks into the instruction block sent to the model."""

from typing import Optional, Sequence

from .models import Chunk

DEFAULT_BASE_PROMPT = """あなたは保守用車の知識ベースを持つ緊急復旧サポートアシスタントです。
あなたの目的は、ユーザーが保守用車（軌道モータカー、重機、道路保守車両、線路保守車両など）のトラブルシューティングと修理を支援することです。

## 回答方針
- 回答は簡潔・明確にし、必要な情報だけを含めてください
- 最優先事項は「機械故障に対する応急復旧方法」の提供です。これを最初に目立つように示してください
- 応急処置は、現場の作業者が理解しやすいように、手順を番号付きで段階的に示してください
- 専門用語は、可能であれば簡単な表現で補足してください

## 安全注意事項
- 安全性に関わる情報は常に最優先して伝えてください
- 電気系統のトラブルでは感電の危険性について必ず注意喚起してください
- 油圧系統のトラブルでは高圧油の噴出危険について必ず注意喚起してください
- エンジン関連のトラブルでは火災や熱傷の危険について必ず注意喚起してください
- 応急処置が難しい場合は無理せず専門技術者を呼ぶよう促してください"""

DEFAULT_CONTEXT_HEADER = "以下は、あなたの回答に役立つ可能性のある関連情報です："

DEFAULT_CONTEXT_FOOTER = (
    "上記の情報のみを参考にしながら、ユーザーの質問に答えてください。"
    "質問に完全に一致する記述がなくても、部分的に関連する内容があればそれを抽出して回答し、"
    "すぐに回答を断らないでください。一般的な知識で補わず、回答は提供されたナレッジデータのみに基づいて行ってください。"
)

DEFAULT_NO_CONTEXT_NOTICE = (
    "ユーザーの質問に関する情報がナレッジベースに見つかりませんでした。"
    "一般的な知識は使わず、「その情報はナレッジベースに含まれていません」と伝えてください。"
    "システムにない情報は推測しないでください。"
)


class PromptAssembler:
    """
    Formats retrieval output for the generation request.

    Chunks are rendered in the order given; the assembler never re-ranks.
    """

    def __init__(
        self,
        base_prompt: str = DEFAULT_BASE_PROMPT,
        context_header: str = DEFAULT_CONTEXT_HEADER,
        context_footer: str = DEFAULT_CONTEXT_FOOTER,
        no_context_notice: str = DEFAULT_NO_CONTEXT_NOTICE,
    ):
        self.base_prompt = base_prompt
        self.context_header = context_header
        self.context_footer = context_footer
        self.no_context_notice = no_context_notice

    @staticmethod
    def format_chunk(chunk: Chunk) -> str:
        return f"---\nsource: {chunk.source}\n\n{chunk.text}\n---"

    def build_context(self, chunks: Sequence[Chunk]) -> str:
        """
        Render chunks, or the not-found notice when there are none.

        Args:
            chunks: Retrieved chunks in rank order

        Returns:
            Context block for the generation instructions
        """
        if not chunks:
            return self.no_context_notice

        blocks = [self.format_chunk(chunk) for chunk in chunks]
        return "\n\n".join([self.context_header, *blocks, self.context_footer])

    def build_system_prompt(
        self, chunks: Sequence[Chunk], base_prompt: Optional[str] = None
    ) -> str:
        """Base instructions followed by the context block."""
        base = self.base_prompt if base_prompt is None else base_prompt
        return f"{base}\n\n{self.build_context(chunks)}"
