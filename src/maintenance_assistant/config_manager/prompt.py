"""
Configuration models for the instructions sent with each generation request.
"""

from pydantic import BaseModel, Field
from typing import Dict, ClassVar

from ..knowledge_base.prompt import (
    DEFAULT_BASE_PROMPT,
    DEFAULT_CONTEXT_FOOTER,
    DEFAULT_CONTEXT_HEADER,
    DEFAULT_NO_CONTEXT_NOTICE,
)
from .i18n import I18nMixin, Description


class PromptConfig(I18nMixin, BaseModel):
    """Prompt templates for the support assistant."""

    base_prompt: str = Field(DEFAULT_BASE_PROMPT, alias="base_prompt")
    context_header: str = Field(DEFAULT_CONTEXT_HEADER, alias="context_header")
    context_footer: str = Field(DEFAULT_CONTEXT_FOOTER, alias="context_footer")
    no_context_notice: str = Field(DEFAULT_NO_CONTEXT_NOTICE, alias="no_context_notice")

    DESCRIPTIONS: ClassVar[Dict[str, Description]] = {
        "base_prompt": Description(
            en="Assistant persona and answering policy", ja="アシスタントの役割と回答方針"
        ),
        "context_header": Description(
            en="Line placed before the retrieved passages", ja="取得した文書の前に置く文"
        ),
        "context_footer": Description(
            en="Instruction placed after the retrieved passages",
            ja="取得した文書の後に置く指示",
        ),
        "no_context_notice": Description(
            en="Instruction used when nothing relevant was found",
            ja="関連情報が見つからない場合の指示",
        ),
    }
