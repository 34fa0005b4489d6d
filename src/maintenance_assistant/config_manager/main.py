# config_manager/main.py
from pathlib import Path

import yaml
from loguru import logger
from pydantic import BaseModel, Field
from typing import Dict, ClassVar

from .knowledge_base import KnowledgeBaseConfig
from .prompt import PromptConfig
from .i18n import I18nMixin, Description


class Config(I18nMixin, BaseModel):
    """
    Main configuration for the application.
    """

    knowledge_base: KnowledgeBaseConfig = Field(
        default_factory=KnowledgeBaseConfig, alias="knowledge_base"
    )
    prompt: PromptConfig = Field(default_factory=PromptConfig, alias="prompt")

    DESCRIPTIONS: ClassVar[Dict[str, Description]] = {
        "knowledge_base": Description(
            en="Knowledge base retrieval settings", ja="ナレッジベース検索の設定"
        ),
        "prompt": Description(en="Prompt templates", ja="プロンプトテンプレート"),
    }


def load_config(path: str | Path) -> Config:
    """
    Load configuration from a YAML file.

    A missing file yields the defaults; invalid values raise a pydantic
    ValidationError.

    Args:
        path: Path to the YAML file

    Returns:
        Validated configuration
    """
    path = Path(path)
    if not path.exists():
        logger.warning(f"Config file {path} not found, using defaults")
        return Config()

    with path.open(encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    return Config.model_validate(data)
