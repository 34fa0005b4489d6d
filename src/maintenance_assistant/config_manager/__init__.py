from .i18n import Description, I18nMixin
from .knowledge_base import KnowledgeBaseConfig, ScoringConfig
from .main import Config, load_config
from .prompt import PromptConfig

__all__ = [
    "Config",
    "Description",
    "I18nMixin",
    "KnowledgeBaseConfig",
    "PromptConfig",
    "ScoringConfig",
    "load_config",
]
