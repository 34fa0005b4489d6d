"""Unit tests for configuration models and loading."""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
import sys

from pydantic import ValidationError


PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from maintenance_assistant.config_manager import (  # noqa: E402
    Config,
    KnowledgeBaseConfig,
    load_config,
)
from maintenance_assistant.knowledge_base import KnowledgeBaseManager  # noqa: E402


class TestConfig(unittest.TestCase):
    """Tests for `Config` defaults, validation, and YAML loading."""

    def test_defaults(self) -> None:
        config = Config()
        kb = config.knowledge_base

        self.assertEqual(kb.chunk_size, 500)
        self.assertEqual(kb.chunk_overlap, 150)
        self.assertEqual(kb.top_k, 7)
        self.assertEqual(kb.scoring.keyword_match, 10)
        self.assertEqual(len(kb.important_rules), 1)
        self.assertEqual(kb.important_rules[0].pad, 50)

    def test_default_rules_are_not_shared_between_configs(self) -> None:
        first = KnowledgeBaseConfig().important_rules
        second = KnowledgeBaseConfig().important_rules
        self.assertEqual(first, second)
        self.assertIsNot(first[0], second[0])

    def test_overlap_must_be_below_chunk_size(self) -> None:
        with self.assertRaises(ValidationError):
            KnowledgeBaseConfig(chunk_size=100, chunk_overlap=100)

    def test_descriptions_are_bilingual(self) -> None:
        self.assertIn("chunk", KnowledgeBaseConfig.get_field_description("chunk_size"))
        self.assertIn("チャンク", KnowledgeBaseConfig.get_field_description("chunk_size", "ja"))
        self.assertIsNone(KnowledgeBaseConfig.get_field_description("unknown"))

    def test_load_missing_file_returns_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            config = load_config(Path(tmp) / "conf.yaml")
        self.assertEqual(config, Config())

    def test_load_yaml(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "conf.yaml"
            path.write_text(
                "knowledge_base:\n"
                "  root_dir: /srv/kb\n"
                "  chunk_size: 300\n"
                "  chunk_overlap: 50\n"
                "  important_rules:\n"
                "    - pattern: '\\d+kPa'\n"
                "      pad: 20\n"
                "  scoring:\n"
                "    priority_terms: [エンジン]\n"
                "prompt:\n"
                "  no_context_notice: 見つかりません\n",
                encoding="utf-8",
            )
            config = load_config(path)

        self.assertEqual(config.knowledge_base.root_dir, "/srv/kb")
        self.assertEqual(config.knowledge_base.chunk_size, 300)
        self.assertEqual(config.knowledge_base.important_rules[0].pattern, r"\d+kPa")
        self.assertEqual(config.knowledge_base.scoring.priority_terms, ["エンジン"])
        self.assertEqual(config.prompt.no_context_notice, "見つかりません")

    def test_manager_from_config(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            config = Config.model_validate(
                {
                    "knowledge_base": {"root_dir": tmp, "top_k": 3},
                    "prompt": {"base_prompt": "BASE"},
                }
            )
            kb = KnowledgeBaseManager.from_config(config.knowledge_base, config.prompt)

        self.assertEqual(kb.retriever.top_k, 3)
        self.assertEqual(kb.ingestion.chunker.chunk_overlap, 150)
        self.assertEqual(kb.assembler.base_prompt, "BASE")


if __name__ == "__main__":
    unittest.main()
