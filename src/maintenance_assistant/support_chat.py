"""Builds generation requests for the support chat with knowledge base context."""

from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from loguru import logger

from .config_manager import KnowledgeBaseConfig
from .knowledge_base import KnowledgeBaseManager
from .knowledge_base.models import RetrievalHit


class GenerationClient(Protocol):
    """The external model call: instructions and user text in, completion out."""

    async def complete(self, system_prompt: str, user_prompt: str) -> str: ...


@dataclass
class GenerationRequest:
    system_prompt: str
    user_prompt: str
    hits: List[RetrievalHit] = field(default_factory=list)


async def create_generation_request(
    user_text: str,
    kb_manager: Optional[KnowledgeBaseManager],
    kb_config: Optional[KnowledgeBaseConfig] = None,
) -> GenerationRequest:
    """
    Create the generation request for a user question with optional KB retrieval.

    A failed lookup is logged and answered with the not-found instructions.

    Returns:
        GenerationRequest carrying the hits used, for display
    """
    hits: List[RetrievalHit] = []

    if kb_manager is None:
        logger.debug("📚 KB RAG skipped: No KB manager")
        return GenerationRequest(system_prompt="", user_prompt=user_text)

    if kb_config is not None and not kb_config.enabled:
        logger.debug("📚 KB RAG skipped: KB disabled in config")
        return GenerationRequest(
            system_prompt=kb_manager.assembler.base_prompt, user_prompt=user_text
        )

    try:
        logger.info(f"🔍 KB RAG enabled - retrieving context for query: '{user_text[:100]}'")
        hits = await kb_manager.retrieve(user_text)
        if hits:
            logger.info(f"✅ KB RAG: Injecting {len(hits)} results into context")
        else:
            logger.info("📚 KB RAG: No results found for query")
    except Exception as e:
        logger.error(f"❌ KB RAG failed: {e}")
        hits = []

    system_prompt = kb_manager.assembler.build_system_prompt([hit.chunk for hit in hits])
    return GenerationRequest(system_prompt=system_prompt, user_prompt=user_text, hits=hits)


async def answer_question(
    user_text: str,
    kb_manager: Optional[KnowledgeBaseManager],
    client: GenerationClient,
    kb_config: Optional[KnowledgeBaseConfig] = None,
) -> str:
    """Retrieve context for `user_text` and return the client's completion."""
    request = await create_generation_request(user_text, kb_manager, kb_config)
    return await client.complete(request.system_prompt, request.user_prompt)
