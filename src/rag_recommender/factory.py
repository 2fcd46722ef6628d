"""Wiring of production adapters from environment variables."""

from __future__ import annotations

import logging
import os
from typing import Any

from rag_recommender.config import PipelineConfig
from rag_recommender.generation.client import ChatModelGenerationClient
from rag_recommender.obs.logging import configure_logging
from rag_recommender.pipeline.recommender import RecommendationPipeline
from rag_recommender.retrieval.catalog import load_catalog
from rag_recommender.retrieval.document_store import (
    DocumentStore,
    InMemoryDocumentStore,
    LangChainRetrieverStore,
)

logger = logging.getLogger(__name__)


def create_chat_model() -> Any:
    """Azure OpenAI when `AZURE_OPENAI_ENDPOINT` is set, OpenAI otherwise."""
    if os.getenv("AZURE_OPENAI_ENDPOINT"):
        from langchain_openai import AzureChatOpenAI

        return AzureChatOpenAI(
            azure_deployment=os.getenv("AZURE_OPENAI_DEPLOYMENT", "gpt-4o-mini"),
            api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-06-01"),
            temperature=0,
        )

    if not os.getenv("OPENAI_API_KEY"):
        raise RuntimeError("Set OPENAI_API_KEY or AZURE_OPENAI_ENDPOINT to enable generation.")

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"), temperature=0)


def create_document_store() -> DocumentStore:
    """Azure AI Search when configured, else the local catalog store."""
    if os.getenv("AZURE_AI_SEARCH_SERVICE_NAME"):
        try:
            from langchain_community.retrievers import AzureAISearchRetriever
        except Exception as exc:  # pragma: no cover - import path is environment-dependent
            raise RuntimeError(
                "Azure AI Search support needs langchain-community and azure-search-documents."
            ) from exc

        retriever = AzureAISearchRetriever(
            content_key=os.getenv("AZURE_AI_SEARCH_CONTENT_KEY", "description"),
            top_k=int(os.getenv("AZURE_AI_SEARCH_TOP_K", "10")),
        )
        logger.info("Using Azure AI Search document store")
        return LangChainRetrieverStore(retriever)

    catalog_path = os.getenv("CAR_CATALOG_PATH")
    if not catalog_path:
        logger.warning("No search service or CAR_CATALOG_PATH configured; retrieval returns nothing")
        return InMemoryDocumentStore()

    store = InMemoryDocumentStore(load_catalog(catalog_path))
    logger.info(f"Loaded {len(store)} catalog documents into the in-memory store")
    return store


def create_pipeline_from_env(config: PipelineConfig | None = None) -> RecommendationPipeline:
    configure_logging(os.getenv("LOG_LEVEL", "INFO"))
    config = config or PipelineConfig()
    return RecommendationPipeline(
        document_store=create_document_store(),
        generation_client=ChatModelGenerationClient(create_chat_model(), config.generation),
        config=config,
    )
