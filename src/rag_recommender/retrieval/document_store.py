"""Document store contract and concrete adapters."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from langchain_core.embeddings import Embeddings

from rag_recommender.errors import RetrievalError
from rag_recommender.retrieval.catalog import CatalogDocument
from rag_recommender.retrieval.embedder import HashedPhraseEmbeddings, cosine_similarity, tokenize
from rag_recommender.types import CandidateRecord

logger = logging.getLogger(__name__)

_SCORE_KEYS = ("@search.reranker_score", "@search.score", "relevance_score", "score")


class DocumentStore(Protocol):
    """Query-in, ranked-candidates-out retrieval contract."""

    async def search(self, query: str, limit: int) -> list[CandidateRecord]:
        """Return up to `limit` candidates, best first. Empty when nothing matches."""


class InMemoryDocumentStore:
    """Deterministic document store used for tests and local prototyping.

    Scores blend hashed-embedding cosine similarity with lexical overlap so
    exact model names still rank first when the embedding collides.
    """

    def __init__(
        self,
        documents: list[CatalogDocument] | None = None,
        *,
        embedder: Embeddings | None = None,
    ) -> None:
        self._embedder = embedder or HashedPhraseEmbeddings()
        self._documents: dict[str, CatalogDocument] = {}
        self._embeddings: dict[str, list[float]] = {}
        if documents:
            self.upsert(documents)

    def upsert(self, documents: list[CatalogDocument]) -> None:
        embeddings = self._embedder.embed_documents([doc.description for doc in documents])
        for document, embedding in zip(documents, embeddings, strict=True):
            self._documents[document.doc_id] = document
            self._embeddings[document.doc_id] = embedding

    def __len__(self) -> int:
        return len(self._documents)

    async def search(self, query: str, limit: int) -> list[CandidateRecord]:
        if limit < 1 or not self._documents:
            return []

        query_embedding = self._embedder.embed_query(query)
        query_terms = set(tokenize(query))
        scored: list[CandidateRecord] = []
        for doc_id, document in self._documents.items():
            semantic = max(0.0, cosine_similarity(query_embedding, self._embeddings[doc_id]))
            doc_terms = set(tokenize(document.description))
            overlap = len(query_terms & doc_terms) / max(1, len(query_terms))
            score = min(1.0, (semantic * 0.7) + (overlap * 0.3))
            if score <= 0.0:
                continue
            scored.append(
                CandidateRecord(
                    record_id=doc_id,
                    description=document.description,
                    score=score,
                    metadata=dict(document.metadata),
                )
            )

        ranked = sorted(scored, key=lambda item: item.score, reverse=True)
        return ranked[:limit]


class LangChainRetrieverStore:
    """Adapter over a LangChain retriever backed by a managed search service.

    Works with any `BaseRetriever`, typically `AzureAISearchRetriever`. Service
    scores are not bounded, so they are divided by the best score of the
    response; documents without a score get a rank-based score instead.
    """

    def __init__(self, retriever: Any, *, id_key: str = "id") -> None:
        self._retriever = retriever
        self._id_key = id_key

    async def search(self, query: str, limit: int) -> list[CandidateRecord]:
        try:
            documents = await self._retriever.ainvoke(query)
        except Exception as exc:
            raise RetrievalError(f"Search request failed: {exc}") from exc

        documents = list(documents or [])[:limit]
        if not documents:
            return []

        raw_scores = [_raw_score(doc.metadata) for doc in documents]
        known = [score for score in raw_scores if score is not None and score > 0]
        best = max(known) if known else None

        records: list[CandidateRecord] = []
        for rank, (doc, raw) in enumerate(zip(documents, raw_scores, strict=True)):
            if best is not None and raw is not None:
                score = max(0.0, min(1.0, raw / best))
            else:
                score = 1.0 - (rank / len(documents))
            metadata = {
                str(key): str(value)
                for key, value in doc.metadata.items()
                if not isinstance(value, (dict, list))
            }
            records.append(
                CandidateRecord(
                    record_id=str(doc.metadata.get(self._id_key, f"doc-{rank}")),
                    description=doc.page_content,
                    score=score,
                    metadata=metadata,
                )
            )
        logger.debug(f"Search returned {len(records)} candidates")
        return records


def _raw_score(metadata: dict[str, Any]) -> float | None:
    for key in _SCORE_KEYS:
        value = metadata.get(key)
        if value is None:
            continue
        try:
            return float(value)
        except (TypeError, ValueError):
            continue
    return None
