"""Local text embeddings for the in-memory catalog store."""

from __future__ import annotations

import re
from hashlib import blake2b
from math import sqrt

from langchain_core.embeddings import Embeddings

_WORD_PATTERN = re.compile(r"\w+", flags=re.UNICODE)


class HashedPhraseEmbeddings(Embeddings):
    """Feature-hashed bag of words and adjacent word pairs.

    Pairs let phrases such as "seven seats" or "low mileage" outweigh the
    same words scattered through a description. Any LangChain `Embeddings`
    (for example `OpenAIEmbeddings`) can replace it in the store.
    """

    def __init__(self, dimension: int = 256, pair_weight: float = 0.5) -> None:
        if dimension < 1:
            raise ValueError("dimension must be positive")
        self.dimension = dimension
        self.pair_weight = pair_weight

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._vectorize(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        return self._vectorize(text)

    def _vectorize(self, text: str) -> list[float]:
        words = tokenize(text)
        vector = [0.0] * self.dimension
        features = [(word, 1.0) for word in words]
        features += [(f"{a} {b}", self.pair_weight) for a, b in zip(words, words[1:])]
        for feature, weight in features:
            slot, sign = self._bucket(feature)
            vector[slot] += sign * weight

        norm = sqrt(sum(value * value for value in vector))
        return [value / norm for value in vector] if norm else vector

    def _bucket(self, feature: str) -> tuple[int, float]:
        digest = blake2b(feature.encode("utf-8"), digest_size=8).digest()
        return int.from_bytes(digest[:4], "little") % self.dimension, (-1.0 if digest[4] & 1 else 1.0)


def tokenize(text: str) -> list[str]:
    return [token.lower() for token in _WORD_PATTERN.findall(text)]


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
