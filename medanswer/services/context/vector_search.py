"""Embedding and vector search collaborators."""

from dataclasses import dataclass
from typing import Protocol

import numpy as np


@dataclass(frozen=True)
class VectorHit:
    id: str
    score: float


class Embedder(Protocol):
    dimension: int

    async def embed(self, text: str) -> list[float]: ...


class VectorSearch(Protocol):
    dimension: int

    async def search(self, embedding: list[float], k: int) -> list[VectorHit]: ...


class InMemoryVectorStore:
    """Brute-force cosine similarity search over chunk embeddings.

    Scores are mapped from [-1, 1] to [0, 1].
    """

    def __init__(self, dimension: int):
        self.dimension = dimension
        self._ids: list[str] = []
        self._matrix = np.zeros((0, dimension), dtype=np.float32)

    def add(self, chunk_id: str, embedding: list[float]) -> None:
        vector = np.asarray(embedding, dtype=np.float32)
        if vector.shape != (self.dimension,):
            raise ValueError(
                f"Embedding dimension {vector.shape[-1]} does not match store dimension {self.dimension}"
            )
        self._ids.append(chunk_id)
        self._matrix = np.vstack([self._matrix, self._normalize(vector)[None, :]])

    def __len__(self) -> int:
        return len(self._ids)

    async def search(self, embedding: list[float], k: int) -> list[VectorHit]:
        if k <= 0 or not self._ids:
            return []
        query = self._normalize(np.asarray(embedding, dtype=np.float32))
        similarities = self._matrix @ query
        k = min(k, len(self._ids))
        top = np.argsort(-similarities, kind="stable")[:k]
        return [
            VectorHit(id=self._ids[i], score=float((similarities[i] + 1.0) / 2.0))
            for i in top
        ]

    @staticmethod
    def _normalize(vector: np.ndarray) -> np.ndarray:
        norm = np.linalg.norm(vector)
        if norm == 0:
            return vector
        return vector / norm
