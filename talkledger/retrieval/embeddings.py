import zlib

import numpy as np
from loguru import logger
from openai import AsyncOpenAI

from talkledger.models.schemas import Embedding


def hashed_vector(text: str, dim: int = 256) -> np.ndarray:
    """Bag of code points and code-point bigrams hashed into `dim` buckets, L2-normalized."""
    vec = np.zeros(dim, dtype=np.float64)
    chars = [ch for ch in (text or "").lower() if not ch.isspace()]
    grams = chars + [a + b for a, b in zip(chars, chars[1:])]
    for gram in grams:
        vec[zlib.crc32(gram.encode("utf-8")) % dim] += 1.0
    norm = np.linalg.norm(vec)
    return vec / norm if norm else vec


def cosine(a: list[float] | np.ndarray, b: list[float] | np.ndarray) -> float:
    va, vb = np.asarray(a, dtype=np.float64), np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape or va.size == 0:
        return 0.0
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    return float(np.dot(va, vb) / denom) if denom else 0.0


class EmbeddingProvider:
    """OpenAI embeddings when configured, deterministic hashed vectors otherwise."""

    def __init__(
        self,
        api_key: str = "",
        base_url: str = "https://api.openai.com/v1",
        model: str = "text-embedding-3-small",
        dim: int = 256,
        timeout: float = 20.0,
    ):
        self.client = (
            AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)
            if api_key
            else None
        )
        self.model = model
        self.dim = dim

    @property
    def fallback_model(self) -> str:
        return f"local-hash-{self.dim}"

    @property
    def remote(self) -> bool:
        return self.client is not None

    def embed_local(self, text: str) -> Embedding:
        return Embedding(model=self.fallback_model, vector=hashed_vector(text, self.dim).tolist())

    async def embed(self, text: str) -> Embedding:
        if self.client is not None:
            try:
                response = await self.client.embeddings.create(model=self.model, input=text, dimensions=self.dim)
                return Embedding(model=self.model, vector=list(response.data[0].embedding))
            except Exception as e:
                logger.warning("Embedding via {} failed, using hashed vector: {}", self.model, e)
        return self.embed_local(text)
