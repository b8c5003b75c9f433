"""
Embeddings tool for headline and cluster vectors.

Supports (in priority order):
1. Local Sentence Transformers (no API calls)
2. Hugging Face Inference API (cloud fallback when HF_API_KEY is set)

Both default to all-MiniLM-L6-v2 (384-dim). The first successful embedding
locks the dimension; a fallback returning another size is rejected so stored
vectors stay comparable across runs.
"""

import logging
import os
import time
from typing import Any, Dict, List, Optional

import numpy as np

from ..config import get_settings

logger = logging.getLogger(__name__)

_DEFAULT_DIM = 384

# Singleton for the local model (loading takes seconds)
_local_model = None
_local_model_name = None


def _get_local_model(model_name: str):
    """Load the sentence-transformers model once per process."""
    global _local_model, _local_model_name
    if _local_model is not None and _local_model_name == model_name:
        return _local_model
    settings = get_settings()
    if settings.huggingface_api_key and not os.environ.get("HF_TOKEN"):
        os.environ["HF_TOKEN"] = settings.huggingface_api_key
    try:
        from sentence_transformers import SentenceTransformer
        logger.info(f"Loading local embedding model: {model_name}...")
        _local_model = SentenceTransformer(model_name)
        _local_model_name = model_name
        logger.info(f"Local embedding model loaded: {model_name} (dim={_local_model.get_sentence_embedding_dimension()})")
        return _local_model
    except Exception as e:
        logger.error(f"Failed to load local embedding model '{model_name}': {type(e).__name__}: {e}")
        return None


class EmbeddingTool:
    """Generate embeddings with a local-first strategy."""

    def __init__(self) -> None:
        self.settings = get_settings()
        self._hf_client = None
        self._local_checked = False
        self._local = None
        self._embedding_dim = _DEFAULT_DIM
        self._dim_locked = False

    @property
    def local_model(self):
        if not self._local_checked:
            self._local_checked = True
            self._local = _get_local_model(self.settings.local_embedding_model)
            if self._local is not None:
                self._embedding_dim = self._local.get_sentence_embedding_dimension()
                self._dim_locked = True
        return self._local

    @property
    def hf_client(self):
        if self._hf_client is None and self.settings.huggingface_api_key:
            from huggingface_hub import InferenceClient
            self._hf_client = InferenceClient(token=self.settings.huggingface_api_key)
            logger.info("Hugging Face embeddings initialized")
        return self._hf_client

    def _zero_vector(self) -> List[float]:
        return [0.0] * self._embedding_dim

    def embed_text(self, text: str) -> List[float]:
        """Embed a single text. Returns a zero vector when no backend works."""
        if not text or not text.strip():
            return self._zero_vector()
        result = self.embed_batch([text])
        return result[0]

    def embed_batch(self, texts: List[str], batch_size: int = 32) -> List[List[float]]:
        """Embed many texts. Blank texts and failed backends get zero vectors."""
        if not texts:
            return []

        results: List[Optional[List[float]]] = [None] * len(texts)
        indices = [i for i, t in enumerate(texts) if t and t.strip()]
        payload = [texts[i] for i in indices]

        vectors = self._try_embed_batch(payload, batch_size) if payload else None
        if vectors and len(vectors) == len(payload):
            for idx, vec in zip(indices, vectors):
                results[idx] = vec
        elif payload:
            logger.error("No embedding backend available (install sentence-transformers or set HF_API_KEY)")

        return [r if r is not None else self._zero_vector() for r in results]

    def _try_embed_batch(self, texts: List[str], batch_size: int) -> Optional[List[List[float]]]:
        if self.local_model is not None:
            try:
                return self._embed_local_batch(texts, batch_size)
            except Exception as e:
                logger.warning(f"Local batch embedding failed: {e}, trying HF API")

        if self.hf_client is not None:
            try:
                return self._embed_hf_batch(texts, batch_size)
            except Exception as e:
                logger.error(f"HF batch embedding failed: {e}")
        return None

    def _embed_local_batch(self, texts: List[str], batch_size: int) -> List[List[float]]:
        start = time.time()
        embeddings = self.local_model.encode(
            texts,
            batch_size=batch_size,
            show_progress_bar=False,
            normalize_embeddings=True,
        )
        elapsed = time.time() - start
        logger.debug(f"Local embeddings: {len(texts)} texts in {elapsed:.2f}s")
        return embeddings.tolist()

    def _embed_hf_batch(self, texts: List[str], batch_size: int) -> List[List[float]]:
        vectors: List[List[float]] = []
        for i in range(0, len(texts), batch_size):
            result = self.hf_client.feature_extraction(
                texts[i:i + batch_size],
                model=self.settings.embedding_model,
            )
            for row in np.asarray(result).tolist():
                # Some models return token-level [[...]] per text
                vec = row[0] if row and isinstance(row[0], list) else row
                vectors.append(self._checked(vec))
        return vectors

    def _checked(self, vec: List[float]) -> List[float]:
        """Lock the dimension on first use; zero out mismatched vectors."""
        if not self._dim_locked:
            self._embedding_dim = len(vec)
            self._dim_locked = True
            return vec
        if len(vec) != self._embedding_dim:
            logger.error(f"Embedding returned {len(vec)}-dim, expected {self._embedding_dim}. Using zero vector.")
            return self._zero_vector()
        return vec

    @staticmethod
    def find_similar(
        query_embedding: List[float],
        candidate_embeddings: List[List[float]],
        top_k: int = 5,
        threshold: float = 0.5,
    ) -> List[Dict[str, Any]]:
        """Top-k candidates with cosine ≥ threshold, best first."""
        if not query_embedding or not candidate_embeddings:
            return []
        dim = len(query_embedding)
        keep = [i for i, c in enumerate(candidate_embeddings) if c and len(c) == dim]
        if not keep:
            return []

        query = np.array(query_embedding, dtype=float)
        candidates = np.array([candidate_embeddings[i] for i in keep], dtype=float)

        query_norm = query / (np.linalg.norm(query) + 1e-10)
        cand_norms = np.linalg.norm(candidates, axis=1, keepdims=True)
        cand_norms[cand_norms == 0] = 1
        similarities = np.dot(candidates / cand_norms, query_norm)

        results = []
        for pos in np.argsort(similarities)[::-1][:top_k]:
            sim = float(similarities[pos])
            if sim >= threshold:
                results.append({"index": keep[int(pos)], "similarity": sim})
        return results
