"""
Semantic search over embedded message chunks.

Chunks are embedded once during enrichment. A query is answered by
cosine similarity against every stored chunk; anything at or below the
similarity threshold counts as no match at all.
"""
import logging
from typing import List, Optional, Sequence

import numpy as np

from mailsearch.core.ai.ollama_client import OllamaClient
from mailsearch.core.database.models import Email
from mailsearch.core.database.repository import MailRepository
from mailsearch.core.email.models import ChunkHit
from mailsearch.core.search.chunking import build_embedding_text, chunk_text

logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.3


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 for empty, zero-length or mismatched vectors.
    """
    if not vec1 or not vec2 or len(vec1) != len(vec2):
        return 0.0

    a = np.asarray(vec1, dtype=float)
    b = np.asarray(vec2, dtype=float)

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(a, b) / (norm_a * norm_b))


class VectorRetriever:
    """Chunk indexing and similarity ranking"""

    def __init__(
        self,
        repository: MailRepository,
        embedder: OllamaClient,
        chunk_size: int = 500,
        chunk_overlap: int = 100,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ):
        self.repository = repository
        self.embedder = embedder
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.similarity_threshold = similarity_threshold

    def index_message(self, email: Email) -> int:
        """
        Embed and store the chunks of one persisted message.

        Chunks from an earlier run are replaced. Chunks whose embedding
        request fails are dropped without retry. Returns the number of
        chunks stored.
        """
        text = build_embedding_text(email.subject, email.sender, email.date, email.body)
        chunks = chunk_text(text, self.chunk_size, self.chunk_overlap)
        self.repository.delete_chunks_for(email.id)

        saved = 0
        for chunk in chunks:
            embedding = self.embedder.embed(chunk.text)
            if not embedding:
                logger.warning(f"No embedding for chunk {chunk.index} of mail {email.id}, dropping it")
                continue
            self.repository.save_chunk(email.id, email.subject, chunk.text, embedding)
            saved += 1

        logger.debug(f"Indexed mail {email.id}: {saved}/{len(chunks)} chunks")
        return saved

    def search(self, query_embedding: Sequence[float], top_k: int = 3) -> List[ChunkHit]:
        """Chunks with similarity strictly above the threshold, best first."""
        if not query_embedding:
            return []

        hits = []
        for chunk in self.repository.load_chunks():
            score = cosine_similarity(query_embedding, chunk.embedding or [])
            if score <= self.similarity_threshold:
                continue
            hits.append(ChunkHit(
                chunk_id=chunk.id,
                mail_id=chunk.mail_id,
                subject=chunk.subject or "",
                content=chunk.content,
                score=score,
            ))

        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:max(0, top_k)]

    def search_text(self, query: str, top_k: int = 3) -> List[ChunkHit]:
        """Embed the query, then search. A failed query embedding finds nothing."""
        query_embedding: Optional[List[float]] = self.embedder.embed(query) if query and query.strip() else None
        if not query_embedding:
            logger.warning("Query embedding unavailable, semantic search returns no results")
            return []
        return self.search(query_embedding, top_k)
