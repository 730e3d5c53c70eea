"""
Search module

Two independent ways to query the corpus: keyword frequency scoring and
embedding similarity over message chunks.
"""
from mailsearch.core.search.lexical import LexicalScorer
from mailsearch.core.search.chunking import TextChunk, build_embedding_text, chunk_text, merge_chunks
from mailsearch.core.search.vector_retriever import VectorRetriever, cosine_similarity

__all__ = [
    'LexicalScorer',
    'TextChunk',
    'build_embedding_text',
    'chunk_text',
    'merge_chunks',
    'VectorRetriever',
    'cosine_similarity',
]
