"""RAG (Retrieval-Augmented Generation) preparation components.

This package contains modules for:
- Markdown normalization and frontmatter parsing
- Token-bounded document chunking with overlap
- Embedding generation
- Similarity ranking of stored chunks
- Ingest and retrieval orchestration
"""
from ragprep.rag.chunker import TextChunker, TextSegment, chunk
from ragprep.rag.embeddings import (
    EmbeddingGenerator,
    cosine_similarity,
    create_embedding_generator,
    validate_text_for_embedding,
)
from ragprep.rag.ranker import (
    RankCandidate,
    RankedResult,
    RetrievalOptions,
    SimilarityRanker,
    rank,
)

__all__ = [
    "TextChunker",
    "TextSegment",
    "chunk",
    "EmbeddingGenerator",
    "cosine_similarity",
    "create_embedding_generator",
    "validate_text_for_embedding",
    "RankCandidate",
    "RankedResult",
    "RetrievalOptions",
    "SimilarityRanker",
    "rank",
]
