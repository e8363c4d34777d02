"""Retriever composing query embedding and similarity ranking.

Handles:
- Query normalization
- Query embedding generation
- Ranking of externally fetched candidates
"""
import re
from typing import List, Optional
import structlog

from ragprep import config
from ragprep.rag.embeddings import EmbeddingGenerator, MIN_TEXT_LENGTH
from ragprep.rag.ranker import RankCandidate, RankedResult, RetrievalOptions, SimilarityRanker

logger = structlog.get_logger()


class Retriever:
    """Semantic retriever for RAG pipeline."""

    def __init__(
        self,
        generator: EmbeddingGenerator,
        ranker: Optional[SimilarityRanker] = None,
        short_query_template: Optional[str] = None,
    ):
        """Initialize the retriever.

        Args:
            generator: Embedding generator used for query vectors
            ranker: Similarity ranker (a default one is created if omitted)
            short_query_template: Wrapper for queries too short to embed,
                with a {query} placeholder (default from config)
        """
        self.generator = generator
        self.ranker = ranker or SimilarityRanker()
        self.short_query_template = short_query_template or config.SHORT_QUERY_TEMPLATE

    def prepare_query(self, query: str) -> str:
        """Normalize a user query so it is long enough to embed meaningfully."""
        processed = re.sub(r"\s+", " ", query.strip()).lower()

        if len(processed) < MIN_TEXT_LENGTH:
            return self.short_query_template.format(query=processed)

        return processed

    async def retrieve(
        self,
        query: str,
        candidates: List[RankCandidate],
        options: Optional[RetrievalOptions] = None,
    ) -> List[RankedResult]:
        """Retrieve the most relevant candidates for a query.

        Args:
            query: User query text
            candidates: Stored segments fetched by the caller
            options: Retrieval options (defaults if omitted)

        Returns:
            List of RankedResult objects, best first

        Raises:
            ProviderFailureError: If the query cannot be embedded
        """
        if not query or not query.strip():
            logger.warning("empty_query_provided")
            return []

        if not candidates:
            logger.info("no_candidates_provided")
            return []

        prepared = self.prepare_query(query)

        logger.info(
            "retrieval_started",
            query_length=len(query),
            candidates=len(candidates),
        )

        query_vector = await self.generator.embed(prepared)

        results = self.ranker.rank(query_vector, candidates, options, query_text=query)

        logger.info(
            "retrieval_completed",
            query_length=len(query),
            results_returned=len(results),
            top_score=results[0].score if results else None,
        )

        return results
