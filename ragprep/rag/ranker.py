"""Similarity ranking of stored chunk vectors against a query vector.

Handles:
- Cosine scoring and threshold filtering
- Recency tie-breaks
- Diversity-aware selection (near-duplicate suppression)
- Optional lexical reranking blended with cosine scores
"""
from datetime import date, datetime, time, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence
from dataclasses import dataclass, field
import numpy as np
from pydantic import BaseModel, Field
import structlog

from ragprep import config
from ragprep.errors import DimensionMismatchError, InvalidInputError

logger = structlog.get_logger()

Reranker = Callable[[str, str], float]


class RetrievalOptions(BaseModel):
    """Per-request retrieval settings."""

    similarity_threshold: float = Field(
        config.SIMILARITY_THRESHOLD, ge=0.0, le=1.0,
        description="Minimum cosine similarity a candidate needs",
    )
    max_chunks: int = Field(config.MAX_CHUNKS, ge=1, le=20, description="Result size limit")
    diversity_boost: bool = False
    temporal_boost: bool = False
    rerank: bool = False
    diversity_threshold: float = Field(
        config.DIVERSITY_THRESHOLD, gt=0.0, le=1.0,
        description="Average similarity to already selected results that counts as a near-duplicate",
    )
    rerank_weight: float = Field(
        config.RERANK_WEIGHT, ge=0.0, le=1.0,
        description="Share of the lexical score in the blended rerank score",
    )


@dataclass
class RankCandidate:
    """A stored segment offered for ranking."""

    segment_id: Any
    embedding: Sequence[float]
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def content(self) -> str:
        return self.metadata.get("content") or ""

    @property
    def created_at(self) -> float:
        """Source document creation time as epoch seconds (-inf when unknown)."""
        return _to_timestamp(self.metadata.get("created_at"))


@dataclass
class RankedResult:
    """A selected segment with the score that placed it."""

    segment_id: Any
    score: float
    similarity: float
    metadata: Dict[str, Any] = field(default_factory=dict)


def _to_timestamp(value: Any) -> float:
    if value is None:
        return float("-inf")
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc).timestamp()
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return _to_timestamp(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return float("-inf")
    return float("-inf")


def _query_words(text: str) -> List[str]:
    return [w for w in text.lower().split() if len(w) > 2]


def _word_matches(word: str, content_words: List[str]) -> bool:
    return any(word in cw or (len(cw) > 2 and cw in word) for cw in content_words)


def lexical_overlap_score(query: str, content: str) -> float:
    """Score keyword overlap between a query and a segment.

    The share of query words (longer than two characters) found in the
    content, plus 0.1 when the whole query appears verbatim. Capped at 1.
    """
    words = _query_words(query)
    content_lower = content.lower()
    if not words or not content_lower.strip():
        return 0.0

    content_words = content_lower.split()
    matches = sum(1 for w in words if _word_matches(w, content_words))
    score = matches / len(words)

    phrase = " ".join(query.lower().split())
    if phrase and phrase in " ".join(content_words):
        score += 0.1

    return min(score, 1.0)


def calculate_quality_score(
    results: List[RankedResult],
    query_text: Optional[str] = None,
    max_chunks: Optional[int] = None,
) -> float:
    """Summarize retrieval quality in [0, 1] for reporting.

    Mean similarity, plus up to 0.1 for returning a full result set and up
    to 0.1 for covering the query's keywords.
    """
    if not results:
        return 0.0

    max_chunks = max_chunks or config.MAX_CHUNKS
    avg_similarity = sum(r.similarity for r in results) / len(results)
    quantity_bonus = min(len(results) / max_chunks, 1.0) * 0.1

    coverage_bonus = 0.0
    words = _query_words(query_text or "")
    if words:
        content_words = [
            w for r in results for w in (r.metadata.get("content") or "").lower().split()
        ]
        covered = sum(1 for w in words if _word_matches(w, content_words))
        coverage_bonus = covered / len(words) * 0.1

    return max(0.0, min(avg_similarity + quantity_bonus + coverage_bonus, 1.0))


class SimilarityRanker:
    """Ranks candidate segments for context injection."""

    def __init__(self, reranker: Optional[Reranker] = None):
        """Initialize the ranker.

        Args:
            reranker: Secondary scorer (query_text, content) -> [0, 1];
                lexical overlap if omitted
        """
        self.reranker = reranker or lexical_overlap_score

    def rank(
        self,
        query_vector: Sequence[float],
        candidates: List[RankCandidate],
        options: Optional[RetrievalOptions] = None,
        query_text: Optional[str] = None,
    ) -> List[RankedResult]:
        """Select and order the candidates most relevant to a query.

        Args:
            query_vector: Query embedding
            candidates: Stored segments with their embeddings and metadata
            options: Retrieval options (defaults if omitted)
            query_text: Original query, needed for reranking

        Returns:
            At most max_chunks results, best first, each with
            similarity >= similarity_threshold

        Raises:
            InvalidInputError: If the query vector is empty or not one-dimensional
            DimensionMismatchError: If a candidate vector length differs from the query
        """
        options = options or RetrievalOptions()

        if not candidates:
            return []

        query = np.asarray(query_vector, dtype=np.float64)
        if query.ndim != 1 or query.size == 0:
            raise InvalidInputError("Query vector must be a non-empty one-dimensional sequence")

        rows = []
        for candidate in candidates:
            vector = np.asarray(candidate.embedding, dtype=np.float64).ravel()
            if vector.shape != query.shape:
                raise DimensionMismatchError(
                    f"Candidate {candidate.segment_id!r} has {vector.size} dimensions, "
                    f"query has {query.size}"
                )
            rows.append(vector)

        matrix = np.vstack(rows)
        unit_rows = self._normalize_rows(matrix)
        similarities = self._cosine_similarities(query, matrix)

        survivors = [
            i for i in range(len(candidates))
            if similarities[i] >= options.similarity_threshold
        ]

        if options.temporal_boost:
            timestamps = [c.created_at for c in candidates]
            order = sorted(survivors, key=lambda i: (-similarities[i], -timestamps[i], i))
        else:
            order = sorted(survivors, key=lambda i: -similarities[i])

        if options.diversity_boost:
            pool = self._select_diverse(
                order, unit_rows, options.max_chunks, options.diversity_threshold
            )
        else:
            pool = order

        scores = {i: float(similarities[i]) for i in pool}

        if options.rerank and query_text and query_text.strip():
            weight = options.rerank_weight
            for i in pool:
                lexical = self.reranker(query_text, candidates[i].content)
                scores[i] = (1.0 - weight) * scores[i] + weight * lexical
            pool = sorted(pool, key=lambda i: -scores[i])
        elif options.rerank:
            logger.debug("rerank_skipped", reason="no_query_text")

        results = [
            RankedResult(
                segment_id=candidates[i].segment_id,
                score=scores[i],
                similarity=float(similarities[i]),
                metadata=candidates[i].metadata,
            )
            for i in pool[: options.max_chunks]
        ]

        logger.info(
            "ranking_completed",
            candidates=len(candidates),
            above_threshold=len(survivors),
            returned=len(results),
            top_similarity=results[0].similarity if results else None,
            diversity_boost=options.diversity_boost,
            temporal_boost=options.temporal_boost,
            rerank=options.rerank,
        )

        return results

    @staticmethod
    def _normalize_rows(matrix: np.ndarray) -> np.ndarray:
        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        return np.divide(matrix, norms, out=np.zeros_like(matrix), where=norms > 0)

    @staticmethod
    def _cosine_similarities(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
        denominators = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        dots = matrix @ query
        similarities = np.divide(
            dots, denominators, out=np.zeros_like(dots), where=denominators > 0
        )
        return np.clip(similarities, -1.0, 1.0)

    @staticmethod
    def _select_diverse(
        order: List[int],
        unit_rows: np.ndarray,
        max_chunks: int,
        threshold: float,
    ) -> List[int]:
        """Greedy selection skipping candidates too similar to those already picked.

        Repeatedly takes the best remaining candidate whose mean similarity to
        the selected set is below threshold.
        """
        selected: List[int] = []
        remaining = list(order)

        while remaining and len(selected) < max_chunks:
            picked = None
            for position, index in enumerate(remaining):
                if not selected:
                    picked = position
                    break
                redundancy = float(np.mean(unit_rows[selected] @ unit_rows[index]))
                if redundancy < threshold:
                    picked = position
                    break

            if picked is None:
                break
            selected.append(remaining.pop(picked))

        logger.debug(
            "diversity_selection",
            considered=len(order),
            selected=len(selected),
        )

        return selected


# Singleton instance for convenience
_ranker_instance: Optional[SimilarityRanker] = None


def get_ranker() -> SimilarityRanker:
    """Get a singleton ranker instance with the default reranker."""
    global _ranker_instance
    if _ranker_instance is None:
        _ranker_instance = SimilarityRanker()
    return _ranker_instance


def rank(
    query_vector: Sequence[float],
    candidates: List[RankCandidate],
    options: Optional[RetrievalOptions] = None,
    query_text: Optional[str] = None,
) -> List[RankedResult]:
    """Rank candidates with the default ranker (convenience function)."""
    return get_ranker().rank(query_vector, candidates, options, query_text=query_text)
