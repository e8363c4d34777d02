"""Tests for SimilarityRanker and scoring helpers."""
import math

import pytest
from pydantic import ValidationError

from ragprep.errors import DimensionMismatchError, InvalidInputError
from ragprep.rag.ranker import (
    RankCandidate,
    RankedResult,
    RetrievalOptions,
    SimilarityRanker,
    calculate_quality_score,
    lexical_overlap_score,
    rank,
)


@pytest.fixture
def ranker():
    """Provide ranker with the lexical reranker."""
    return SimilarityRanker()


def candidate(segment_id, embedding, **metadata) -> RankCandidate:
    return RankCandidate(segment_id=segment_id, embedding=embedding, metadata=metadata)


class TestOptions:
    """Tests for RetrievalOptions defaults and bounds."""

    def test_defaults(self):
        options = RetrievalOptions()
        assert options.similarity_threshold == 0.3
        assert options.max_chunks == 6
        assert options.diversity_boost is False
        assert options.temporal_boost is False
        assert options.rerank is False

    @pytest.mark.parametrize(
        "overrides",
        [
            {"similarity_threshold": 1.5},
            {"similarity_threshold": -0.1},
            {"max_chunks": 0},
            {"max_chunks": 21},
            {"rerank_weight": 2.0},
        ],
    )
    def test_out_of_range_rejected(self, overrides):
        with pytest.raises(ValidationError):
            RetrievalOptions(**overrides)


class TestRank:
    """Tests for cosine ranking."""

    def test_no_candidates(self, ranker):
        assert ranker.rank([1.0, 0.0], []) == []

    def test_threshold_filters_everything(self, ranker):
        half = [0.5, math.sqrt(0.75)]
        results = ranker.rank(
            [1.0, 0.0],
            [candidate("a", half), candidate("b", half)],
            RetrievalOptions(similarity_threshold=0.99),
        )
        assert results == []

    def test_ordered_and_truncated(self, ranker):
        candidates = [candidate(k, [1.0, k * 0.3]) for k in range(8)]
        results = ranker.rank(
            [1.0, 0.0], list(reversed(candidates)), RetrievalOptions(max_chunks=3)
        )

        assert [r.segment_id for r in results] == [0, 1, 2]
        assert results[0].similarity == pytest.approx(1.0)
        for first, second in zip(results, results[1:]):
            assert first.score >= second.score
        for result in results:
            assert result.similarity >= 0.3

    def test_result_carries_metadata(self, ranker):
        results = ranker.rank([1.0, 0.0], [candidate("a", [1.0, 0.1], content="hello")])
        assert results[0].metadata == {"content": "hello"}
        assert isinstance(results[0], RankedResult)

    def test_equal_scores_keep_input_order(self, ranker):
        same = [0.8, 0.6]
        candidates = [candidate(name, same) for name in ("first", "second", "third")]

        results = ranker.rank([1.0, 0.0], candidates)

        assert [r.segment_id for r in results] == ["first", "second", "third"]

    def test_temporal_boost_prefers_newer_on_ties(self, ranker):
        same = [0.8, 0.6]
        candidates = [
            candidate("old", same, created_at="2024-01-01"),
            candidate("undated", same),
            candidate("new", same, created_at="2025-06-01T12:00:00Z"),
        ]

        plain = ranker.rank([1.0, 0.0], candidates)
        boosted = ranker.rank([1.0, 0.0], candidates, RetrievalOptions(temporal_boost=True))

        assert [r.segment_id for r in plain] == ["old", "undated", "new"]
        assert [r.segment_id for r in boosted] == ["new", "old", "undated"]

    def test_temporal_boost_never_beats_similarity(self, ranker):
        candidates = [
            candidate("better", [1.0, 0.1], created_at="2020-01-01"),
            candidate("newer", [1.0, 0.5], created_at="2025-01-01"),
        ]
        results = ranker.rank([1.0, 0.0], candidates, RetrievalOptions(temporal_boost=True))
        assert [r.segment_id for r in results] == ["better", "newer"]

    def test_diversity_skips_near_duplicates(self, ranker):
        candidates = [
            candidate("a", [0.9, 0.1, 0.0]),
            candidate("b", [0.9, 0.1, 0.0001]),
            candidate("c", [0.7, 0.0, 0.7]),
        ]
        query = [1.0, 0.0, 0.0]

        plain = ranker.rank(query, candidates, RetrievalOptions(max_chunks=2))
        diverse = ranker.rank(
            query, candidates, RetrievalOptions(max_chunks=2, diversity_boost=True)
        )

        assert [r.segment_id for r in plain] == ["a", "b"]
        assert [r.segment_id for r in diverse] == ["a", "c"]

    def test_rerank_blends_lexical_score(self, ranker):
        candidates = [
            candidate("close", [1.0, 0.2], content="Unrelated cooking recipe"),
            candidate("relevant", [1.0, 0.4], content="Guide to solar panel installation steps"),
        ]
        options = RetrievalOptions(rerank=True, rerank_weight=0.5)

        results = ranker.rank(
            [1.0, 0.0], candidates, options, query_text="solar panel installation"
        )

        assert [r.segment_id for r in results] == ["relevant", "close"]
        assert results[0].score > results[0].similarity * 0.5
        assert results[1].score == pytest.approx(results[1].similarity * 0.5)

    def test_rerank_without_query_text_keeps_cosine_order(self, ranker):
        candidates = [
            candidate("close", [1.0, 0.2], content="Unrelated cooking recipe"),
            candidate("relevant", [1.0, 0.4], content="Guide to solar panel installation"),
        ]
        results = ranker.rank([1.0, 0.0], candidates, RetrievalOptions(rerank=True))

        assert [r.segment_id for r in results] == ["close", "relevant"]
        assert results[0].score == results[0].similarity

    def test_custom_reranker(self):
        ranker = SimilarityRanker(reranker=lambda query, content: 1.0 if "pick" in content else 0.0)
        candidates = [
            candidate("a", [1.0, 0.1], content="nothing"),
            candidate("b", [1.0, 0.3], content="pick me"),
        ]
        results = ranker.rank(
            [1.0, 0.0], candidates, RetrievalOptions(rerank=True, rerank_weight=0.5), "q"
        )
        assert results[0].segment_id == "b"

    def test_dimension_mismatch(self, ranker):
        with pytest.raises(DimensionMismatchError):
            ranker.rank([1.0, 0.0, 0.0], [candidate("a", [1.0, 0.0])])

    def test_empty_query_vector(self, ranker):
        with pytest.raises(InvalidInputError):
            ranker.rank([], [candidate("a", [1.0, 0.0])])

    def test_zero_candidate_vector_scores_zero(self, ranker):
        results = ranker.rank(
            [1.0, 0.0],
            [candidate("zero", [0.0, 0.0])],
            RetrievalOptions(similarity_threshold=0.0),
        )
        assert results[0].similarity == 0.0

    def test_module_rank_uses_defaults(self):
        results = rank([1.0, 0.0], [candidate("a", [1.0, 0.0]), candidate("b", [0.0, 1.0])])
        assert [r.segment_id for r in results] == ["a"]


class TestCandidate:
    """Tests for RankCandidate metadata helpers."""

    def test_created_at_parsing(self):
        assert candidate("a", [1.0], created_at=10).created_at == 10.0
        assert candidate("a", [1.0], created_at="not a date").created_at == float("-inf")
        assert candidate("a", [1.0]).created_at == float("-inf")
        assert (
            candidate("a", [1.0], created_at="2024-01-02").created_at
            > candidate("a", [1.0], created_at="2024-01-01").created_at
        )

    def test_content(self):
        assert candidate("a", [1.0]).content == ""
        assert candidate("a", [1.0], content="text").content == "text"


class TestScoringHelpers:
    """Tests for lexical and quality scores."""

    def test_lexical_full_match_capped(self):
        assert lexical_overlap_score("solar panel", "Solar panel guide") == 1.0

    def test_lexical_partial(self):
        assert lexical_overlap_score("solar wind", "solar energy basics") == pytest.approx(0.5)

    def test_lexical_no_match(self):
        assert lexical_overlap_score("solar panel", "wind turbine") == 0.0

    def test_lexical_short_words_ignored(self):
        assert lexical_overlap_score("an ox", "an ox stood") == 0.0

    def test_quality_score(self):
        results = [
            RankedResult("a", 0.8, 0.8, {"content": "solar energy"}),
            RankedResult("b", 0.6, 0.6, {"content": "battery storage"}),
        ]
        score = calculate_quality_score(results, query_text="solar panels", max_chunks=2)
        assert score == pytest.approx(0.7 + 0.1 + 0.05)

    def test_quality_score_empty(self):
        assert calculate_quality_score([]) == 0.0
