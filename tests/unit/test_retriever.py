"""Tests for Retriever."""
import pytest

from ragprep.rag.ranker import RankCandidate, RetrievalOptions
from ragprep.rag.retriever import Retriever


@pytest.fixture
def retriever(provider, make_generator):
    """Provide retriever over the fake provider."""
    return Retriever(make_generator(provider), short_query_template="about: {query} (details)")


class TestPrepareQuery:
    """Tests for query normalization."""

    def test_collapses_whitespace_and_lowercases(self, retriever):
        assert retriever.prepare_query("  Solar   PANEL\tGuide ") == "solar panel guide"

    def test_short_query_wrapped(self, retriever):
        assert retriever.prepare_query("API") == "about: api (details)"


class TestRetrieve:
    """Tests for retrieve."""

    @pytest.mark.asyncio
    async def test_empty_query_skips_provider(self, retriever, provider, basis):
        candidates = [RankCandidate("a", basis(3))]

        assert await retriever.retrieve("   ", candidates) == []
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_no_candidates_skips_provider(self, retriever, provider):
        assert await retriever.retrieve("how do solar panels work", []) == []
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_embeds_prepared_query_and_ranks(self, retriever, provider, basis):
        query = "Solar Panels Guide"
        prepared = "solar panels guide"
        candidates = [
            RankCandidate("far", basis(40), {"content": "battery chemistry"}),
            RankCandidate("match", basis(len(prepared)), {"content": "solar panels guide"}),
        ]

        results = await retriever.retrieve(query, candidates)

        assert provider.calls == [[prepared]]
        assert [r.segment_id for r in results] == ["match"]
        assert results[0].similarity == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_options_forwarded(self, retriever, basis):
        candidates = [RankCandidate(i, basis(18)) for i in range(5)]

        results = await retriever.retrieve(
            "solar panels guide", candidates, RetrievalOptions(max_chunks=2)
        )

        assert [r.segment_id for r in results] == [0, 1]
