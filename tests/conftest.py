"""Pytest configuration and fixtures for unit tests."""
import asyncio
from typing import Callable, Dict, List, Optional

import pytest

from ragprep.rag.chunker import TextChunker
from ragprep.rag.embeddings import EmbeddingGenerator


DIMENSIONS = 1536


class WordTokenizer:
    """Deterministic tokenizer: one token per whitespace-separated word."""

    def __init__(self):
        self._ids: Dict[str, int] = {}
        self._words: List[str] = []
        self.closed = False

    def encode(self, text: str) -> List[int]:
        tokens = []
        for word in text.split():
            if word not in self._ids:
                self._ids[word] = len(self._words)
                self._words.append(word)
            tokens.append(self._ids[word])
        return tokens

    def decode(self, tokens: List[int]) -> str:
        return " ".join(self._words[t] for t in tokens)

    def close(self) -> None:
        self.closed = True


def basis_vector(position: int, dimensions: int = DIMENSIONS) -> List[float]:
    """Non-degenerate vector with most weight on one axis."""
    vector = [0.0] * dimensions
    vector[0] = 0.1
    vector[position % dimensions] += 1.0
    return vector


class FakeProvider:
    """Embedding provider stub recording every call.

    Args:
        failures: Exceptions raised by successive calls before succeeding
        vector_fn: Maps an input text to the vector returned for it
        delays: Seconds to sleep on successive calls
    """

    def __init__(
        self,
        failures: Optional[List[BaseException]] = None,
        vector_fn: Optional[Callable[[str], List[float]]] = None,
        delays: Optional[List[float]] = None,
    ):
        self.failures = list(failures or [])
        self.vector_fn = vector_fn or (lambda text: basis_vector(len(text)))
        self.delays = list(delays or [])
        self.calls: List[List[str]] = []

    async def create_embeddings(self, model: str, inputs: List[str], dimensions: int):
        self.calls.append(list(inputs))
        if self.delays:
            await asyncio.sleep(self.delays.pop(0))
        if self.failures:
            raise self.failures.pop(0)
        return [self.vector_fn(text) for text in inputs]


@pytest.fixture
def tokenizer() -> WordTokenizer:
    """Provide word tokenizer."""
    return WordTokenizer()


@pytest.fixture
def chunker(tokenizer) -> TextChunker:
    """Provide chunker with a small budget."""
    return TextChunker(max_tokens=64, overlap_tokens=12, tokenizer=tokenizer)


@pytest.fixture
def provider() -> FakeProvider:
    """Provide a healthy fake provider."""
    return FakeProvider()


@pytest.fixture
def make_generator():
    """Build generators without real delays."""

    def _make(provider, **kwargs) -> EmbeddingGenerator:
        settings = {"retry_delay": 0, "batch_delay": 0, "dimensions": DIMENSIONS}
        settings.update(kwargs)
        return EmbeddingGenerator(provider, **settings)

    return _make


@pytest.fixture
def make_provider():
    """Provide the fake provider class for tests needing failures or custom vectors."""
    return FakeProvider


@pytest.fixture
def basis():
    """Provide the basis vector builder."""
    return basis_vector
