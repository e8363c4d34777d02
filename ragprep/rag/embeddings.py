"""Embedding generation with batching, retries and vector validation.

Handles:
- Text preprocessing for the embedding provider
- Single embeddings with timeout and retry on transient failures
- Sequential batch embeddings with progress reporting
- Vector validation and cosine similarity
"""
import asyncio
import inspect
import math
import re
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Sequence, Tuple, Union
import httpx
import numpy as np
import structlog

from ragprep import config
from ragprep.embedding_client import OpenAIEmbeddingClient
from ragprep.errors import DimensionMismatchError, InvalidInputError, ProviderFailureError

logger = structlog.get_logger()

MIN_TEXT_LENGTH = 10
MAX_TEXT_LENGTH = 8000
MIN_TEXT_WORDS = 3
MIN_VECTOR_NORM = 0.001

RETRYABLE_STATUS_CODES = {429, 502, 503, 504}
RETRYABLE_MESSAGES = ("timeout", "rate limit", "temporarily unavailable")

# Keep ASCII, Arabic/Persian block, and the zero-width (non-)joiners Persian uses
UNSUPPORTED_CHARS_PATTERN = re.compile(r"[^\u0000-\u007F\u0600-\u06FF\u200C\u200D]")
CONTROL_CHARS_PATTERN = re.compile(r"[\x00-\x1F\x7F]")

EmbeddingVector = List[float]
ProgressCallback = Callable[[int, int], Union[None, Awaitable[None]]]


class EmbeddingProvider(Protocol):
    """Anything that can turn a list of texts into vectors, in input order."""

    async def create_embeddings(
        self, model: str, inputs: List[str], dimensions: int
    ) -> List[List[float]]:
        ...


def is_retryable_error(error: BaseException) -> bool:
    """Check whether a provider failure is worth retrying."""
    if isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException)):
        return True

    status_code = None
    if isinstance(error, httpx.HTTPStatusError):
        status_code = error.response.status_code
    else:
        status_code = getattr(error, "status_code", None) or getattr(error, "status", None)

    if status_code in RETRYABLE_STATUS_CODES:
        return True

    message = str(error).lower()
    return any(fragment in message for fragment in RETRYABLE_MESSAGES)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Compute cosine similarity between two vectors.

    Args:
        a: First vector
        b: Second vector

    Returns:
        Similarity in [-1, 1]; 0.0 if either vector has zero magnitude

    Raises:
        DimensionMismatchError: If the vectors differ in length
    """
    va = np.asarray(a, dtype=np.float64).ravel()
    vb = np.asarray(b, dtype=np.float64).ravel()

    if va.shape != vb.shape:
        raise DimensionMismatchError(
            f"Vectors must have the same length ({va.size} != {vb.size})"
        )

    magnitude_a = np.linalg.norm(va)
    magnitude_b = np.linalg.norm(vb)
    if magnitude_a == 0 or magnitude_b == 0:
        return 0.0

    similarity = float(np.dot(va, vb) / (magnitude_a * magnitude_b))
    return max(-1.0, min(1.0, similarity))


def validate_text_for_embedding(text: str) -> Tuple[bool, Optional[str]]:
    """Check whether a text is a reasonable embedding input.

    Args:
        text: Candidate text

    Returns:
        Tuple of (is_valid, reason); reason is None when valid
    """
    if not text or not text.strip():
        return False, "Text is empty"
    if len(text) < MIN_TEXT_LENGTH:
        return False, f"Text too short (minimum {MIN_TEXT_LENGTH} characters)"
    if len(text) > MAX_TEXT_LENGTH:
        return False, f"Text too long (maximum {MAX_TEXT_LENGTH} characters)"
    if len(text.split()) < MIN_TEXT_WORDS:
        return False, f"Text must contain at least {MIN_TEXT_WORDS} words"
    return True, None


class EmbeddingGenerator:
    """Produces validated embedding vectors through an injected provider."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        model: Optional[str] = None,
        dimensions: Optional[int] = None,
        timeout: Optional[float] = None,
        batch_timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        batch_size: Optional[int] = None,
        batch_delay: Optional[float] = None,
    ):
        """Initialize the embedding generator.

        Args:
            provider: Embedding provider capability
            model: Embedding model name (default from config)
            dimensions: Expected vector length (default from config)
            timeout: Deadline for a single-text call in seconds
            batch_timeout: Deadline for one batch call in seconds
            max_retries: Retries after the first failed single-text attempt
            retry_delay: Fixed delay between retries in seconds
            batch_size: Texts per provider call in batch mode
            batch_delay: Pause between batches in seconds
        """
        self.provider = provider
        self.model = model or config.EMBEDDING_MODEL
        self.dimensions = config.EMBEDDING_DIMENSIONS if dimensions is None else dimensions
        self.timeout = config.EMBEDDING_TIMEOUT if timeout is None else timeout
        self.batch_timeout = (
            config.EMBEDDING_BATCH_TIMEOUT if batch_timeout is None else batch_timeout
        )
        self.max_retries = config.EMBEDDING_MAX_RETRIES if max_retries is None else max_retries
        self.retry_delay = config.EMBEDDING_RETRY_DELAY if retry_delay is None else retry_delay
        self.batch_size = config.EMBEDDING_BATCH_SIZE if batch_size is None else batch_size
        self.batch_delay = config.EMBEDDING_BATCH_DELAY if batch_delay is None else batch_delay

        if self.dimensions <= 0:
            raise ValueError(f"dimensions must be positive, got {self.dimensions}")
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must not be negative, got {self.max_retries}")

        logger.info(
            "embedding_generator_initialized",
            model=self.model,
            dimensions=self.dimensions,
            batch_size=self.batch_size,
            max_retries=self.max_retries,
        )

    @staticmethod
    def preprocess_text(text: str) -> str:
        """Normalize text before sending it to the provider."""
        if not text:
            return ""

        text = re.sub(r"\s+", " ", text)
        text = CONTROL_CHARS_PATTERN.sub("", text)
        text = UNSUPPORTED_CHARS_PATTERN.sub(" ", text)
        return re.sub(r" {2,}", " ", text).strip()

    def is_embeddable(self, text: str) -> bool:
        """Check whether text survives preprocessing with enough content."""
        return len(self.preprocess_text(text)) >= MIN_TEXT_LENGTH

    def validate_vector(self, vector: Any) -> EmbeddingVector:
        """Check a raw provider vector and return it as a list of floats.

        Raises:
            ProviderFailureError: If the vector is malformed or degenerate
        """
        if not isinstance(vector, (list, tuple, np.ndarray)):
            raise ProviderFailureError(
                f"Embedding is not a list (got {type(vector).__name__})"
            )
        if len(vector) != self.dimensions:
            raise ProviderFailureError(
                f"Embedding has {len(vector)} dimensions, expected {self.dimensions}"
            )

        try:
            values = [float(v) for v in vector]
        except (TypeError, ValueError) as e:
            raise ProviderFailureError(f"Embedding contains non-numeric values: {e}", e) from e

        if not all(math.isfinite(v) for v in values):
            raise ProviderFailureError("Embedding contains non-finite values")

        norm = math.sqrt(sum(v * v for v in values))
        if norm < MIN_VECTOR_NORM:
            raise ProviderFailureError(
                f"Degenerate embedding (norm {norm:.6f} below {MIN_VECTOR_NORM})"
            )

        return values

    async def _request(self, inputs: List[str], timeout: float) -> List[List[float]]:
        """Call the provider, abandoning the call once the deadline passes."""
        return await asyncio.wait_for(
            self.provider.create_embeddings(
                model=self.model, inputs=inputs, dimensions=self.dimensions
            ),
            timeout=timeout,
        )

    async def embed(self, text: str) -> EmbeddingVector:
        """Generate an embedding for a single text.

        Args:
            text: Text to embed

        Returns:
            Validated embedding vector

        Raises:
            InvalidInputError: If the text is empty or too short after preprocessing
            ProviderFailureError: If the provider fails or returns an invalid vector
        """
        clean_text = self.preprocess_text(text)
        if len(clean_text) < MIN_TEXT_LENGTH:
            raise InvalidInputError("Text too short or invalid for embedding")

        attempts = self.max_retries + 1
        last_error: Optional[BaseException] = None
        vectors = None

        for attempt in range(1, attempts + 1):
            try:
                vectors = await self._request([clean_text], self.timeout)
                break
            except Exception as e:
                last_error = e
                retryable = is_retryable_error(e)

                logger.warning(
                    "embedding_attempt_failed",
                    attempt=attempt,
                    attempts=attempts,
                    retryable=retryable,
                    error=str(e) or type(e).__name__,
                    error_type=type(e).__name__,
                )

                if not retryable or attempt == attempts:
                    break

                await asyncio.sleep(self.retry_delay)

        if vectors is None:
            reason = str(last_error) or type(last_error).__name__
            raise ProviderFailureError(
                f"Failed to generate embedding: {reason}", last_error
            ) from last_error

        if len(vectors) != 1:
            raise ProviderFailureError(
                f"Provider returned {len(vectors)} embeddings for 1 input"
            )

        return self.validate_vector(vectors[0])

    async def embed_batch(
        self,
        texts: List[str],
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[EmbeddingVector]:
        """Generate embeddings for many texts in sequential batches.

        Texts that are too short after preprocessing are dropped before any
        provider call; output order follows the surviving inputs.

        Args:
            texts: Texts to embed
            on_progress: Optional callback(processed, total), sync or async

        Returns:
            List of validated embedding vectors

        Raises:
            InvalidInputError: If no text survives preprocessing
            ProviderFailureError: If any batch fails; no partial results are returned
        """
        clean_texts = [self.preprocess_text(t) for t in texts]
        clean_texts = [t for t in clean_texts if len(t) >= MIN_TEXT_LENGTH]

        if not clean_texts:
            raise InvalidInputError("No valid texts provided for embedding")

        total = len(clean_texts)
        skipped = len(texts) - total
        logger.info("batch_embedding_started", total=total, skipped=skipped)

        results: List[EmbeddingVector] = []

        for start in range(0, total, self.batch_size):
            batch = clean_texts[start:start + self.batch_size]
            end = start + len(batch)

            try:
                vectors = await self._request(batch, self.batch_timeout)
            except Exception as e:
                reason = str(e) or type(e).__name__
                logger.error(
                    "batch_embedding_failed",
                    batch_start=start,
                    batch_end=end,
                    error=reason,
                    error_type=type(e).__name__,
                )
                raise ProviderFailureError(
                    f"Failed to generate embeddings for batch {start}-{end}: {reason}", e
                ) from e

            if len(vectors) != len(batch):
                raise ProviderFailureError(
                    f"Provider returned {len(vectors)} embeddings for {len(batch)} inputs"
                )

            results.extend(self.validate_vector(v) for v in vectors)

            if on_progress is not None:
                outcome = on_progress(len(results), total)
                if inspect.isawaitable(outcome):
                    await outcome

            logger.debug("batch_embedded", processed=len(results), total=total)

            if end < total and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)

        logger.info("batch_embedding_completed", embeddings=len(results))

        return results


def create_embedding_generator(
    client: Optional[OpenAIEmbeddingClient] = None, **kwargs: Any
) -> EmbeddingGenerator:
    """Build a generator backed by the configured OpenAI-compatible API.

    Args:
        client: Embeddings client (one built from config if omitted)
        **kwargs: Overrides passed to EmbeddingGenerator

    Returns:
        EmbeddingGenerator instance
    """
    return EmbeddingGenerator(client or OpenAIEmbeddingClient(), **kwargs)
