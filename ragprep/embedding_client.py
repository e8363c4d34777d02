"""OpenAI-compatible embeddings client wrapper with error handling."""
import httpx
from typing import List, Optional
import structlog

from ragprep import config
from ragprep.errors import ProviderFailureError

logger = structlog.get_logger()


class OpenAIEmbeddingClient:
    """Async client for an OpenAI-compatible /embeddings endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the embeddings client.

        Args:
            api_key: Provider API key (defaults to config.OPENAI_API_KEY)
            base_url: API base URL (defaults to config.OPENAI_BASE_URL)
            timeout: Transport-level request timeout in seconds; the embedding
                generator enforces its own per-call deadline on top of this
            transport: Optional httpx transport (used to stub the API in tests)
        """
        self.api_key = api_key if api_key is not None else config.OPENAI_API_KEY
        self.base_url = (base_url or config.OPENAI_BASE_URL).rstrip("/")
        self.timeout = timeout or config.EMBEDDING_BATCH_TIMEOUT
        self._transport = transport

    async def create_embeddings(
        self,
        model: str,
        inputs: List[str],
        dimensions: int,
    ) -> List[List[float]]:
        """Request one embedding per input text.

        Args:
            model: Embedding model name
            inputs: Texts to embed
            dimensions: Requested vector length

        Returns:
            Vectors in the same order as inputs

        Raises:
            httpx.HTTPStatusError: On non-2xx API responses
            httpx.HTTPError: On transport errors
            ProviderFailureError: If the response body is malformed
        """
        payload = {
            "model": model,
            "input": inputs,
            "encoding_format": "float",
            "dimensions": dimensions,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                logger.debug(
                    "embedding_request",
                    model=model,
                    input_count=len(inputs),
                    dimensions=dimensions,
                )

                response = await client.post(
                    f"{self.base_url}/embeddings",
                    json=payload,
                    headers=headers,
                )
                response.raise_for_status()

                data = response.json()

        except httpx.HTTPStatusError as e:
            logger.error(
                "embedding_http_error",
                error=str(e),
                status_code=e.response.status_code,
            )
            raise
        except httpx.HTTPError as e:
            logger.error("embedding_connection_error", error=str(e), base_url=self.base_url)
            raise

        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise ProviderFailureError("Embedding response has no data list")

        try:
            ordered = sorted(items, key=lambda item: item.get("index", 0))
            vectors = [item["embedding"] for item in ordered]
        except (AttributeError, KeyError, TypeError) as e:
            raise ProviderFailureError(f"Malformed embedding response: {e}", e) from e

        logger.debug(
            "embedding_response",
            model=model,
            vector_count=len(vectors),
            usage=data.get("usage"),
        )

        return vectors
