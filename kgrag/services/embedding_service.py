"""Embedding service for generating vector embeddings."""

import openai
from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from kgrag.exceptions import ProviderError

TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
)


class EmbeddingService:
    """Service for generating embeddings using OpenAI."""

    def __init__(self, api_key: str, model: str = "text-embedding-ada-002") -> None:
        """Initialize embedding service."""
        self.client = openai.AsyncOpenAI(api_key=api_key)
        self.model = model
        logger.info(f"Initialized EmbeddingService with model: {model}")

    @retry(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _create_embeddings(self, texts: list[str]) -> list[list[float]]:
        response = await self.client.embeddings.create(
            model=self.model,
            input=texts,
        )
        return [item.embedding for item in response.data]

    async def generate_embedding(self, text: str) -> list[float]:
        """Generate embedding for a single text."""
        if not text or not text.strip():
            raise ProviderError("Cannot embed empty text", provider="embedding")

        try:
            embeddings = await self._create_embeddings([text])
        except Exception as e:
            logger.error(f"Error generating embedding: {e}")
            raise ProviderError(f"Embedding request failed: {e}", provider="embedding") from e

        if not embeddings:
            raise ProviderError("Embedding response was empty", provider="embedding")

        logger.debug(f"Generated embedding for text of length {len(text)}")
        return embeddings[0]

    async def generate_embeddings(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts in batch."""
        if not texts:
            return []
        if any(not t or not t.strip() for t in texts):
            raise ProviderError("Cannot embed empty text", provider="embedding")

        try:
            embeddings = await self._create_embeddings(texts)
        except Exception as e:
            logger.error(f"Error generating batch embeddings: {e}")
            raise ProviderError(f"Batch embedding request failed: {e}", provider="embedding") from e

        if len(embeddings) != len(texts):
            raise ProviderError(
                f"Expected {len(texts)} embeddings, got {len(embeddings)}",
                provider="embedding",
            )

        logger.info(f"Generated {len(embeddings)} embeddings")
        return embeddings
