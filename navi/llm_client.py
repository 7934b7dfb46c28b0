"""Ollama client wrapper with error handling."""
from typing import AsyncIterator, List, Optional
import httpx
import structlog

from navi import config
from navi.errors import (
    EndpointError,
    EndpointUnavailableError,
    GenerationEndpointError,
    MalformedResponseError,
)

logger = structlog.get_logger()


class OllamaClient:
    """Async client for the Ollama embedding and generation endpoints."""

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        embedding_model: str = None,
        chat_model: str = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
            timeout: Request timeout in seconds (defaults to config.OLLAMA_TIMEOUT)
            embedding_model: Model used by embed() (defaults to config.EMBEDDING_MODEL)
            chat_model: Model used by generate_stream() (defaults to config.CHAT_MODEL)
            transport: Optional httpx transport, mainly for tests
        """
        self.base_url = (base_url or config.OLLAMA_BASE_URL).rstrip("/")
        self.timeout = timeout or config.OLLAMA_TIMEOUT
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL
        self.chat_model = chat_model or config.CHAT_MODEL
        self.transport = transport

    def _client(self, timeout: float = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout or self.timeout,
            transport=self.transport,
        )

    async def embed(self, text: str) -> List[float]:
        """Generate an embedding vector for a text.

        One request per call, no retries.

        Args:
            text: Text to embed

        Returns:
            Embedding vector

        Raises:
            EndpointUnavailableError: If Ollama cannot be reached or times out
            EndpointError: If Ollama answers with a non-success status
            MalformedResponseError: If the response has no usable 'embedding'
        """
        payload = {
            "model": self.embedding_model,
            "prompt": text,
        }

        logger.debug(
            "ollama_embedding_request",
            model=self.embedding_model,
            prompt_length=len(text),
        )

        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.base_url}/api/embeddings",
                    json=payload,
                )
        except (httpx.ConnectError, httpx.TimeoutException) as e:
            logger.error("ollama_connection_error", error=str(e), base_url=self.base_url)
            raise EndpointUnavailableError(f"Embedding endpoint unavailable: {e}") from e
        except httpx.HTTPError as e:
            logger.error("ollama_embedding_error", error=str(e))
            raise EndpointUnavailableError(f"Embedding request failed: {e}") from e

        if response.is_error:
            logger.error(
                "ollama_embedding_error",
                status_code=response.status_code,
                body_preview=response.text[:200],
            )
            raise EndpointError(
                f"Embeddings API error ({response.status_code}): {response.text[:200]}",
                status=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponseError("Embedding response is not valid JSON") from e

        embedding = data.get("embedding") if isinstance(data, dict) else None
        if not isinstance(embedding, list) or not embedding:
            logger.error("ollama_embedding_malformed", keys=list(data) if isinstance(data, dict) else None)
            raise MalformedResponseError("Invalid embedding response format")

        try:
            vector = [float(value) for value in embedding]
        except (TypeError, ValueError) as e:
            raise MalformedResponseError("Embedding contains non-numeric values") from e

        logger.debug(
            "ollama_embedding_response",
            model=self.embedding_model,
            dimension=len(vector),
        )

        return vector

    async def generate_stream(self, prompt: str) -> AsyncIterator[bytes]:
        """Stream raw response bytes from the generation endpoint.

        The upstream status is checked before the first byte is yielded, so
        failures surface on the first iteration. Closing the generator closes
        the upstream connection.

        Args:
            prompt: Full prompt text

        Yields:
            Raw byte chunks exactly as Ollama sends them

        Raises:
            GenerationEndpointError: On connection failure or non-success status
        """
        payload = {
            "model": self.chat_model,
            "prompt": prompt,
            "stream": True,
        }

        logger.info(
            "ollama_generate_request",
            model=self.chat_model,
            prompt_length=len(prompt),
        )

        # Streaming replies can idle between tokens; only bound connecting
        timeout = httpx.Timeout(None, connect=self.timeout)

        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/api/generate",
                    json=payload,
                ) as response:
                    if response.is_error:
                        body = await response.aread()
                        logger.error(
                            "ollama_generate_error",
                            status_code=response.status_code,
                            body_preview=body[:200].decode("utf-8", "replace"),
                        )
                        raise GenerationEndpointError(
                            f"Failed to get response from model: {response.status_code}",
                            status=response.status_code,
                        )

                    bytes_forwarded = 0
                    async for chunk in response.aiter_raw():
                        bytes_forwarded += len(chunk)
                        yield chunk

                    logger.info("ollama_generate_completed", bytes_forwarded=bytes_forwarded)

        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            logger.error("ollama_connection_error", error=str(e), base_url=self.base_url)
            raise GenerationEndpointError(f"Generation endpoint unavailable: {e}") from e

    async def list_models(self) -> List[str]:
        """List all available Ollama models.

        Returns:
            List of model names

        Raises:
            httpx.HTTPError: On API errors
        """
        try:
            async with self._client(timeout=5.0) as client:
                response = await client.get(f"{self.base_url}/api/tags")
                response.raise_for_status()
                data = response.json()
                return [m["name"] for m in data.get("models", [])]
        except httpx.HTTPError as e:
            logger.error("ollama_list_models_error", error=str(e))
            raise
