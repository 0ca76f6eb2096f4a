"""Ollama HTTP client wrapper with error handling."""
import httpx
from typing import List, Dict, Optional
import structlog

logger = structlog.get_logger()


class OllamaClient:
    """Async client for the Ollama chat and embedding endpoints.

    A fresh httpx.AsyncClient is opened per request; ``transport`` lets
    callers (and tests) swap the network layer.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL
            timeout: Request timeout in seconds
            transport: Optional httpx transport override
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or self.timeout,
            transport=self.transport,
        )

    async def chat(
        self,
        messages: List[Dict[str, str]],
        model: str,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> Dict:
        """Send a non-streaming chat completion request.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Chat model name
            max_tokens: Upper bound on generated tokens (num_predict)
            temperature: Sampling temperature

        Returns:
            Response dict with 'message' containing 'content'

        Raises:
            httpx.HTTPError: On transport errors, timeouts and non-2xx responses
            ValueError: If the body is not JSON
        """
        payload = {
            "model": model,
            "messages": messages,
            "stream": False,
        }

        options = {}
        if max_tokens is not None:
            options["num_predict"] = max_tokens
        if temperature is not None:
            options["temperature"] = temperature
        if options:
            payload["options"] = options

        try:
            async with self._client() as client:
                logger.info(
                    "ollama_chat_request",
                    model=model,
                    message_count=len(messages),
                )

                response = await client.post("/api/chat", json=payload)
                response.raise_for_status()

                data = response.json()

                logger.info(
                    "ollama_chat_response",
                    model=model,
                    response_length=_reply_length(data),
                )

                return data

        except httpx.ConnectError as e:
            logger.error("ollama_connection_error", error=str(e), base_url=self.base_url)
            raise
        except httpx.HTTPError as e:
            logger.error(
                "ollama_http_error",
                error=str(e),
                status_code=_status_code(e),
            )
            raise

    async def embed(self, texts: List[str], model: str) -> Dict:
        """Embed a batch of texts in a single request.

        Args:
            texts: Texts to embed
            model: Embedding model name

        Returns:
            Response dict with an 'embeddings' list, one entry per text

        Raises:
            httpx.HTTPError: On transport errors, timeouts and non-2xx responses
            ValueError: If the body is not JSON
        """
        payload = {
            "model": model,
            "input": texts,
        }

        try:
            async with self._client() as client:
                logger.debug(
                    "ollama_embedding_request",
                    model=model,
                    input_count=len(texts),
                )

                response = await client.post("/api/embed", json=payload)
                response.raise_for_status()

                data = response.json()

                logger.debug(
                    "ollama_embedding_response",
                    model=model,
                    vector_count=_vector_count(data),
                )

                return data

        except httpx.HTTPError as e:
            logger.error(
                "ollama_embedding_error",
                error=str(e),
                status_code=_status_code(e),
            )
            raise

    async def list_models(self) -> List[str]:
        """List all available Ollama models.

        Returns:
            List of model names

        Raises:
            httpx.HTTPError: On API errors
        """
        try:
            async with self._client(timeout=5.0) as client:
                response = await client.get("/api/tags")
                response.raise_for_status()
                data = response.json()
                return [m["name"] for m in data.get("models", [])]
        except httpx.HTTPError as e:
            logger.error("ollama_list_models_error", error=str(e))
            raise


def _status_code(error: httpx.HTTPError) -> Optional[int]:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    return None


def _reply_length(data) -> Optional[int]:
    message = data.get("message") if isinstance(data, dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    return len(content) if isinstance(content, str) else None


def _vector_count(data) -> Optional[int]:
    embeddings = data.get("embeddings") if isinstance(data, dict) else None
    return len(embeddings) if isinstance(embeddings, list) else None
