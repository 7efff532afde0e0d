"""Embedding backends.

Exactly one :class:`EmbeddingProvider` is built per process by
:func:`create_embedding_provider` and handed to every component that needs
vectors. Vectors from different providers are not comparable, so each
provider exposes a ``model_id`` that the vector store records next to every
row it writes.
"""

from __future__ import annotations

import hashlib
import math
import re
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Sequence

import httpx
import openai

from ragqueue.core.config import Settings
from ragqueue.core.errors import (
    AlignmentError,
    EmbeddingBackendMisconfigured,
    EmbeddingBackendUnavailable,
    EmbeddingModelNotInstalled,
    RagQueueError,
)
from ragqueue.core.logging import get_logger
from ragqueue.core.metrics import EMBEDDING_LATENCY

logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"\w+")
_OPENAI_BATCH_LIMIT = 2048


class EmbeddingProvider(ABC):
    """Strategy turning text into fixed-dimension vectors."""

    name: str = "abstract"

    def __init__(self, model: str, batch_size: int = 100) -> None:
        self._model = model
        self._batch_size = max(1, batch_size)

    @property
    def model(self) -> str:
        return self._model

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def model_id(self) -> str:
        """Backend-qualified model name stored alongside every vector."""
        return f"{self.name}:{self._model}"

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Sequence[str], batch_size: int | None = None) -> list[list[float]]:
        """Embed ``texts`` in order; any failure fails the whole call."""
        if not texts:
            return []
        size = max(1, batch_size or self._batch_size)
        vectors: list[list[float]] = []
        with EMBEDDING_LATENCY.labels(backend=self.name).time():
            for start in range(0, len(texts), size):
                batch = list(texts[start : start + size])
                result = self._embed_batch(batch)
                if len(result) != len(batch):
                    raise AlignmentError(
                        f"{self.model_id} returned {len(result)} vectors for {len(batch)} inputs"
                    )
                vectors.extend(result)
        dims = {len(vector) for vector in vectors}
        if len(dims) != 1 or 0 in dims:
            raise EmbeddingBackendUnavailable(f"{self.model_id} returned vectors of inconsistent dimension {sorted(dims)}")
        return vectors

    def check(self) -> None:
        """Raise the matching error when the backend cannot serve requests."""

    def is_available(self) -> bool:
        try:
            self.check()
        except RagQueueError as exc:
            logger.info("Embedding backend %s unavailable: %s", self.model_id, exc)
            return False
        return True

    def close(self) -> None:
        pass

    @abstractmethod
    def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed one batch; implementations raise :class:`RagQueueError` subclasses."""


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Cloud backend using an OpenAI-compatible embeddings API.

    Each batch is a single ``embeddings.create`` request; the response items
    are re-ordered by their ``index`` before being returned.
    """

    name = "cloud"

    def __init__(
        self,
        api_key: str | None,
        model: str = "text-embedding-3-small",
        base_url: str | None = None,
        timeout: float = 30.0,
        max_retries: int = 2,
        batch_size: int = 100,
        http_client: httpx.Client | None = None,
    ) -> None:
        super().__init__(model=model, batch_size=min(batch_size, _OPENAI_BATCH_LIMIT))
        self._api_key = api_key
        self._client: openai.OpenAI | None = None
        if api_key:
            client_kwargs: dict = {"api_key": api_key, "timeout": timeout, "max_retries": max_retries}
            if base_url:
                client_kwargs["base_url"] = base_url
            if http_client is not None:
                client_kwargs["http_client"] = http_client
            self._client = openai.OpenAI(**client_kwargs)

    def check(self) -> None:
        self._require_client()

    def close(self) -> None:
        if self._client is not None:
            self._client.close()

    def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        client = self._require_client()
        try:
            response = client.embeddings.create(input=texts, model=self._model)
        except (openai.AuthenticationError, openai.PermissionDeniedError) as exc:
            raise EmbeddingBackendMisconfigured(f"Cloud embedding backend rejected credentials: {exc}") from exc
        except openai.NotFoundError as exc:
            raise EmbeddingBackendMisconfigured(f"Unknown embedding model {self._model!r}: {exc}") from exc
        except openai.APIConnectionError as exc:
            raise EmbeddingBackendUnavailable(f"Cloud embedding backend unreachable: {exc}") from exc
        except openai.APIError as exc:
            raise EmbeddingBackendUnavailable(f"Cloud embedding API error: {exc}") from exc
        items = sorted(response.data, key=lambda item: item.index)
        logger.debug(
            "Embedded batch of %s texts with %s (tokens=%s)",
            len(texts),
            self._model,
            response.usage.total_tokens if response.usage else None,
        )
        return [list(item.embedding) for item in items]

    def _require_client(self) -> openai.OpenAI:
        if self._client is None:
            raise EmbeddingBackendMisconfigured("No API key configured for the cloud embedding backend")
        return self._client


class OllamaEmbeddingProvider(EmbeddingProvider):
    """Local backend talking to an Ollama server.

    Texts are embedded one request each, with at most ``concurrency`` requests
    in flight. A server that cannot be reached raises
    :class:`EmbeddingBackendUnavailable`; a reachable server without the model
    raises :class:`EmbeddingModelNotInstalled`.
    """

    name = "local"

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "nomic-embed-text",
        timeout: float = 30.0,
        concurrency: int = 4,
        batch_size: int = 100,
        check_timeout: float = 3.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(model=model, batch_size=batch_size)
        self._base_url = base_url.rstrip("/")
        self._concurrency = max(1, concurrency)
        self._check_timeout = check_timeout
        self._client = httpx.Client(base_url=self._base_url, timeout=timeout, transport=transport)

    def check(self) -> None:
        try:
            response = self._client.get("/api/tags", timeout=self._check_timeout)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise EmbeddingBackendUnavailable(f"Local embedding service unreachable at {self._base_url}: {exc}") from exc
        models = _json_body(response).get("models")
        if not isinstance(models, list):
            raise EmbeddingBackendUnavailable("Local embedding service returned no model list")
        installed = {model.get("name", "") for model in models if isinstance(model, dict)}
        if not any(_same_model(self._model, name) for name in installed):
            raise EmbeddingModelNotInstalled(
                f"Embedding model {self._model!r} is not installed. Run: ollama pull {self._model}"
            )

    def close(self) -> None:
        self._client.close()

    def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        pool = ThreadPoolExecutor(max_workers=min(self._concurrency, len(texts)), thread_name_prefix="ragq-embed")
        try:
            futures = [pool.submit(self._embed_one, text) for text in texts]
            return [future.result() for future in futures]
        finally:
            pool.shutdown(wait=True, cancel_futures=True)

    def _embed_one(self, text: str) -> list[float]:
        try:
            response = self._client.post("/api/embeddings", json={"model": self._model, "prompt": text})
        except httpx.TimeoutException as exc:
            raise EmbeddingBackendUnavailable(f"Local embedding service timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise EmbeddingBackendUnavailable(f"Local embedding service unreachable at {self._base_url}: {exc}") from exc
        if response.status_code == 404:
            raise EmbeddingModelNotInstalled(
                f"Embedding model {self._model!r} is not installed. Run: ollama pull {self._model}"
            )
        if response.is_error:
            raise EmbeddingBackendUnavailable(
                f"Local embedding service returned {response.status_code}: {response.text[:200]}"
            )
        embedding = _json_body(response).get("embedding")
        if not embedding or not isinstance(embedding, list):
            raise EmbeddingBackendUnavailable("Local embedding service returned an empty embedding")
        try:
            return [float(value) for value in embedding]
        except (TypeError, ValueError) as exc:
            raise EmbeddingBackendUnavailable(f"Local embedding service returned a malformed embedding: {exc}") from exc


class HashedEmbeddingProvider(EmbeddingProvider):
    """Lightweight hashed bag-of-words model with deterministic output."""

    name = "hashed"

    def __init__(self, dim: int = 384, batch_size: int = 100) -> None:
        super().__init__(model=f"hashed-{dim}", batch_size=batch_size)
        self._dim = dim

    @property
    def dim(self) -> int:
        return self._dim

    def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for text in texts:
            vector = [0.0] * self._dim
            for token in _tokenize(text):
                vector[_hash_token(token, self._dim)] += 1.0
            if not any(vector):
                vector[0] = 1.0
            _normalize(vector)
            vectors.append(vector)
        return vectors


def create_embedding_provider(settings: Settings) -> EmbeddingProvider:
    """Build the single backend selected by ``settings.embedding_backend``."""
    if settings.embedding_backend == "cloud":
        provider: EmbeddingProvider = OpenAIEmbeddingProvider(
            api_key=settings.openai_api_key,
            model=settings.openai_embedding_model,
            base_url=settings.openai_base_url,
            timeout=settings.embedding_timeout_seconds,
            max_retries=settings.openai_max_retries,
            batch_size=settings.embedding_batch_size,
        )
    elif settings.embedding_backend == "local":
        provider = OllamaEmbeddingProvider(
            base_url=settings.ollama_base_url,
            model=settings.ollama_embedding_model,
            timeout=settings.embedding_timeout_seconds,
            concurrency=settings.embedding_concurrency,
            batch_size=settings.embedding_batch_size,
        )
    else:
        provider = HashedEmbeddingProvider(batch_size=settings.embedding_batch_size)
    logger.info("Using %s embedding backend (%s)", provider.name, provider.model_id)
    return provider


def _json_body(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError as exc:
        raise EmbeddingBackendUnavailable(
            f"Local embedding service returned a non-JSON body: {response.text[:200]!r}"
        ) from exc
    if not isinstance(body, dict):
        raise EmbeddingBackendUnavailable("Local embedding service returned an unexpected JSON body")
    return body


def _same_model(wanted: str, installed: str) -> bool:
    if wanted == installed:
        return True
    return ":" not in wanted and installed.split(":", 1)[0] == wanted


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big") % dim


def _normalize(vector: list[float]) -> None:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return
    inv = 1.0 / norm
    for idx, value in enumerate(vector):
        vector[idx] = value * inv


__all__ = [
    "EmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "OllamaEmbeddingProvider",
    "HashedEmbeddingProvider",
    "create_embedding_provider",
]
