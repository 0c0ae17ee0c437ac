"""Embedding generation with a content-addressed cache."""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple

import blake3
import httpx

from ..config import EmbeddingConfig
from ..errors import ApiError
from ..retry import Ok, run_with_retry
from .models import CodeChunk, EmbeddedChunk, EmbeddingStats

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingRequest:
    model: str
    input: List[str]
    encoding_format: str = "float"

    def to_dict(self) -> Dict[str, Any]:
        return {"model": self.model, "input": self.input, "encoding_format": self.encoding_format}


@dataclass
class EmbeddingData:
    index: int
    embedding: List[float]


@dataclass
class EmbeddingResponse:
    """Validated provider response."""

    data: List[EmbeddingData]
    total_tokens: int = 0
    model: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: Any) -> "EmbeddingResponse":
        """Validate a decoded response body.

        Raises:
            ApiError: If the payload does not have the expected shape
        """
        if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
            raise ApiError("Unexpected embedding response format: missing data list")

        data = []
        for item in payload["data"]:
            if not isinstance(item, dict):
                raise ApiError("Unexpected embedding response format: data item is not an object")
            index = item.get("index")
            embedding = item.get("embedding")
            if not isinstance(index, int) or not isinstance(embedding, list):
                raise ApiError("Unexpected embedding response format: bad index or embedding")
            data.append(EmbeddingData(index=index, embedding=[float(v) for v in embedding]))

        usage = payload.get("usage") or {}
        total_tokens = usage.get("total_tokens", 0) if isinstance(usage, dict) else 0
        return cls(
            data=data,
            total_tokens=int(total_tokens or 0),
            model=payload.get("model"),
        )

    def ordered_embeddings(self, expected: int) -> List[List[float]]:
        """Embeddings sorted by their request index.

        Raises:
            ApiError: If indices do not cover exactly 0..expected-1
        """
        ordered = sorted(self.data, key=lambda d: d.index)
        if [d.index for d in ordered] != list(range(expected)):
            raise ApiError(
                f"Embedding response indices do not match request of {expected} inputs"
            )
        return [d.embedding for d in ordered]


class EmbeddingProvider(Protocol):
    """External service that turns texts into vectors."""

    async def embed(self, request: EmbeddingRequest) -> EmbeddingResponse:
        ...


class OpenAIEmbeddingProvider:
    """Calls an OpenAI-compatible /embeddings endpoint."""

    def __init__(
        self,
        api_key: str,
        api_base: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the provider.

        Args:
            api_key: Bearer token for the API
            api_base: Base URL of the API
            timeout: Request timeout in seconds
            client: Optional preconfigured httpx client
        """
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def embed(self, request: EmbeddingRequest) -> EmbeddingResponse:
        """Send one batch of inputs.

        Raises:
            ApiError: On transport failures, non-2xx responses or bad payloads
        """
        client = self._get_client()
        try:
            response = await client.post(
                f"{self.api_base}/embeddings",
                json=request.to_dict(),
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.HTTPError as e:
            raise ApiError(f"Embedding request failed: {e}", retryable=True) from e

        if response.status_code >= 300:
            raise ApiError.from_status(response.status_code, response.text)

        try:
            payload = response.json()
        except ValueError as e:
            raise ApiError(f"Embedding response is not JSON: {e}") from e
        return EmbeddingResponse.from_dict(payload)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            try:
                await self._client.aclose()
            except Exception as e:
                logger.warning(f"Error closing httpx client: {e}")
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class EmbeddingCache:
    """In-memory embedding cache, optionally mirrored to a directory."""

    def __init__(self, model: str, cache_dir: Optional[Path] = None):
        """Initialize the cache.

        Args:
            model: Model name, part of every cache key
            cache_dir: Directory for persisted entries (None keeps memory only)
        """
        self.model = model
        self.cache_dir = Path(cache_dir) if cache_dir else None
        self._memory: Dict[str, List[float]] = {}

        if self.cache_dir:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Embedding cache enabled at: {self.cache_dir}")

    def key_for(self, text: str) -> str:
        """Blake3 hash of model and text."""
        # Include model name to invalidate cache if model changes
        cache_input = f"{self.model}:{text}"
        return blake3.blake3(cache_input.encode()).hexdigest()

    def get(self, key: str) -> Optional[List[float]]:
        embedding = self._memory.get(key)
        if embedding is not None or not self.cache_dir:
            return embedding

        cache_file = self.cache_dir / f"{key}.json"
        if not cache_file.exists():
            return None
        try:
            with open(cache_file, "r") as f:
                embedding = json.load(f)["embedding"]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Error reading cache file {cache_file}: {e}")
            return None

        self._memory[key] = embedding
        return embedding

    def put(self, key: str, embedding: List[float]) -> None:
        self._memory[key] = embedding
        if not self.cache_dir:
            return

        cache_file = self.cache_dir / f"{key}.json"
        try:
            with open(cache_file, "w") as f:
                json.dump({"embedding": embedding}, f)
        except OSError as e:
            logger.warning(f"Error writing cache file {cache_file}: {e}")

    def __len__(self) -> int:
        return len(self._memory)

    def stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {"memory_entries": len(self._memory), "persistent": bool(self.cache_dir)}
        if self.cache_dir:
            cache_files = list(self.cache_dir.glob("*.json"))
            total_size = sum(f.stat().st_size for f in cache_files)
            stats.update(
                {
                    "cache_dir": str(self.cache_dir),
                    "cached_embeddings": len(cache_files),
                    "total_size_bytes": total_size,
                    "total_size_mb": round(total_size / (1024 * 1024), 2),
                }
            )
        return stats


@dataclass
class _BatchOutcome:
    embeddings: List[Optional[List[float]]] = field(default_factory=list)
    failed: bool = False


class EmbeddingService:
    """Embeds code chunks in fixed-size batches.

    Batches run one after another, so the cache is only ever written from a
    single task.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        config: Optional[EmbeddingConfig] = None,
        cache: Optional[EmbeddingCache] = None,
    ):
        """Initialize the service.

        Args:
            provider: Embedding provider used for cache misses
            config: Model, batching and retry settings
            cache: Cache to use (defaults to one built from config)
        """
        self.provider = provider
        self.config = config or EmbeddingConfig()
        self.cache = cache or EmbeddingCache(self.config.model, self.config.cache_dir)
        self.stats = EmbeddingStats()  # running totals across calls

        logger.info(
            f"Initialized embedding service with model: {self.config.model} "
            f"(batch_size: {self.config.batch_size})"
        )

    def _truncate_text(self, text: str) -> str:
        """Truncate text to fit within the model's token limit.

        Uses a conservative estimate of 3 characters per token with a 20%
        safety buffer.
        """
        max_chars = int(self.config.max_tokens * 3 * 0.8)
        if len(text) > max_chars:
            logger.warning(
                f"Truncated text from {len(text)} to {max_chars} chars "
                f"to fit {self.config.max_tokens} token limit"
            )
            return text[:max_chars]
        return text

    async def _embed_batch(
        self, chunks: List[CodeChunk], batch_number: int, stats: EmbeddingStats
    ) -> _BatchOutcome:
        outcome = _BatchOutcome(embeddings=[None] * len(chunks))
        keys = [self.cache.key_for(chunk.embedding_text) for chunk in chunks]

        miss_positions: List[int] = []
        miss_texts: List[str] = []
        pending: Dict[str, List[int]] = {}  # duplicate texts within a batch share one request slot
        for position, key in enumerate(keys):
            cached = self.cache.get(key)
            if cached is not None:
                outcome.embeddings[position] = cached
                stats.cache_hits += 1
                continue
            if key in pending:
                pending[key].append(position)
                continue
            pending[key] = [position]
            miss_positions.append(position)
            miss_texts.append(self._truncate_text(chunks[position].embedding_text))

        if not miss_texts:
            logger.debug(f"Batch {batch_number} served entirely from cache")
            return outcome

        request = EmbeddingRequest(
            model=self.config.model,
            input=miss_texts,
            encoding_format=self.config.encoding_format,
        )

        async def call() -> List[List[float]]:
            stats.api_calls += 1
            response = await self.provider.embed(request)
            vectors = response.ordered_embeddings(len(miss_texts))
            stats.total_tokens += response.total_tokens
            return vectors

        result = await run_with_retry(
            call,
            max_retries=self.config.max_retries,
            base_delay=self.config.retry_base_delay,
            description=f"Embedding batch {batch_number}",
        )
        if not isinstance(result, Ok):
            outcome.failed = True
            return outcome

        for position, vector in zip(miss_positions, result.value):
            key = keys[position]
            self.cache.put(key, vector)
            for duplicate in pending[key]:
                outcome.embeddings[duplicate] = vector
        return outcome

    async def embed_chunks(
        self, chunks: List[CodeChunk]
    ) -> Tuple[List[EmbeddedChunk], EmbeddingStats]:
        """Embed chunks batch by batch.

        A batch that still fails after all retries is logged and skipped;
        later batches are still processed.

        Args:
            chunks: Chunks to embed

        Returns:
            Tuple of (embedded chunks in input order, stats for this call).
            The same counts are also added to ``self.stats``.
        """
        start_time = time.monotonic()
        stats = EmbeddingStats(total_chunks=len(chunks))
        embedded: List[EmbeddedChunk] = []
        batch_size = max(1, self.config.batch_size)
        total_batches = (len(chunks) + batch_size - 1) // batch_size

        for batch_index, offset in enumerate(range(0, len(chunks), batch_size)):
            batch = chunks[offset : offset + batch_size]
            batch_number = batch_index + 1
            logger.debug(f"Processing batch {batch_number}/{total_batches}")
            calls_before = stats.api_calls

            outcome = await self._embed_batch(batch, batch_number, stats)
            if outcome.failed:
                stats.failed_batches += 1
                stats.failed_chunks += sum(1 for e in outcome.embeddings if e is None)

            for chunk, embedding in zip(batch, outcome.embeddings):
                if embedding is None:
                    continue
                if stats.dimensions is None:
                    stats.dimensions = len(embedding)
                elif len(embedding) != stats.dimensions:
                    logger.warning(
                        f"Dropping embedding of {chunk.id}: dimension {len(embedding)} "
                        f"differs from {stats.dimensions}"
                    )
                    stats.failed_chunks += 1
                    continue
                embedded.append(EmbeddedChunk(chunk=chunk, embedding=embedding))

            called_api = stats.api_calls > calls_before
            if called_api and batch_number < total_batches and self.config.batch_delay > 0:
                await asyncio.sleep(self.config.batch_delay)

        stats.estimated_cost = stats.total_tokens / 1000 * self.config.cost_per_1k_tokens
        stats.duration_secs = round(time.monotonic() - start_time, 3)

        logger.info(
            f"Embedded {len(embedded)}/{len(chunks)} chunks: {stats.api_calls} API calls, "
            f"{stats.cache_hits} cache hits, {stats.total_tokens} tokens "
            f"(~${stats.estimated_cost:.6f})"
        )
        if stats.failed_batches:
            logger.warning(
                f"{stats.failed_batches} batches failed, "
                f"{stats.failed_chunks} chunks left without embeddings"
            )
        self.stats.add(stats)
        return embedded, stats

    async def embed_chunk(self, chunk: CodeChunk) -> Optional[EmbeddedChunk]:
        embedded, _ = await self.embed_chunks([chunk])
        return embedded[0] if embedded else None

    def get_cache_stats(self) -> Dict[str, Any]:
        """Get statistics about the embedding cache."""
        return self.cache.stats()
