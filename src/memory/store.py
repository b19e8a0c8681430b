"""
Redis-backed incident memory.

Two kinds of state are kept:
- Long-term memories: one append-only record per resolved incident cycle,
  indexed by recency, optionally with an embedding vector for semantic recall.
- Incident threads: a short-lived trace of in-progress steps, expiring
  after an hour.
"""

from __future__ import annotations

import contextlib
import json
import math
from collections import Counter
from datetime import UTC, datetime
from typing import Any, AsyncIterator, Sequence

import structlog
from redis import asyncio as aioredis
from redis.exceptions import RedisError

from sre_dreamer.config.settings import MemorySettings
from sre_dreamer.core.models import Incident, IncidentMemory, IncidentType

logger = structlog.get_logger(__name__)

MEMORY_PREFIX = "sre:memory:"
EMBEDDING_PREFIX = "sre:embedding:"
MEMORY_INDEX = "sre:memories"
THREAD_PREFIX = "sre:thread:"
EMBEDDING_DIMENSION_KEY = "sre:embedding_dimension"

UNEMBEDDED_TYPE_MATCH_SIMILARITY = 0.5
UNEMBEDDED_OTHER_SIMILARITY = 0.1


class MemoryStoreError(Exception):
    """Base exception for memory store errors."""


class MemoryUnavailableError(MemoryStoreError):
    """Raised when the backing store cannot be reached."""


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Mismatched lengths and zero-norm vectors have similarity 0.
    """
    if len(a) != len(b) or not a:
        return 0.0

    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    denominator = norm_a * norm_b
    if denominator == 0:
        return 0.0
    return dot / denominator


class IncidentMemoryStore:
    """
    Append-only incident memory with similarity retrieval.

    Usage:
        store = IncidentMemoryStore("redis://localhost:6379/0", settings)
        await store.connect()
        await store.store_memory(memory, embedding)
        similar = await store.find_similar_incidents(IncidentType.VISUAL_OCCLUSION, query)
    """

    def __init__(
        self,
        redis_url: str,
        settings: MemorySettings | None = None,
        client: aioredis.Redis | None = None,
    ) -> None:
        """
        Initialize the store.

        Args:
            redis_url: Redis connection URL
            settings: Retrieval window, result limit and thread TTL
            client: Pre-built client; ``connect`` is then a reachability check
        """
        self._redis_url = redis_url
        self._settings = settings or MemorySettings()
        self._redis: aioredis.Redis | None = client
        self._owns_client = client is None
        self._log = logger.bind(component="memory_store")

    @property
    def is_connected(self) -> bool:
        return self._redis is not None

    async def connect(self) -> None:
        """
        Connect to Redis.

        Raises:
            MemoryUnavailableError: If the server does not answer
        """
        if self._redis is None:
            self._redis = aioredis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        try:
            await self._redis.ping()
        except RedisError as e:
            await self.disconnect()
            raise MemoryUnavailableError(f"Redis unreachable at {self._redis_url}: {e}") from e
        self._log.info("Connected to Redis", url=self._redis_url)

    async def disconnect(self) -> None:
        if self._redis is not None and self._owns_client:
            await self._redis.aclose()
        self._redis = None

    async def __aenter__(self) -> IncidentMemoryStore:
        await self.connect()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.disconnect()

    def _require_client(self) -> aioredis.Redis:
        if self._redis is None:
            raise MemoryUnavailableError("Not connected to Redis")
        return self._redis

    @contextlib.asynccontextmanager
    async def _operation(self, name: str) -> AsyncIterator[aioredis.Redis]:
        client = self._require_client()
        try:
            yield client
        except RedisError as e:
            self._log.error("Redis operation failed", operation=name, error=str(e))
            raise MemoryStoreError(f"{name} failed: {e}") from e

    async def ping(self) -> bool:
        if self._redis is None:
            return False
        try:
            return bool(await self._redis.ping())
        except RedisError:
            return False

    # =========================================================================
    # Incident threads
    # =========================================================================

    async def start_thread(self, incident: Incident) -> None:
        """Open the short-lived step trace for an incident."""
        key = f"{THREAD_PREFIX}{incident.id}"
        async with self._operation("start_thread") as redis:
            await redis.hset(
                key,
                mapping={
                    "incident": json.dumps(incident.to_dict()),
                    "started_at": datetime.now(UTC).isoformat(),
                    "status": "active",
                    "attempts": "0",
                },
            )
            await redis.expire(key, self._settings.thread_ttl_seconds)

    async def log_thread_step(self, incident_id: str, step: str, data: dict[str, Any]) -> None:
        key = f"{THREAD_PREFIX}{incident_id}:steps"
        entry = {"step": step, "timestamp": datetime.now(UTC).isoformat(), **data}
        async with self._operation("log_thread_step") as redis:
            await redis.rpush(key, json.dumps(entry, default=str))
            await redis.expire(key, self._settings.thread_ttl_seconds)

    async def get_thread_steps(self, incident_id: str) -> list[dict[str, Any]]:
        async with self._operation("get_thread_steps") as redis:
            raw = await redis.lrange(f"{THREAD_PREFIX}{incident_id}:steps", 0, -1)
        return [json.loads(item) for item in raw]

    async def increment_attempts(self, incident_id: str) -> int:
        async with self._operation("increment_attempts") as redis:
            return int(await redis.hincrby(f"{THREAD_PREFIX}{incident_id}", "attempts", 1))

    async def has_tried_strategy(self, incident_id: str, strategy: str) -> bool:
        steps = await self.get_thread_steps(incident_id)
        return any(
            s.get("step") == "dream_executed" and s.get("strategy") == strategy for s in steps
        )

    # =========================================================================
    # Long-term memories
    # =========================================================================

    async def store_memory(
        self,
        memory: IncidentMemory,
        embedding: list[float] | None = None,
    ) -> bool:
        """
        Append a memory record.

        Existing records are never overwritten. An embedding whose
        dimensionality differs from the one already in use is dropped,
        and the memory is stored without it.

        Returns:
            False when a record for this incident already exists
        """
        key = f"{MEMORY_PREFIX}{memory.incident_id}"
        async with self._operation("store_memory") as redis:
            if await redis.exists(key):
                self._log.warning(
                    "Memory already recorded, not overwriting",
                    incident_id=memory.incident_id,
                )
                return False

            if embedding:
                embedding = await self._accept_embedding(redis, embedding, memory.incident_id)

            await redis.hset(
                key,
                mapping={
                    "data": json.dumps(memory.to_dict()),
                    "type": str(memory.type),
                    "score": str(memory.score),
                    "timestamp": memory.timestamp.isoformat(),
                },
            )
            if embedding:
                await redis.set(f"{EMBEDDING_PREFIX}{memory.incident_id}", json.dumps(embedding))
            await redis.zadd(MEMORY_INDEX, {memory.incident_id: memory.timestamp_ms})

        memory.embedding = embedding or None
        self._log.info(
            "Memory stored",
            incident_id=memory.incident_id,
            strategy=memory.strategy_used,
            score=round(memory.score, 3),
            embedded=bool(embedding),
        )
        return True

    async def _accept_embedding(
        self,
        redis: aioredis.Redis,
        embedding: list[float],
        incident_id: str,
    ) -> list[float] | None:
        # First stored embedding pins the dimensionality for all later ones
        await redis.set(EMBEDDING_DIMENSION_KEY, len(embedding), nx=True)
        pinned = int(await redis.get(EMBEDDING_DIMENSION_KEY))
        if pinned != len(embedding):
            self._log.warning(
                "Embedding dimensionality mismatch, storing memory without it",
                incident_id=incident_id,
                expected=pinned,
                actual=len(embedding),
            )
            return None
        return embedding

    async def _recent_ids(self, limit: int) -> list[str]:
        if limit <= 0:
            return []
        async with self._operation("recent_ids") as redis:
            return list(await redis.zrevrange(MEMORY_INDEX, 0, limit - 1))

    async def _load_memory(self, incident_id: str) -> IncidentMemory | None:
        async with self._operation("load_memory") as redis:
            raw = await redis.hget(f"{MEMORY_PREFIX}{incident_id}", "data")
        if not raw:
            return None
        return IncidentMemory.from_dict(json.loads(raw))

    async def _load_embedding(self, incident_id: str) -> list[float] | None:
        async with self._operation("load_embedding") as redis:
            raw = await redis.get(f"{EMBEDDING_PREFIX}{incident_id}")
        return json.loads(raw) if raw else None

    async def get_recent_memories(self, limit: int = 10) -> list[IncidentMemory]:
        """Most recent memories, newest first."""
        memories = []
        for incident_id in await self._recent_ids(limit):
            memory = await self._load_memory(incident_id)
            if memory is not None:
                memories.append(memory)
        return memories

    async def find_similar_incidents(
        self,
        incident_type: IncidentType | str,
        query_embedding: list[float] | None = None,
        limit: int | None = None,
    ) -> list[IncidentMemory]:
        """
        Retrieve past incidents similar to the current one.

        With a query embedding, candidates from the recency window are ranked
        by cosine similarity; candidates without an embedding get a partial
        score depending on whether their type matches. Without one, exact type
        matches are returned in recency order.
        """
        limit = limit if limit is not None else self._settings.similar_limit
        candidate_ids = await self._recent_ids(self._settings.recency_window)

        if not query_embedding:
            matches: list[IncidentMemory] = []
            for incident_id in candidate_ids:
                memory = await self._load_memory(incident_id)
                if memory is not None and memory.type == incident_type:
                    matches.append(memory)
                    if len(matches) >= limit:
                        break
            return matches

        scored: list[tuple[float, IncidentMemory]] = []
        for incident_id in candidate_ids:
            memory = await self._load_memory(incident_id)
            if memory is None:
                continue
            stored = await self._load_embedding(incident_id)
            if stored:
                memory.embedding = stored
                similarity = cosine_similarity(query_embedding, stored)
            elif memory.type == incident_type:
                similarity = UNEMBEDDED_TYPE_MATCH_SIMILARITY
            else:
                similarity = UNEMBEDDED_OTHER_SIMILARITY
            scored.append((similarity, memory))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [memory for _, memory in scored[:limit]]

    async def get_memory_count(self) -> int:
        async with self._operation("get_memory_count") as redis:
            return int(await redis.zcard(MEMORY_INDEX))

    async def get_memory_stats(self) -> dict[str, Any]:
        """Total memories, counts per incident type and how many carry embeddings."""
        async with self._operation("get_memory_stats") as redis:
            ids = await redis.zrevrange(MEMORY_INDEX, 0, -1)
            by_type: Counter[str] = Counter()
            with_embeddings = 0
            for incident_id in ids:
                incident_type = await redis.hget(f"{MEMORY_PREFIX}{incident_id}", "type")
                if incident_type:
                    by_type[incident_type] += 1
                if await redis.exists(f"{EMBEDDING_PREFIX}{incident_id}"):
                    with_embeddings += 1

        return {
            "total": len(ids),
            "by_type": dict(by_type),
            "with_embeddings": with_embeddings,
        }
