"""Tests for the Redis-backed incident memory."""

from __future__ import annotations

import math
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from conftest import FakeRedis
from redis.exceptions import RedisError

from sre_dreamer.config.settings import MemorySettings
from sre_dreamer.core.models import Incident, IncidentMemory, IncidentType
from sre_dreamer.memory import (
    IncidentMemoryStore,
    MemoryStoreError,
    MemoryUnavailableError,
    cosine_similarity,
)
from sre_dreamer.memory.store import EMBEDDING_DIMENSION_KEY

BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def memory(
    incident_id: str,
    minutes: int = 0,
    incident_type: IncidentType = IncidentType.VISUAL_OCCLUSION,
    strategy: str = "css_patch_targeted",
) -> IncidentMemory:
    return IncidentMemory(
        incident_id=incident_id,
        timestamp=BASE_TIME + timedelta(minutes=minutes),
        type=incident_type,
        description=f"Post-mortem for {incident_id}",
        resolution="Rollback triggered",
        strategy_used=strategy,
        score=0.9,
    )


async def connected_store(redis: FakeRedis, **settings: int) -> IncidentMemoryStore:
    store = IncidentMemoryStore("redis://test", MemorySettings(**settings), client=redis)
    await store.connect()
    return store


class TestCosineSimilarity:
    """Tests for cosine_similarity."""

    def test_identical_vectors(self) -> None:
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_orthogonal_and_opposite(self) -> None:
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_symmetric(self) -> None:
        a, b = [0.3, -1.2, 4.0], [2.0, 0.5, -0.1]
        assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))

    def test_degenerate_inputs(self) -> None:
        """Test mismatched lengths, empty and zero vectors score 0."""
        assert cosine_similarity([1.0, 2.0], [1.0]) == 0.0
        assert cosine_similarity([], []) == 0.0
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_scale_invariant(self) -> None:
        assert cosine_similarity([1.0, 1.0], [5.0, 5.0]) == pytest.approx(1.0)
        assert not math.isnan(cosine_similarity([1e-300, 0.0], [1e-300, 0.0]))


class TestConnection:
    """Tests for connecting to the store."""

    @pytest.mark.asyncio
    async def test_unreachable(self) -> None:
        """Test an unreachable server raises and leaves the store disconnected."""
        store = IncidentMemoryStore("redis://test", client=FakeRedis(reachable=False))

        with pytest.raises(MemoryUnavailableError, match="Redis unreachable"):
            await store.connect()

        assert not store.is_connected
        assert not await store.ping()

    @pytest.mark.asyncio
    async def test_operation_requires_connection(self) -> None:
        store = IncidentMemoryStore("redis://test")

        with pytest.raises(MemoryUnavailableError):
            await store.get_memory_count()

    @pytest.mark.asyncio
    async def test_injected_client_not_closed(self, fake_redis: FakeRedis) -> None:
        async with IncidentMemoryStore("redis://test", client=fake_redis) as store:
            assert await store.ping()

        assert not fake_redis.closed

    @pytest.mark.asyncio
    async def test_redis_failure_wrapped(self, fake_redis: FakeRedis) -> None:
        """Test errors during an operation surface as MemoryStoreError."""
        store = await connected_store(fake_redis)
        fake_redis.zcard = AsyncMock(side_effect=RedisError("LOADING"))

        with pytest.raises(MemoryStoreError, match="get_memory_count failed: LOADING"):
            await store.get_memory_count()


class TestStoreMemory:
    """Tests for appending memories."""

    @pytest.mark.asyncio
    async def test_recent_newest_first(self, fake_redis: FakeRedis) -> None:
        store = await connected_store(fake_redis)
        for incident_id, minutes in (("inc_a", 0), ("inc_c", 20), ("inc_b", 10)):
            assert await store.store_memory(memory(incident_id, minutes))

        recent = await store.get_recent_memories(limit=2)

        assert [m.incident_id for m in recent] == ["inc_c", "inc_b"]
        assert recent[0].timestamp == BASE_TIME + timedelta(minutes=20)
        assert await store.get_memory_count() == 3

    @pytest.mark.asyncio
    async def test_duplicates_not_overwritten(self, fake_redis: FakeRedis) -> None:
        """Test memories are append-only."""
        store = await connected_store(fake_redis)
        assert await store.store_memory(memory("inc_a", strategy="dom_removal"))

        assert not await store.store_memory(memory("inc_a", strategy="cache_clear"))

        (stored,) = await store.get_recent_memories()
        assert stored.strategy_used == "dom_removal"

    @pytest.mark.asyncio
    async def test_dimension_mismatch_drops_embedding(self, fake_redis: FakeRedis) -> None:
        """Test the first embedding pins the dimensionality."""
        store = await connected_store(fake_redis)
        first, second = memory("inc_a"), memory("inc_b", 1)

        await store.store_memory(first, [1.0, 0.0, 0.0])
        await store.store_memory(second, [1.0, 0.0])

        assert fake_redis.strings[EMBEDDING_DIMENSION_KEY] == "3"
        assert first.embedding == [1.0, 0.0, 0.0]
        assert second.embedding is None
        stats = await store.get_memory_stats()
        assert stats == {
            "total": 2,
            "by_type": {"visual_occlusion": 2},
            "with_embeddings": 1,
        }


class TestFindSimilarIncidents:
    """Tests for similarity retrieval."""

    @pytest.mark.asyncio
    async def test_ranked_by_cosine(self, fake_redis: FakeRedis) -> None:
        store = await connected_store(fake_redis)
        await store.store_memory(memory("inc_far", 0), [0.0, 1.0])
        await store.store_memory(memory("inc_near", 1), [1.0, 0.1])
        await store.store_memory(memory("inc_mid", 2), [1.0, 1.0])

        similar = await store.find_similar_incidents(IncidentType.VISUAL_OCCLUSION, [1.0, 0.0])

        assert [m.incident_id for m in similar] == ["inc_near", "inc_mid", "inc_far"]
        assert similar[0].embedding == [1.0, 0.1]

    @pytest.mark.asyncio
    async def test_unembedded_partial_scores(self, fake_redis: FakeRedis) -> None:
        """Test unembedded memories score 0.5 on a type match and 0.1 otherwise."""
        store = await connected_store(fake_redis)
        await store.store_memory(memory("inc_orthogonal", 0), [0.0, 1.0])
        await store.store_memory(memory("inc_same_type", 1))
        await store.store_memory(memory("inc_other", 2, IncidentType.CONTENT_MISSING))

        similar = await store.find_similar_incidents(IncidentType.VISUAL_OCCLUSION, [1.0, 0.0])

        assert [m.incident_id for m in similar] == [
            "inc_same_type",
            "inc_other",
            "inc_orthogonal",
        ]

    @pytest.mark.asyncio
    async def test_type_match_without_query(self, fake_redis: FakeRedis) -> None:
        """Test type matching in recency order when no embedding is available."""
        store = await connected_store(fake_redis)
        await store.store_memory(memory("inc_old", 0))
        await store.store_memory(memory("inc_other", 1, IncidentType.LAYOUT_SHIFT))
        await store.store_memory(memory("inc_new", 2))

        similar = await store.find_similar_incidents(IncidentType.VISUAL_OCCLUSION)

        assert [m.incident_id for m in similar] == ["inc_new", "inc_old"]

    @pytest.mark.asyncio
    async def test_limit_and_window(self, fake_redis: FakeRedis) -> None:
        """Test only the recency window is considered and results are capped."""
        store = await connected_store(fake_redis, recency_window=2, similar_limit=5)
        for i in range(4):
            await store.store_memory(memory(f"inc_{i}", i))

        similar = await store.find_similar_incidents(IncidentType.VISUAL_OCCLUSION, [1.0])
        capped = await store.find_similar_incidents(IncidentType.VISUAL_OCCLUSION, limit=1)

        assert {m.incident_id for m in similar} == {"inc_3", "inc_2"}
        assert [m.incident_id for m in capped] == ["inc_3"]

    @pytest.mark.asyncio
    async def test_empty_store(self, fake_redis: FakeRedis) -> None:
        store = await connected_store(fake_redis)
        assert await store.find_similar_incidents(IncidentType.UNKNOWN, [1.0, 2.0]) == []


class TestThreads:
    """Tests for short-lived incident threads."""

    @pytest.mark.asyncio
    async def test_thread_steps(self, fake_redis: FakeRedis, incident: Incident) -> None:
        store = await connected_store(fake_redis, thread_ttl_seconds=3600)

        await store.start_thread(incident)
        await store.log_thread_step(incident.id, "dream_executed", {"strategy": "dom_removal"})
        attempts = await store.increment_attempts(incident.id)

        steps = await store.get_thread_steps(incident.id)
        assert attempts == 1
        assert steps[0]["step"] == "dream_executed"
        assert await store.has_tried_strategy(incident.id, "dom_removal")
        assert not await store.has_tried_strategy(incident.id, "cache_clear")
        assert fake_redis.ttls[f"sre:thread:{incident.id}"] == 3600
        assert fake_redis.hashes[f"sre:thread:{incident.id}"]["status"] == "active"
