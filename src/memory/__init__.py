"""Incident memory for the learning loop."""

from sre_dreamer.memory.store import (
    IncidentMemoryStore,
    MemoryStoreError,
    MemoryUnavailableError,
    cosine_similarity,
)

__all__ = [
    "IncidentMemoryStore",
    "MemoryStoreError",
    "MemoryUnavailableError",
    "cosine_similarity",
]
