"""Shared fixtures for Content Brain tests."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.brain.store import InMemoryBrainStore


@pytest.fixture
def store():
    return InMemoryBrainStore()


@pytest.fixture
def make_embeddings():
    """Embedding client mock mapping known texts to vectors."""

    def factory(vectors=None, default=None):
        vectors = vectors or {}
        client = MagicMock()
        client.enabled = True

        async def embed(text):
            for key, vector in vectors.items():
                if key in text:
                    return vector
            return default

        client.embed = AsyncMock(side_effect=embed)
        return client

    return factory


@pytest.fixture
def make_llm():
    """LLM client mock returning canned responses (dicts are JSON-encoded)."""

    def factory(*responses):
        client = MagicMock()
        encoded = [r if isinstance(r, (str, Exception)) else json.dumps(r) for r in responses]
        if len(encoded) == 1 and not isinstance(encoded[0], Exception):
            client.complete = AsyncMock(return_value=encoded[0])
        else:
            client.complete = AsyncMock(side_effect=encoded)
        return client

    return factory
