"""Tests for the language model and embedding services."""

import json
import logging

import httpx
import numpy as np
import pytest

from cognition.lifecycle import AgentLifetime
from cognition.memory import MemoryKind, MemoryStore
from config.settings import Settings, build_logging_config, configure_logging
from services import llm as llm_module
from services.embeddings import EmbeddingService, cosine_similarity, simple_embed
from services.errors import MalformedResponse, ServiceUnavailable
from services.llm import LLMService, MockLLMService, _mock_schedule
from doubles import DIMENSION


def service_with(handler) -> LLMService:
    """An LLMService whose HTTP calls go to ``handler``."""
    service = LLMService(api_key="test-key", max_retries=1)
    service._min_request_interval = 0

    def get_client():
        return httpx.AsyncClient(
            base_url=service.base_url,
            transport=httpx.MockTransport(handler),
        )

    service._get_client = get_client
    return service


class TestEmbeddings:
    """Tests for embedding helpers."""

    def test_simple_embed_is_deterministic(self):
        """Test that simple embeddings are deterministic."""
        first = simple_embed("A quiet morning", 64)
        second = simple_embed("a quiet morning  ", 64)

        assert first == second
        assert len(first) == 64
        assert np.linalg.norm(first) == pytest.approx(1.0)

    def test_shared_words_are_closer(self):
        """Test cosine similarity of related texts."""
        base = simple_embed("the red door", 128)
        similar = simple_embed("the red door is open", 128)

        assert cosine_similarity(base, base) == pytest.approx(1.0)
        assert -1.0 <= cosine_similarity(base, similar) <= 1.0

    def test_cosine_of_zero_vector(self):
        """Test cosine similarity with a zero vector."""
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0

    @pytest.mark.asyncio
    async def test_service_simple_mode_caches(self):
        """Test caching in simple mode."""
        service = EmbeddingService(dimension=16)

        first = await service.embed("hello there")
        second = await service.embed("hello there")

        assert first is second
        assert first == simple_embed("hello there", 16)

    @pytest.mark.asyncio
    async def test_embed_batch(self):
        """Test batch embedding."""
        service = EmbeddingService(dimension=8)

        vectors = await service.embed_batch(["one", "two"])

        assert [len(v) for v in vectors] == [8, 8]

    @pytest.mark.asyncio
    async def test_cache_is_bounded(self):
        """Test that the cache is bounded."""
        service = EmbeddingService(dimension=8, cache_size=2)

        first = await service.embed("one")
        await service.embed("two")
        await service.embed("three")

        assert len(service._cache) == 2
        assert await service.embed("one") is not first

    @pytest.mark.asyncio
    async def test_api_mode(self):
        """Test embedding through the API."""
        def handler(request):
            assert json.loads(request.content)["input"] == "hello"
            return httpx.Response(200, json={"data": [{"embedding": [0.6, 0.8]}]})

        service = EmbeddingService(api_key="test-key", use_simple=False)
        service._get_client = lambda: httpx.AsyncClient(
            base_url=service.base_url, transport=httpx.MockTransport(handler)
        )

        assert await service.embed("hello") == [0.6, 0.8]


    @pytest.mark.asyncio
    async def test_api_mode_requests_configured_dimension(self):
        """Test that API embeddings use the configured dimension."""
        bodies = []

        def handler(request):
            body = json.loads(request.content)
            bodies.append(body)
            size = body.get("dimensions", 1536)
            return httpx.Response(200, json={"data": [{"embedding": [1.0] + [0.0] * (size - 1)}]})

        service = EmbeddingService(api_key="test-key", use_simple=False, dimension=DIMENSION)
        service._get_client = lambda: httpx.AsyncClient(
            base_url=service.base_url, transport=httpx.MockTransport(handler)
        )
        store = MemoryStore("alice", service, dimension=DIMENSION, lifetime=AgentLifetime("alice"))

        for now, content in enumerate(["Bob waved", "The kettle boiled", "It rained"]):
            await store.append(content, MemoryKind.OBSERVATION, 3, now=now)

        assert [body["dimensions"] for body in bodies] == [DIMENSION] * 3
        assert store.fallback_embeddings == 0
        assert all(len(m.embedding) == DIMENSION for m in store.get_all())
    @pytest.mark.asyncio
    async def test_api_failure_is_unavailable(self):
        """Test that a bad API reply is unavailable."""
        service = EmbeddingService(api_key="test-key", use_simple=False)
        service._get_client = lambda: httpx.AsyncClient(
            base_url=service.base_url,
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"data": []})),
        )

        with pytest.raises(ServiceUnavailable):
            await service.embed("hello")


class TestMockLLM:
    """Tests for the offline language model."""

    @pytest.mark.asyncio
    async def test_routes_by_prompt(self):
        """Test routing replies by prompt."""
        llm = MockLLMService()

        questions = await llm.complete("Use QUESTION_1: [question]")
        assert questions.count("QUESTION_") == 3
        assert await llm.complete("Rate the poignancy of this event") == "7"
        assert "routine" in await llm.complete("INSIGHT:")
        assert await llm.complete("Say something") == "doing something interesting"

    @pytest.mark.parametrize("available", [1, 2, 40, 121])
    def test_mock_schedule_fills_the_window(self, available):
        """Test that the mock schedule fills the window."""
        lines = _mock_schedule(available).splitlines()
        total = sum(int(line.rsplit("(", 1)[1].rstrip(")")) for line in lines)

        assert total == available
        assert len(lines) == min(3, available)


class TestLLMService:
    """Tests for LLMService against a mocked HTTP transport."""

    @pytest.mark.asyncio
    async def test_completion(self):
        """Test a chat completion."""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(
                200, json={"choices": [{"message": {"content": "- Walk (30)"}}]}
            )

        service = service_with(handler)

        reply = await service.complete("Plan my day", system="Be brief", temperature=0.2)

        assert reply == "- Walk (30)"
        assert requests[0].url.path.endswith("/chat/completions")
        body = json.loads(requests[0].content)
        assert body["temperature"] == 0.2
        assert body["messages"][0] == {"role": "system", "content": "Be brief"}

    @pytest.mark.asyncio
    async def test_server_error_is_unavailable(self):
        """Test that a server error is unavailable."""
        service = service_with(lambda request: httpx.Response(500, text="boom"))

        with pytest.raises(ServiceUnavailable):
            await service.complete("Plan my day")

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self):
        """Test retrying transient errors."""
        statuses = [503, 429, 200]

        def handler(request):
            status = statuses.pop(0)
            if status != 200:
                return httpx.Response(status, text="busy")
            return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

        service = service_with(handler)
        service.max_retries = 3
        service.max_backoff = 0

        assert await service.complete("Plan my day") == "ok"
        assert statuses == []

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self):
        """Test that client errors are not retried."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401, text="bad key")

        service = service_with(handler)
        service.max_retries = 3

        with pytest.raises(ServiceUnavailable):
            await service.complete("Plan my day")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_invalid_json_is_malformed(self):
        """Test that invalid JSON is malformed."""
        service = service_with(lambda request: httpx.Response(200, text="not json"))

        with pytest.raises(MalformedResponse):
            await service.complete("Plan my day")

    @pytest.mark.asyncio
    async def test_missing_choices_is_malformed(self):
        """Test that missing choices are malformed."""
        service = service_with(lambda request: httpx.Response(200, json={"choices": []}))

        with pytest.raises(MalformedResponse):
            await service.complete("Plan my day")


class TestSettings:
    """Tests for settings and logging configuration."""

    def test_defaults(self, monkeypatch):
        """Test default settings."""
        monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")

        settings = Settings(_env_file=None)

        assert settings.openrouter_api_key == ""
        assert settings.use_simple_embeddings is True
        assert settings.log_level == "DEBUG"

    def test_logging_config(self):
        """Test building the logging config."""
        config = build_logging_config("WARNING")

        assert config["root"]["level"] == "WARNING"
        assert config["loggers"]["cognition"]["level"] == "WARNING"
        assert config["loggers"]["httpx"]["level"] == "WARNING"

    def test_configure_logging(self):
        """Test configuring logging."""
        configure_logging(Settings(_env_file=None, log_level="debug"))

        assert logging.getLogger("cognition").level == logging.DEBUG
        configure_logging(Settings(_env_file=None, log_level="info"))

    def test_llm_service_without_key_is_mock(self, monkeypatch):
        """Test the mock LLM without an API key."""
        monkeypatch.setattr(llm_module, "_llm_service", None)
        monkeypatch.setattr(
            "config.settings.get_settings", lambda: Settings(_env_file=None, openrouter_api_key="")
        )

        assert isinstance(llm_module.get_llm_service(), MockLLMService)
