"""Pytest configuration and fixtures."""

import pytest

from cognition.agent import AgentCognition
from cognition.config import CognitionConfig
from cognition.lifecycle import AgentLifetime
from cognition.memory import MemoryStore
from cognition.plan import Planner
from cognition.reflect import ReflectionEngine
from cognition.retrieve import RetrievalScorer
from cognition.social import SocialMemory
from doubles import DIMENSION, FakeEmbedder, ScriptedLLM


@pytest.fixture
def config():
    """Small configuration so tests stay fast and readable."""
    return CognitionConfig(
        embedding_dimension=DIMENSION,
        day_length=120,
        hourly_step=30,
        interval_step=5,
        review_interval=1000,
    )


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def llm():
    return ScriptedLLM()


@pytest.fixture
def store(embedder):
    return MemoryStore("alice", embedder, dimension=DIMENSION, lifetime=AgentLifetime("alice"))


@pytest.fixture
def scorer(store, config):
    return RetrievalScorer(store, config)


@pytest.fixture
def engine(store, scorer, llm, config):
    return ReflectionEngine(store, scorer, llm, config, agent_name="Alice")


@pytest.fixture
def planner(store, scorer, llm, config):
    return Planner(store, scorer, llm, config, agent_name="Alice")


@pytest.fixture
def social(store, config):
    return SocialMemory(store, config, agent_name="Alice")


@pytest.fixture
def agent(llm, embedder, config):
    agent = AgentCognition("alice", llm, embedder, config, name="Alice")
    yield agent
    agent.close()


@pytest.fixture
def tmp_db(tmp_path):
    """Create a temporary database path."""
    return tmp_path / "test.db"
