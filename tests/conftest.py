"""
Shared fixtures for the Science Buddy engine tests.
"""

import os
import sys

import pytest

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, os.path.join(project_root, "science_buddy", "src"))
sys.path.insert(0, os.path.dirname(__file__))

from science_buddy.config import EngineConfig
from support import FlakyStoreBackend, ScriptedProvider, RecordingSleep

TEST_MODEL_CHAIN = ["model-large", "model-medium", "model-small"]


@pytest.fixture
def config():
    """Fixed model chain and no context cache."""
    return EngineConfig(
        provider_api_key="test-key",
        model_chain=list(TEST_MODEL_CHAIN),
        rate_limit_backoff_seconds=1.2,
        rate_limit_retries=1,
        history_window=30,
        context_timeout_seconds=1.0,
        context_cache_ttl_seconds=0,
    )


@pytest.fixture
def backend():
    return FlakyStoreBackend()


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def sleep():
    return RecordingSleep()
