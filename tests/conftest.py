"""
Pytest configuration for the retrieval test suite.

Configures:
- the repository root on ``sys.path``
- shared fakes for the store and model providers
"""

import sys
from pathlib import Path

import pytest

REPO_ROOT = str(Path(__file__).resolve().parent.parent)
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from fakes import FakeCompletionClient, FakeEmbeddingClient  # noqa: E402


@pytest.fixture
def embedding_client():
    return FakeEmbeddingClient()


@pytest.fixture
def llm_client():
    return FakeCompletionClient()
