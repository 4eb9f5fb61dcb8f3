"""Tests for llm.embeddings and llm.completions against a stubbed OpenAI client."""

from types import SimpleNamespace

import httpx
import openai
import pytest

from llm.completions import CompletionClient, CompletionError
from llm.embeddings import EmbeddingClient, EmbeddingError
from schemas.config import EmbeddingConfig


class StubEmbeddingsAPI:
    """Mimics ``AsyncOpenAI().embeddings`` with scripted failures."""

    def __init__(self, dimensions: int = 3, failures: int = 0, wrong_dimensions: bool = False):
        self.dimensions = dimensions
        self.failures = failures
        self.wrong_dimensions = wrong_dimensions
        self.requests: list[list[str]] = []

    async def create(self, model, input):
        self.requests.append(list(input))
        if self.failures > 0:
            self.failures -= 1
            raise openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1/embeddings"))
        size = self.dimensions + 1 if self.wrong_dimensions else self.dimensions
        return SimpleNamespace(
            data=[SimpleNamespace(embedding=[float(len(text))] * size) for text in input]
        )


def make_client(api: StubEmbeddingsAPI, **config) -> EmbeddingClient:
    values = dict(dimensions=3, retry_delay=0.0)
    values.update(config)
    return EmbeddingClient(
        EmbeddingConfig(**values),
        api_key="test-key",
        client=SimpleNamespace(embeddings=api),
    )


@pytest.mark.asyncio
async def test_embed_returns_vectors_in_order():
    api = StubEmbeddingsAPI()
    client = make_client(api)

    vectors = await client.embed(["a", "bbb"])

    assert vectors == [[1.0, 1.0, 1.0], [3.0, 3.0, 3.0]]


@pytest.mark.asyncio
async def test_cached_texts_skip_provider():
    api = StubEmbeddingsAPI()
    client = make_client(api)

    await client.embed(["hello world"])
    vectors = await client.embed(["hello   world", "new text"])

    assert api.requests == [["hello world"], ["new text"]]
    assert vectors[0] == [11.0, 11.0, 11.0]


@pytest.mark.asyncio
async def test_duplicate_texts_embedded_once():
    api = StubEmbeddingsAPI()
    client = make_client(api)

    vectors = await client.embed(["same", "same", "other"])

    assert api.requests == [["same", "other"]]
    assert vectors[0] == vectors[1]


@pytest.mark.asyncio
async def test_batches_respect_batch_size():
    api = StubEmbeddingsAPI()
    client = make_client(api, batch_size=2, enable_cache=False)

    vectors = await client.embed(["a", "b", "c", "d", "e"])

    assert [len(batch) for batch in api.requests] == [2, 2, 1]
    assert len(vectors) == 5


@pytest.mark.asyncio
async def test_retries_then_succeeds():
    api = StubEmbeddingsAPI(failures=2)
    client = make_client(api, max_retries=3)

    vector = await client.embed_single("retry me")

    assert len(api.requests) == 3
    assert len(vector) == 3


@pytest.mark.asyncio
async def test_gives_up_after_max_retries():
    api = StubEmbeddingsAPI(failures=5)
    client = make_client(api, max_retries=3)

    with pytest.raises(EmbeddingError):
        await client.embed_single("never works")

    assert len(api.requests) == 3


@pytest.mark.asyncio
async def test_wrong_dimensions_rejected():
    client = make_client(StubEmbeddingsAPI(wrong_dimensions=True))

    with pytest.raises(EmbeddingError):
        await client.embed_single("text")


@pytest.mark.asyncio
async def test_failed_embeddings_are_not_cached():
    api = StubEmbeddingsAPI(failures=1)
    client = make_client(api, max_retries=1)

    with pytest.raises(EmbeddingError):
        await client.embed_single("text")
    await client.embed_single("text")

    assert len(api.requests) == 2


@pytest.mark.asyncio
async def test_missing_api_key():
    client = EmbeddingClient(EmbeddingConfig(), api_key=None)
    client.api_key = None

    with pytest.raises(EmbeddingError):
        await client.embed_single("text")


class StubCompletionsAPI:
    def __init__(self, content="answer", error: Exception | None = None):
        self.content = content
        self.error = error
        self.kwargs: dict = {}

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def completion_client(api: StubCompletionsAPI) -> CompletionClient:
    return CompletionClient(api_key="test-key", client=SimpleNamespace(chat=SimpleNamespace(completions=api)))


@pytest.mark.asyncio
async def test_complete_passes_sampling_settings():
    api = StubCompletionsAPI(content="terms")
    client = completion_client(api)

    text = await client.complete("prompt", temperature=0.3, max_tokens=300)

    assert text == "terms"
    assert api.kwargs["temperature"] == 0.3
    assert api.kwargs["max_tokens"] == 300
    assert api.kwargs["messages"][-1] == {"role": "user", "content": "prompt"}


@pytest.mark.asyncio
async def test_complete_wraps_provider_errors():
    error = openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))
    client = completion_client(StubCompletionsAPI(error=error))

    with pytest.raises(CompletionError):
        await client.complete("prompt")


@pytest.mark.asyncio
async def test_complete_handles_empty_content():
    client = completion_client(StubCompletionsAPI(content=None))
    assert await client.complete("prompt") == ""
