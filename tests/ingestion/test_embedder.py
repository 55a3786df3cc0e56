import pytest

from agent.exceptions import EmbeddingProviderError, EmptyInputError
from fakes import FakeEmbeddings, FakeOpenAI, api_status_error
from ingestion.embedder import EmbeddingProvider


def _provider(embeddings: FakeEmbeddings) -> EmbeddingProvider:
    return EmbeddingProvider(FakeOpenAI(embeddings=embeddings), model="text-embedding-3-small", dims=3)


@pytest.mark.asyncio
async def test_embed_one_sends_single_string():
    embeddings = FakeEmbeddings(vectors={"menu": [0.1, 0.2, 0.3]}, tokens_per_input=4)
    result = await _provider(embeddings).embed_one("  menu  ")

    assert result.vector == [0.1, 0.2, 0.3]
    assert result.token_count == 4
    assert embeddings.calls == [{"input": "menu", "model": "text-embedding-3-small"}]


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["", "   ", "\n\t"])
async def test_embed_one_rejects_empty(text):
    embeddings = FakeEmbeddings()
    with pytest.raises(EmptyInputError):
        await _provider(embeddings).embed_one(text)
    assert embeddings.calls == []


@pytest.mark.asyncio
async def test_embed_batch_filters_empty_and_keeps_order():
    embeddings = FakeEmbeddings(
        vectors={"a": [1.0, 0.0, 0.0], "b": [0.0, 1.0, 0.0], "c": [0.0, 0.0, 1.0]},
        tokens_per_input=6,
    )
    results = await _provider(embeddings).embed_batch(["a", "", "b", "   ", "c"])

    assert [r.vector for r in results] == [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]]
    assert [r.token_count for r in results] == [6.0, 6.0, 6.0]
    assert embeddings.calls[0]["input"] == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_embed_batch_all_empty_raises():
    with pytest.raises(EmptyInputError):
        await _provider(FakeEmbeddings()).embed_batch(["", "  "])


@pytest.mark.asyncio
async def test_provider_error_carries_status():
    embeddings = FakeEmbeddings(error=api_status_error(401, "Bad credentials"))
    with pytest.raises(EmbeddingProviderError) as exc_info:
        await _provider(embeddings).embed_one("hello")
    assert exc_info.value.status_code == 401
    assert "401" in exc_info.value.message


def test_get_dimension():
    assert _provider(FakeEmbeddings()).get_dimension() == 3
