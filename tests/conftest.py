import pytest

from agent.logging_utils import api_call_logger, ingestion_logger, token_usage_logger
from fakes import FakeEmbeddings, FakeOpenAI, InMemoryStore


@pytest.fixture(autouse=True)
def metrics_dir(tmp_path, monkeypatch):
    """Los CSV de métricas van a un directorio temporal por test."""
    for csv_logger in (api_call_logger, token_usage_logger, ingestion_logger):
        filename = csv_logger.file_path.replace("\\", "/").rsplit("/", 1)[-1]
        monkeypatch.setattr(csv_logger, "file_path", str(tmp_path / filename))
    return tmp_path


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def embeddings():
    return FakeEmbeddings()


@pytest.fixture
def make_openai(embeddings):
    def _make(*completions):
        return FakeOpenAI(list(completions), embeddings=embeddings)
    return _make
