from pathlib import Path

import pytest

from memoria.config import get_settings
from memoria.db.migrations.runner import run_migrations
from memoria.memory.factory import reset_memory_cache
from memoria.tasks import reset_background_runner


@pytest.fixture(autouse=True)
def test_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("APP_ENV", "dev")
    monkeypatch.setenv("APP_DB", str(tmp_path / "test.db"))
    monkeypatch.setenv("EMBEDDING_BACKEND", "hash")
    monkeypatch.setenv("EMBEDDING_DIMS", "64")
    monkeypatch.setenv("SUMMARIZATION_RETRY_BACKOFF_SECONDS", "0")
    monkeypatch.setenv("LLM_BASE_URL", "http://llm.test/v1")
    get_settings.cache_clear()
    reset_memory_cache()
    reset_background_runner()
    run_migrations()
    yield
    get_settings.cache_clear()
    reset_memory_cache()
    reset_background_runner()
