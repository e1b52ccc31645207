"""Tests for settings.py — load_settings defaults and env overrides."""
from __future__ import annotations

import pytest

from docchat.settings import (
    OpenAISettings,
    RerankSettings,
    RetrievalSettings,
    Settings,
    load_settings,
)

ENV_VARS = [
    "OPENAI_EMBEDDING_MODEL",
    "OPENAI_EMBEDDING_DIMENSIONS",
    "COHERE_API_KEY",
    "COHERE_RERANK_MODEL",
    "RERANK_PROVIDER",
    "LOCAL_RERANK_MODEL",
    "SUPABASE_URL",
    "SUPABASE_KEY",
    "RETRIEVAL_TOP_K",
    "RETRIEVAL_SIMILARITY_THRESHOLD",
    "RERANK_TOP_N",
    "CONTEXT_SIZE",
]


@pytest.fixture()
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestDataclassDefaults:
    def test_openai_defaults(self):
        s = OpenAISettings()
        assert s.embedding_model == "text-embedding-3-small"
        assert s.embedding_dimensions is None

    def test_rerank_defaults(self):
        s = RerankSettings()
        assert s.provider == "cohere"
        assert s.cohere_api_key is None
        assert s.cohere_model == "rerank-english-v3.0"

    def test_retrieval_defaults(self):
        s = RetrievalSettings()
        assert s.top_k == 30
        assert s.similarity_threshold == pytest.approx(0.3)
        assert s.rerank_top_n == 15
        assert s.context_size == 10


class TestLoadSettings:
    def test_returns_settings(self, clean_env):
        assert isinstance(load_settings(), Settings)

    def test_defaults_when_env_vars_absent(self, clean_env):
        settings = load_settings()
        assert settings.openai.embedding_model == "text-embedding-3-small"
        assert settings.rerank.cohere_api_key is None
        assert settings.supabase.url is None
        assert settings.retrieval.top_k == 30

    def test_env_vars_override_defaults(self, clean_env):
        clean_env.setenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-large")
        clean_env.setenv("OPENAI_EMBEDDING_DIMENSIONS", "1024")
        clean_env.setenv("COHERE_API_KEY", "secret")
        clean_env.setenv("RERANK_PROVIDER", "local")
        clean_env.setenv("RETRIEVAL_SIMILARITY_THRESHOLD", "0.45")
        clean_env.setenv("CONTEXT_SIZE", "5")
        settings = load_settings()
        assert settings.openai.embedding_model == "text-embedding-3-large"
        assert settings.openai.embedding_dimensions == 1024
        assert settings.rerank.cohere_api_key == "secret"
        assert settings.rerank.provider == "local"
        assert settings.retrieval.similarity_threshold == pytest.approx(0.45)
        assert settings.retrieval.context_size == 5

    def test_empty_credential_is_treated_as_missing(self, clean_env):
        clean_env.setenv("COHERE_API_KEY", "")
        assert load_settings().rerank.cohere_api_key is None
