"""Tests for EngineSettings resolution."""

import json

import pytest

from world_engine.config import EngineSettings
from world_engine.llm import HttpLLM
from world_engine.lorebook.embeddings import DEFAULT_MODEL, SemanticRanker


@pytest.fixture
def no_env_file(tmp_path):
    return tmp_path / "missing.env"


def test_defaults(no_env_file):
    settings = EngineSettings.from_env(no_env_file, environ={})
    assert settings.llm_url == "http://localhost:5001"
    assert settings.embedding_model == DEFAULT_MODEL
    assert settings.token_budget is None


def test_environment_overrides(no_env_file):
    settings = EngineSettings.from_env(no_env_file, environ={
        "WORLD_ENGINE_LLM_URL": "http://gpu:8000",
        "WORLD_ENGINE_LLM_MODEL": "mistral",
        "WORLD_ENGINE_TOKEN_BUDGET": "4096",
        "WORLD_ENGINE_EMBEDDING_TTL": "60",
    })
    assert settings.llm_url == "http://gpu:8000"
    assert settings.llm_model == "mistral"
    assert settings.token_budget == 4096
    assert settings.embedding_ttl == 60.0


def test_config_file_then_environment(tmp_path, no_env_file):
    path = tmp_path / "engine.json"
    path.write_text(json.dumps({"llm_url": "http://from-file", "llm_model": "file-model"}))
    settings = EngineSettings.from_env(no_env_file, environ={
        "WORLD_ENGINE_CONFIG": str(path),
        "WORLD_ENGINE_LLM_MODEL": "env-model",
    })
    assert settings.llm_url == "http://from-file"
    assert settings.llm_model == "env-model"


def test_missing_config_file_warns(tmp_path, no_env_file, caplog):
    settings = EngineSettings.from_env(no_env_file, environ={"WORLD_ENGINE_CONFIG": str(tmp_path / "nope.json")})
    assert settings.llm_url == "http://localhost:5001"
    assert "not found" in caplog.text


def test_env_file_loaded(tmp_path, monkeypatch):
    # set then delete so teardown also removes what load_dotenv writes
    monkeypatch.setenv("WORLD_ENGINE_LLM_API_KEY", "")
    monkeypatch.delenv("WORLD_ENGINE_LLM_API_KEY", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("WORLD_ENGINE_LLM_API_KEY=from-dotenv\n")
    assert EngineSettings.from_env(env_file).llm_api_key == "from-dotenv"


def test_from_mapping_ignores_unknown_keys():
    settings = EngineSettings.from_mapping({"llm_url": "http://x", "colour": "blue"})
    assert settings.llm_url == "http://x"


def test_from_mapping_rejects_bad_numbers():
    with pytest.raises(ValueError, match="Invalid numeric setting"):
        EngineSettings.from_mapping({"token_budget": "lots"})


def test_factories():
    settings = EngineSettings.from_mapping({"embedding_url": "http://embed"})
    assert isinstance(settings.make_llm(), HttpLLM)
    assert isinstance(settings.make_semantic_ranker(), SemanticRanker)
    assert EngineSettings().make_semantic_ranker() is None


def test_empty_token_budget_means_world_setting():
    assert EngineSettings.from_mapping({"token_budget": ""}).token_budget is None
