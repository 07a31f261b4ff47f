"""Engine configuration — LLM and embedding backends, retrieval defaults.

Values resolve in this order, later winning:

    built-in defaults  ->  JSON config file (WORLD_ENGINE_CONFIG)  ->  environment

A ``.env`` file at the project root is loaded first, so anything it sets
counts as environment.

    WORLD_ENGINE_LLM_URL            chat backend base URL
    WORLD_ENGINE_LLM_API_KEY        bearer token for the chat backend
    WORLD_ENGINE_LLM_MODEL          model name sent with each request
    WORLD_ENGINE_EMBEDDING_URL      embedding backend base URL (empty disables semantic ranking)
    WORLD_ENGINE_EMBEDDING_API_KEY  bearer token for the embedding backend
    WORLD_ENGINE_EMBEDDING_MODEL    embedding model name
    WORLD_ENGINE_EMBEDDING_TTL      seconds an embedding stays cached
    WORLD_ENGINE_TOKEN_BUDGET       lore + history budget in estimated tokens, overriding
                                    the world's own setting when present
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from world_engine.cache import TTLCache
from world_engine.llm import HttpLLM
from world_engine.lorebook.embeddings import DEFAULT_MODEL, EmbeddingClient, SemanticRanker

logger = logging.getLogger(__name__)

ROOT = Path(__file__).parent.parent
ENV_PREFIX = "WORLD_ENGINE_"

_CONFIG_DEFAULTS: dict[str, Any] = {
    "llm_url": "http://localhost:5001",
    "llm_api_key": "",
    "llm_model": "",
    "embedding_url": "",
    "embedding_api_key": "",
    "embedding_model": DEFAULT_MODEL,
    "embedding_ttl": 3600.0,
    "token_budget": None,
}


@dataclass(frozen=True)
class EngineSettings:
    llm_url: str = _CONFIG_DEFAULTS["llm_url"]
    llm_api_key: str = ""
    llm_model: str = ""
    embedding_url: str = ""
    embedding_api_key: str = ""
    embedding_model: str = DEFAULT_MODEL
    embedding_ttl: float = _CONFIG_DEFAULTS["embedding_ttl"]
    token_budget: int | None = None

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> EngineSettings:
        """Build settings from defaults merged with `values`, coercing to field types."""
        merged = dict(_CONFIG_DEFAULTS)
        merged.update({k: v for k, v in values.items() if k in _CONFIG_DEFAULTS})
        try:
            merged["embedding_ttl"] = float(merged["embedding_ttl"])
            budget = merged["token_budget"]
            merged["token_budget"] = None if budget in (None, "") else int(budget)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid numeric setting: {e}") from e
        return cls(**merged)

    @classmethod
    def from_env(cls, env_file: Path | None = None, environ: Mapping[str, str] | None = None) -> EngineSettings:
        load_dotenv(env_file or ROOT / ".env")
        environ = os.environ if environ is None else environ

        values: dict[str, Any] = {}
        config_file = environ.get(f"{ENV_PREFIX}CONFIG")
        if config_file:
            path = Path(config_file)
            if path.is_file():
                values.update(json.loads(path.read_text()))
            else:
                logger.warning("Config file %s not found, using defaults", path)

        for f in fields(cls):
            raw = environ.get(f"{ENV_PREFIX}{f.name.upper()}")
            if raw is not None:
                values[f.name] = raw
        return cls.from_mapping(values)

    def make_llm(self) -> HttpLLM:
        return HttpLLM(self.llm_url, api_key=self.llm_api_key, model=self.llm_model)

    def make_semantic_ranker(self, cache: TTLCache[str, list[float]] | None = None) -> SemanticRanker | None:
        """A ranker backed by the configured embedding endpoint, or None if unset."""
        if not self.embedding_url:
            return None
        client = EmbeddingClient(
            self.embedding_url,
            api_key=self.embedding_api_key,
            model=self.embedding_model,
        )
        cache = cache if cache is not None else TTLCache(default_ttl=self.embedding_ttl)
        return SemanticRanker(client, cache, ttl=self.embedding_ttl)
