"""Configuration for the Lorekeeper campaign knowledge graph.

Loads from environment variables with sensible defaults.
Optionally reads a config.json file.

Note:
    Environment variables use the ``LOREKEEPER_*`` prefix. Provider
    credentials keep their conventional names (``JINA_API_KEY``,
    ``ANTHROPIC_API_KEY``).
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass
class Config:
    """Central configuration for storage, providers and the HTTP API."""

    # Jina embeddings (optional: without a key retrieval is keyword-only)
    jina_api_key: str = ""
    embedding_model: str = "jina-embeddings-v3"
    embedding_dimensions: int = 1024
    jina_base_url: str = "https://api.jina.ai/v1"

    # Anthropic extraction
    anthropic_api_key: str = ""
    extraction_model: str = "claude-3-5-haiku-20241022"
    extraction_max_tokens: int = 8192
    extraction_deadline: float = 45.0

    # Anthropic campaign chat (shares the extraction API key)
    chat_model: str = "claude-3-5-haiku-20241022"
    chat_max_tokens: int = 1024

    # Storage
    db_path: str = ""  # resolved in load_config()

    # API
    # Security: bind to localhost by default. Override with LOREKEEPER_HOST if needed.
    api_host: str = "127.0.0.1"
    api_port: int = 8790
    cors_origins: str = "http://localhost,http://127.0.0.1"

    # Embedding retry (429 only) and in-process cache
    embed_max_retries: int = 3
    embed_cache_size: int = 512

    # Spotlight summary cache
    spotlight_ttl_seconds: float = 7 * 24 * 3600.0

    def validate(self) -> list[str]:
        """Return a list of validation errors (empty == OK)."""
        errors: list[str] = []
        if not self.anthropic_api_key:
            errors.append("ANTHROPIC_API_KEY is required for extraction")
        if self.embedding_dimensions < 1:
            errors.append("LOREKEEPER_DIMENSIONS must be >= 1")
        if self.api_port < 1 or self.api_port > 65535:
            errors.append("LOREKEEPER_PORT must be 1-65535")
        if self.extraction_deadline <= 0:
            errors.append("LOREKEEPER_EXTRACTION_DEADLINE must be > 0")
        return errors


def load_config(config_path: Optional[str] = None) -> Config:
    """Build a Config from environment variables, optionally overlaid with a JSON file.

    Environment variables (all optional):
        JINA_API_KEY
        ANTHROPIC_API_KEY
        LOREKEEPER_DB
        LOREKEEPER_EMBEDDING_MODEL
        LOREKEEPER_DIMENSIONS
        LOREKEEPER_EXTRACTION_MODEL
        LOREKEEPER_EXTRACTION_DEADLINE
        LOREKEEPER_CHAT_MODEL
        LOREKEEPER_HOST
        LOREKEEPER_PORT
    """
    cfg = Config()

    # --- JSON file overlay ------------------------------------------------
    json_path = config_path or os.environ.get("LOREKEEPER_CONFIG")
    if json_path and Path(json_path).is_file():
        with open(json_path, "r") as fh:
            data = json.load(fh)
        for key, val in data.items():
            if hasattr(cfg, key):
                expected_type = type(getattr(cfg, key))
                try:
                    setattr(cfg, key, expected_type(val))
                except (ValueError, TypeError):
                    pass  # skip bad values

    # --- Environment variable overlay -------------------------------------
    env_map: dict[str, tuple[str, type]] = {
        "JINA_API_KEY": ("jina_api_key", str),
        "ANTHROPIC_API_KEY": ("anthropic_api_key", str),
        "LOREKEEPER_DB": ("db_path", str),
        "LOREKEEPER_EMBEDDING_MODEL": ("embedding_model", str),
        "LOREKEEPER_DIMENSIONS": ("embedding_dimensions", int),
        "LOREKEEPER_EXTRACTION_MODEL": ("extraction_model", str),
        "LOREKEEPER_EXTRACTION_DEADLINE": ("extraction_deadline", float),
        "LOREKEEPER_CHAT_MODEL": ("chat_model", str),
        "LOREKEEPER_HOST": ("api_host", str),
        "LOREKEEPER_PORT": ("api_port", int),
        "LOREKEEPER_CORS_ORIGINS": ("cors_origins", str),
    }

    for env_key, (attr, cast) in env_map.items():
        val = os.environ.get(env_key)
        if val is not None:
            try:
                setattr(cfg, attr, cast(val))
            except (ValueError, TypeError):
                pass

    # --- Default db_path resolution ---------------------------------------
    if not cfg.db_path:
        cfg.db_path = str(Path.home() / ".lorekeeper" / "lorekeeper.sqlite")

    return cfg
