"""YAML configuration loader with environment variable overrides.

Configuration is layered, later layers winning:

    1. config/config.yaml  -- defaults committed with the repo
    2. .env file           -- local developer overrides
    3. environment vars    -- deployment-time values

:func:`load_config` reads the YAML file and deep-merges the values resolved
by :class:`~pdfquiz.config.settings.Settings` on top of it, so a key present
in both places takes the environment's value.
"""

from __future__ import annotations

from pathlib import Path

import yaml

from pdfquiz.config.settings import Settings


def load_config(path: str = "config/config.yaml", settings: Settings | None = None) -> dict:
    """Load the YAML config and merge environment-based settings over it.

    Parameters
    ----------
    path:
        Path to the YAML configuration file.  A missing file yields an
        empty base.
    settings:
        Pre-built settings; constructed from the environment when omitted.

    Returns
    -------
    dict
        Fully resolved configuration.
    """
    config_path = Path(path)
    if config_path.exists():
        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}
    else:
        yaml_config = {}

    settings = settings or Settings()
    env_overrides = {
        "app": {
            "host": settings.app_host,
            "port": settings.app_port,
            "env": settings.app_env,
        },
        "llm": {
            "text_model": settings.openai_text_model,
            "embedding_model": settings.openai_embedding_model,
            "available_providers": settings.get_available_providers(),
        },
        "chunker": {
            "chunk_size_tokens": settings.chunk_size_tokens,
            "chunk_overlap_tokens": settings.chunk_overlap_tokens,
            "min_chunk_tokens": settings.min_chunk_tokens,
        },
        "pipeline": {
            "stage_concurrency": settings.stage_concurrency,
            "stage_rate_limit": settings.stage_rate_limit,
            "stage_rate_window_seconds": settings.stage_rate_window_seconds,
            "max_attempts": settings.max_attempts,
            "backoff_base_seconds": settings.backoff_base_seconds,
        },
        "logging": {
            "level": settings.log_level,
        },
    }

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
