"""
Configuration — loads settings from .codememory.yaml, environment variables,
and built-in defaults (in that priority order: env > YAML > defaults).
"""

import logging
import os

import yaml

logger = logging.getLogger(__name__)


_DEFAULTS = {
    "storage_dir": ".codememory",
    "embedding_dimension": 384,
    "idf_mode": "reference",
    "max_memory_entries": 1000,
    "context_cache_size": 512,
    "default_top_k": 10,
    "pretty_json": True,
    "pattern_indicator_filter": True,
}

_IDF_MODES = ("reference", "incremental")

# Config file search locations
_CONFIG_FILENAMES = [".codememory.yaml", ".codememory.yml"]


def _find_config_file(explicit_path: str | None = None) -> str | None:
    """Find the config file. Checks explicit path, CWD, then user home."""
    if explicit_path:
        if os.path.isfile(explicit_path):
            return explicit_path
        return None

    search_dirs = [os.getcwd(), os.path.expanduser("~")]
    for d in search_dirs:
        for name in _CONFIG_FILENAMES:
            path = os.path.join(d, name)
            if os.path.isfile(path):
                return path
    return None


def _load_yaml(path: str) -> dict:
    """Load YAML file, returns empty dict on failure."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("[Config] Could not read %s: %s", path, e)
        return {}


class Config:
    """Engine configuration.

    Settings are resolved in priority order:
    1. Environment variables (``CODEMEMORY_*``)
    2. .codememory.yaml config file
    3. Built-in defaults
    """

    def __init__(self, yaml_data: dict | None = None):
        yd = yaml_data or {}

        # Helper: env var > yaml > default
        def _get(env_key: str, yaml_key: str, default, cast=str):
            env_val = os.getenv(env_key)
            if env_val is not None:
                return cast(env_val)
            yaml_val = yd.get(yaml_key)
            if yaml_val is not None:
                return cast(yaml_val)
            return default

        def _get_bool(env_key: str, yaml_key: str, default: bool) -> bool:
            env_val = os.getenv(env_key)
            if env_val is not None:
                return env_val.lower() == "true"
            yaml_val = yd.get(yaml_key)
            if yaml_val is not None:
                return bool(yaml_val)
            return default

        self.STORAGE_DIR = _get("CODEMEMORY_STORAGE_DIR", "storage_dir",
                                _DEFAULTS["storage_dir"])
        self.EMBEDDING_DIMENSION = _get("CODEMEMORY_EMBEDDING_DIMENSION",
                                        "embedding_dimension",
                                        _DEFAULTS["embedding_dimension"], cast=int)

        self.IDF_MODE = _get("CODEMEMORY_IDF_MODE", "idf_mode",
                             _DEFAULTS["idf_mode"]).lower()
        if self.IDF_MODE not in _IDF_MODES:
            logger.warning("[Config] Unknown idf_mode %r, using %r",
                           self.IDF_MODE, _DEFAULTS["idf_mode"])
            self.IDF_MODE = _DEFAULTS["idf_mode"]

        # Memory ledger cap
        self.MAX_MEMORY_ENTRIES = _get("CODEMEMORY_MAX_MEMORY_ENTRIES",
                                       "max_memory_entries",
                                       _DEFAULTS["max_memory_entries"], cast=int)

        # Semantic-context LRU size
        self.CONTEXT_CACHE_SIZE = _get("CODEMEMORY_CONTEXT_CACHE_SIZE",
                                       "context_cache_size",
                                       _DEFAULTS["context_cache_size"], cast=int)

        self.DEFAULT_TOP_K = _get("CODEMEMORY_DEFAULT_TOP_K", "default_top_k",
                                  _DEFAULTS["default_top_k"], cast=int)
        self.PRETTY_JSON = _get_bool("CODEMEMORY_PRETTY_JSON", "pretty_json",
                                     _DEFAULTS["pretty_json"])

        # Architectural-pattern probes: require the indicator text in the hit
        self.PATTERN_INDICATOR_FILTER = _get_bool(
            "CODEMEMORY_PATTERN_INDICATOR_FILTER", "pattern_indicator_filter",
            _DEFAULTS["pattern_indicator_filter"])

    @classmethod
    def load(cls, config_path: str | None = None) -> "Config":
        """Load config from YAML file (if found) + env vars + defaults."""
        path = _find_config_file(config_path)
        yaml_data = _load_yaml(path) if path else {}
        return cls(yaml_data)
