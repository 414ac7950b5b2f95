# backend/src/quarry/config.py
"""Configuration system for Quarry.

Settings come from environment variables and an optional INI file in the
data directory. Every tunable has a schema entry with a default and an
allowed range, so a missing or partial config file is always valid.
"""

from configparser import ConfigParser
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional
import os


class ConfigError(Exception):
    """Raised when configuration validation fails."""

    pass


# Schema: section -> key -> (type, default, min, max, description)
CONFIG_SCHEMA: dict[str, dict[str, tuple[type, Any, Any, Any, str]]] = {
    "chunking": {
        "max_chunk_chars": (int, 3200, 200, 100_000, "Target/maximum chunk size in characters"),
        "window_overlap_chars": (int, 480, 0, 10_000, "Context carried between windows"),
        "break_search_percent": (int, 30, 0, 90, "Tail of a window searched for a break"),
        "context_max_chars": (int, 240, 0, 4000, "Context bound folded into chunk identity"),
        "nested_outline_chars": (int, 800, 0, 20_000, "Signature outline budget for containers"),
    },
    "embedding": {
        "concurrency_limit": (int, 8, 1, 256, "Concurrent embedding calls"),
        "timeout_seconds": (float, 30.0, 0.1, 600.0, "Per-call embedding timeout"),
        "batch_size": (int, 32, 1, 2048, "Texts sent per embedding request"),
    },
    "search": {
        "result_limit": (int, 10, 1, 100, "Default search results to return"),
        "max_limit": (int, 100, 1, 1000, "Largest accepted result limit"),
        "candidate_multiplier": (int, 3, 1, 20, "Candidates fetched per requested result"),
        "rrf_k": (int, 60, 1, 1000, "Reciprocal Rank Fusion offset"),
        "path_boost": (float, 10.0, 1.0, 100.0, "Multiplier when a term hits the path"),
        "title_boost": (float, 4.0, 1.0, 100.0, "Multiplier when a term hits the title"),
        "test_path_penalty": (float, 0.5, 0.0, 1.0, "Multiplier for test files"),
    },
    "files": {
        "max_file_size_kb": (int, 500, 1, 100_000, "Max file size to index in KB"),
        "minified_line_length": (int, 500, 50, 10_000, "Avg line length that marks minified files"),
    },
    "orchestrator": {
        "cache_ttl_seconds": (int, 3600, 1, 86_400, "Strategy decision time-to-live"),
        "cache_max_entries": (int, 1024, 1, 1_000_000, "Strategy decision cache capacity"),
        "classify_timeout": (float, 5.0, 0.1, 120.0, "Timeout for the LLM classifier"),
        "use_classifier": (bool, False, None, None, "Ask the LLM to pick each query workflow"),
    },
    "rerank": {
        "enabled": (bool, False, None, None, "Use the LLM reranker when configured"),
        "timeout_seconds": (float, 10.0, 0.1, 300.0, "Timeout for a rerank call"),
        "max_docs": (int, 40, 1, 200, "Candidates handed to the reranker"),
    },
    "llm": {
        "max_tokens": (int, 8192, 256, 32768, "Max response tokens"),
        "default_temperature": (float, 0.7, 0.0, 2.0, "Default LLM temperature"),
        "json_temperature": (float, 0.0, 0.0, 1.0, "Temperature for structured output"),
    },
    "paths": {
        "db_file": (str, "quarry.db", None, None, "SQLite database file name"),
        "chroma_dir": (str, "chroma", None, None, "ChromaDB directory name"),
        "logs_dir": (str, "logs", None, None, "Logs directory name"),
    },
}


@dataclass(frozen=True)
class ChunkingConfig:
    """Chunker configuration."""

    max_chunk_chars: int
    window_overlap_chars: int
    break_search_percent: int
    context_max_chars: int
    nested_outline_chars: int


@dataclass(frozen=True)
class EmbeddingConfig:
    """Embedding pipeline configuration."""

    concurrency_limit: int
    timeout_seconds: float
    batch_size: int


@dataclass(frozen=True)
class SearchConfig:
    """Search and ranking configuration."""

    result_limit: int
    max_limit: int
    candidate_multiplier: int
    rrf_k: int
    path_boost: float
    title_boost: float
    test_path_penalty: float


@dataclass(frozen=True)
class FilesConfig:
    """File source filtering configuration."""

    max_file_size_kb: int
    minified_line_length: int


@dataclass(frozen=True)
class OrchestratorConfig:
    """Query strategy orchestrator configuration."""

    cache_ttl_seconds: int
    cache_max_entries: int
    classify_timeout: float
    use_classifier: bool


@dataclass(frozen=True)
class RerankConfig:
    """Reranker configuration."""

    enabled: bool
    timeout_seconds: float
    max_docs: int


@dataclass(frozen=True)
class LLMConfig:
    """LLM client configuration."""

    max_tokens: int
    default_temperature: float
    json_temperature: float


@dataclass(frozen=True)
class PathsConfig:
    """Path names configuration."""

    db_file: str
    chroma_dir: str
    logs_dir: str


_SECTION_TYPES: dict[str, type] = {
    "chunking": ChunkingConfig,
    "embedding": EmbeddingConfig,
    "search": SearchConfig,
    "files": FilesConfig,
    "orchestrator": OrchestratorConfig,
    "rerank": RerankConfig,
    "llm": LLMConfig,
    "paths": PathsConfig,
}


def _load_section(
    parser: ConfigParser, section: str, schema: dict[str, tuple[type, Any, Any, Any, str]]
) -> dict[str, Any]:
    """Load and validate a configuration section.

    Args:
        parser: ConfigParser instance with loaded config
        section: Section name to load
        schema: Schema definition for the section

    Returns:
        Dictionary of validated configuration values

    Raises:
        ConfigError: If validation fails
    """
    result = {}

    for key, (typ, default, min_val, max_val, _) in schema.items():
        if parser.has_option(section, key):
            raw_value = parser.get(section, key)
            value: bool | int | float | str
            try:
                if typ is bool:
                    value = raw_value.lower() in ("true", "1", "yes", "on")
                elif typ is int:
                    value = int(raw_value)
                elif typ is float:
                    value = float(raw_value)
                else:
                    value = raw_value
            except ValueError as e:
                raise ConfigError(
                    f"Invalid value for [{section}].{key}: {raw_value!r} (expected {typ.__name__})"
                ) from e
        else:
            value = default

        # Range check numeric values
        if typ in (int, float) and value is not None:
            if min_val is not None and value < min_val:
                raise ConfigError(
                    f"Value for [{section}].{key} is {value}, but minimum is {min_val}"
                )
            if max_val is not None and value > max_val:
                raise ConfigError(
                    f"Value for [{section}].{key} is {value}, but maximum is {max_val}"
                )

        result[key] = value

    return result


def _section_defaults(section: str) -> Any:
    """Build a section dataclass populated with schema defaults."""
    values = {key: default for key, (_, default, _, _, _) in CONFIG_SCHEMA[section].items()}
    return _SECTION_TYPES[section](**values)


def _load_config(config_path: Optional[Path] = None) -> dict[str, Any]:
    """Load every config section from an INI file (internal use only).

    Args:
        config_path: Path to config file. If None, uses defaults from schema.

    Returns:
        Mapping of section name to section dataclass.

    Raises:
        ConfigError: If validation fails
    """
    parser = ConfigParser()

    if config_path and config_path.exists():
        parser.read(config_path)

    return {
        section: _SECTION_TYPES[section](**_load_section(parser, section, schema))
        for section, schema in CONFIG_SCHEMA.items()
    }


@dataclass(frozen=True)
class Config:
    """Complete application configuration."""

    data_dir: Path = None  # type: ignore[assignment]  # Set in __post_init__ if None
    active_provider: str = "ollama"
    active_model: str = "llama2"
    embedding_provider: Optional[str] = None
    embedding_model: Optional[str] = None
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    google_api_key: Optional[str] = None
    ollama_endpoint: str = "http://localhost:11434"

    # Section configs, defaults filled in __post_init__
    chunking: ChunkingConfig = None  # type: ignore[assignment]
    embedding: EmbeddingConfig = None  # type: ignore[assignment]
    search: SearchConfig = None  # type: ignore[assignment]
    files: FilesConfig = None  # type: ignore[assignment]
    orchestrator: OrchestratorConfig = None  # type: ignore[assignment]
    rerank: RerankConfig = None  # type: ignore[assignment]
    llm: LLMConfig = None  # type: ignore[assignment]
    paths: PathsConfig = None  # type: ignore[assignment]

    def __post_init__(self):
        """Initialize section configs with defaults if not provided."""
        # frozen=True, so go through object.__setattr__
        if self.data_dir is None:
            object.__setattr__(self, "data_dir", Path.home() / ".quarry")
        for section in CONFIG_SCHEMA:
            if getattr(self, section) is None:
                object.__setattr__(self, section, _section_defaults(section))

    @property
    def db_path(self) -> Path:
        """Path to the SQLite database file."""
        return self.data_dir / self.paths.db_file

    @property
    def chroma_path(self) -> Path:
        """Path to the ChromaDB vector store directory."""
        return self.data_dir / self.paths.chroma_dir

    @property
    def llm_log_path(self) -> Path:
        """Path to the LLM query log file."""
        return self.data_dir / self.paths.logs_dir / "llm-queries.jsonl"

    @property
    def config_file(self) -> Path:
        """Path to the optional INI config file."""
        return self.data_dir / "config.ini"

    @property
    def llm_api_key(self) -> Optional[str]:
        """API key for the active LLM provider."""
        return self._api_key_for(self.active_provider)

    @property
    def embedding_api_key(self) -> Optional[str]:
        """API key for the embedding provider."""
        if self.embedding_provider is None:
            return None
        return self._api_key_for(self.embedding_provider)

    @property
    def llm_endpoint(self) -> Optional[str]:
        """Endpoint for LLM provider (mainly for Ollama)."""
        if self.active_provider == "ollama":
            return self.ollama_endpoint
        return None

    @property
    def embedding_model_key(self) -> Optional[str]:
        """Identifier of the embedding space, e.g. ``openai/text-embedding-3-small``."""
        if not self.embedding_provider or not self.embedding_model:
            return None
        return f"{self.embedding_provider}/{self.embedding_model}"

    def _api_key_for(self, provider: str) -> Optional[str]:
        provider_keys = {
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
            "google": self.google_api_key,
        }
        return provider_keys.get(provider)


PROVIDER_DEFAULT_MODELS = {
    "openai": "gpt-4o",
    "anthropic": "claude-3-5-sonnet-20241022",
    "google": "gemini-1.5-pro",
    "ollama": "llama2",
}

# Anthropic has no embedding endpoint, so it maps to no default
EMBEDDING_DEFAULT_MODELS = {
    "openai": "text-embedding-3-small",
    "google": "text-embedding-004",
    "ollama": "nomic-embed-text",
}


def _detect_provider_from_keys() -> tuple[str, str]:
    """Auto-detect provider from available API keys.

    Returns:
        Tuple of (provider, model) based on available keys.
        Falls back to ollama if no keys are found.
    """
    if os.getenv("OPENAI_API_KEY"):
        return ("openai", PROVIDER_DEFAULT_MODELS["openai"])
    if os.getenv("ANTHROPIC_API_KEY"):
        return ("anthropic", PROVIDER_DEFAULT_MODELS["anthropic"])
    if os.getenv("GOOGLE_API_KEY"):
        return ("google", PROVIDER_DEFAULT_MODELS["google"])
    return ("ollama", PROVIDER_DEFAULT_MODELS["ollama"])


@lru_cache(maxsize=1)
def load_settings() -> Config:
    """Load settings from environment variables and config file.

    Settings are cached for the lifetime of the application.
    Use load_settings.cache_clear() to reload settings.

    Returns:
        Config object populated from environment variables and config file.

    Raises:
        ConfigError: If the config file holds invalid values.
    """
    data_dir_str = os.getenv("QUARRY_DATA_DIR")
    data_dir = Path(data_dir_str) if data_dir_str else Path.home() / ".quarry"

    config_file = data_dir / "config.ini"
    try:
        config_exists = config_file.exists()
    except PermissionError:
        config_exists = False
    sections = _load_config(config_file if config_exists else None)

    active_provider = os.getenv("ACTIVE_PROVIDER")
    active_model = os.getenv("ACTIVE_MODEL")

    if not active_provider:
        detected_provider, detected_model = _detect_provider_from_keys()
        active_provider = detected_provider
        if not active_model:
            active_model = detected_model
    elif not active_model:
        active_model = PROVIDER_DEFAULT_MODELS.get(active_provider, "llama2")

    # Embeddings default to the chat provider's embedding model, if it has one
    embedding_provider = os.getenv("EMBEDDING_PROVIDER") or active_provider
    embedding_model = os.getenv("EMBEDDING_MODEL") or EMBEDDING_DEFAULT_MODELS.get(
        embedding_provider
    )
    if os.getenv("QUARRY_DISABLE_EMBEDDINGS", "").lower() in ("1", "true", "yes"):
        embedding_model = None

    return Config(
        data_dir=data_dir,
        active_provider=active_provider,
        active_model=active_model,
        embedding_provider=embedding_provider if embedding_model else None,
        embedding_model=embedding_model,
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
        google_api_key=os.getenv("GOOGLE_API_KEY"),
        ollama_endpoint=os.getenv("OLLAMA_ENDPOINT", "http://localhost:11434"),
        **sections,
    )
