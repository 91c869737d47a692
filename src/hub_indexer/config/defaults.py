"""Default configurations for Hub Indexer."""

from pathlib import Path

# Name of the per-workspace state directory
WORKSPACE_DIRNAME = ".hub-indexer"

# Batch scheduler
DEFAULT_CONCURRENCY = 3  # Items processed together in one window
DEFAULT_WINDOW_DELAY_SECONDS = 0.3  # Pause between windows
DEFAULT_PROGRESS_INTERVAL = 5  # Report progress every N processed items

# Corpus indexing job
DEFAULT_SAFETY_TIMEOUT_SECONDS = 5 * 60
DEFAULT_ABORT_GRACE_SECONDS = 0.5  # Wait for in-flight calls after abort
DEFAULT_REMOTE_EMBEDDING_TIMEOUT_SECONDS = 60.0
DEFAULT_SUBSCRIPTION_RETRY_SECONDS = 1.0
DEFAULT_CORPUS_NAME = "notes"

# Structured extraction retries
DEFAULT_EXTRACTION_MAX_ATTEMPTS = 5
DEFAULT_EXTRACTION_BACKOFF_SECONDS = 0.5
DEFAULT_EXTRACTION_BACKOFF_CAP_SECONDS = 8.0

# Embedding backends and their default models
EMBEDDING_PROVIDERS = ("openai", "ollama", "sentence-transformers")
DEFAULT_EMBEDDING_PROVIDER = "openai"
DEFAULT_EMBEDDING_MODELS = {
    "openai": "text-embedding-3-small",
    "ollama": "nomic-embed-text",
    "sentence-transformers": "sentence-transformers/all-MiniLM-L6-v2",
}

# Language model backends for knowledge-graph extraction
LLM_PROVIDERS = ("openai", "openrouter", "ollama")
DEFAULT_LLM_PROVIDER = "openai"

# Notes corpus
NOTE_EXTENSIONS = [".md", ".markdown", ".txt"]

# Entries never listed when walking folders
DEFAULT_IGNORE_PATTERNS = [
    ".git",
    ".hg",
    ".svn",
    "__pycache__",
    "node_modules",
    ".DS_Store",
    "Thumbs.db",
    WORKSPACE_DIRNAME,
]


def get_default_config_path(workspace: Path) -> Path:
    """Get the default configuration file path for a workspace."""
    return workspace / WORKSPACE_DIRNAME / "config.json"


def get_default_state_path(workspace: Path) -> Path:
    """Get the default hub state file path for a workspace."""
    return workspace / WORKSPACE_DIRNAME / "state.json"


def get_default_index_path(workspace: Path) -> Path:
    """Get the default index directory path for a workspace."""
    return workspace / WORKSPACE_DIRNAME / "index"


def get_default_cache_path(workspace: Path) -> Path:
    """Get the default embedding cache directory path for a workspace."""
    return workspace / WORKSPACE_DIRNAME / "cache"


def get_default_embedding_model(provider: str) -> str:
    """Get the default embedding model for a provider."""
    return DEFAULT_EMBEDDING_MODELS.get(
        provider, DEFAULT_EMBEDDING_MODELS[DEFAULT_EMBEDDING_PROVIDER]
    )
