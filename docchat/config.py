"""Application configuration with sensible defaults.

Defaults are read from the environment (and a local .env file). The
Settings object is built once at process start and handed to every
component explicitly.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from docchat.errors import InvalidConfiguration

load_dotenv()

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))
DOCS_DIR = Path(os.getenv("DOCS_DIR", str(BASE_DIR / "docs")))

# Ollama configuration
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
CHAT_MODEL = os.getenv("CHAT_MODEL", "llama3.1:8b")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "nomic-embed-text:latest")
REQUEST_TIMEOUT = 60.0

# RAG parameters (character-based to avoid tokenizer inconsistencies)
CHUNK_SIZE = 1000
CHUNK_OVERLAP = 200
RETRIEVAL_TOP_K = 4
MAX_CONTENT_CHARS = 8000

# Generation
MAX_TOKENS = 150
TEMPERATURE = 0.4
CONTEXT_ROLES = ("assistant", "user", "system")

SYSTEM_PROMPT = (
    "You are a knowledgeable assistant. Answer the user's question using the "
    "documents provided in the conversation. If the documents do not cover "
    "the question, answer from general knowledge and say so. Keep answers "
    "concise and focused on the question."
)

# Ingestion
EMBED_BATCH_SIZE = 16
INGEST_CONCURRENCY = 4

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise InvalidConfiguration(f"{name} must be an integer, got {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise InvalidConfiguration(f"{name} must be a number, got {raw!r}") from e


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Runtime configuration shared by the pipeline components."""

    ollama_base_url: str = OLLAMA_BASE_URL
    chat_model: str = CHAT_MODEL
    embedding_model: str = EMBEDDING_MODEL
    embedding_dimension: Optional[int] = None
    request_timeout: float = REQUEST_TIMEOUT

    chunk_size: int = CHUNK_SIZE
    chunk_overlap: int = CHUNK_OVERLAP
    top_k: int = RETRIEVAL_TOP_K
    max_content_chars: int = MAX_CONTENT_CHARS

    max_tokens: int = MAX_TOKENS
    temperature: float = TEMPERATURE
    system_prompt: str = SYSTEM_PROMPT
    context_role: str = "assistant"
    retrieval_fallback: bool = True

    embed_batch_size: int = EMBED_BATCH_SIZE
    ingest_concurrency: int = INGEST_CONCURRENCY

    docs_dir: Path = DOCS_DIR
    data_dir: Path = DATA_DIR
    db_path: Path = field(default=None)

    log_level: str = LOG_LEVEL
    log_json: bool = True

    def __post_init__(self):
        if self.db_path is None:
            object.__setattr__(self, "db_path", Path(self.data_dir) / "docchat.sqlite")

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables.

        Raises:
            InvalidConfiguration: If a value can't be parsed
        """
        data_dir = Path(os.getenv("DATA_DIR", str(DATA_DIR)))
        db_path = os.getenv("DB_PATH")

        return cls(
            ollama_base_url=os.getenv("OLLAMA_BASE_URL", OLLAMA_BASE_URL),
            chat_model=os.getenv("CHAT_MODEL", CHAT_MODEL),
            embedding_model=os.getenv("EMBEDDING_MODEL", EMBEDDING_MODEL),
            embedding_dimension=_env_int("EMBEDDING_DIMENSION", None),
            request_timeout=_env_float("REQUEST_TIMEOUT", REQUEST_TIMEOUT),
            chunk_size=_env_int("CHUNK_SIZE", CHUNK_SIZE),
            chunk_overlap=_env_int("CHUNK_OVERLAP", CHUNK_OVERLAP),
            top_k=_env_int("RETRIEVAL_TOP_K", RETRIEVAL_TOP_K),
            max_content_chars=_env_int("MAX_CONTENT_CHARS", MAX_CONTENT_CHARS),
            max_tokens=_env_int("MAX_TOKENS", MAX_TOKENS),
            temperature=_env_float("TEMPERATURE", TEMPERATURE),
            system_prompt=os.getenv("SYSTEM_PROMPT", SYSTEM_PROMPT),
            context_role=os.getenv("CONTEXT_ROLE", "assistant"),
            retrieval_fallback=_env_bool("RETRIEVAL_FALLBACK", True),
            embed_batch_size=_env_int("EMBED_BATCH_SIZE", EMBED_BATCH_SIZE),
            ingest_concurrency=_env_int("INGEST_CONCURRENCY", INGEST_CONCURRENCY),
            docs_dir=Path(os.getenv("DOCS_DIR", str(DOCS_DIR))),
            data_dir=data_dir,
            db_path=Path(db_path) if db_path else None,
            log_level=os.getenv("LOG_LEVEL", LOG_LEVEL),
            log_json=_env_bool("LOG_JSON", True),
        )

    def validate(self) -> "Settings":
        """Check value ranges.

        Returns:
            self, so calls can be chained

        Raises:
            InvalidConfiguration: On the first invalid value found
        """
        if self.chunk_size <= 0:
            raise InvalidConfiguration(f"CHUNK_SIZE must be > 0, got {self.chunk_size}")
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise InvalidConfiguration(
                f"CHUNK_OVERLAP ({self.chunk_overlap}) must be >= 0 and less than "
                f"CHUNK_SIZE ({self.chunk_size})"
            )

        positive = {
            "RETRIEVAL_TOP_K": self.top_k,
            "MAX_TOKENS": self.max_tokens,
            "EMBED_BATCH_SIZE": self.embed_batch_size,
            "INGEST_CONCURRENCY": self.ingest_concurrency,
            "MAX_CONTENT_CHARS": self.max_content_chars,
            "REQUEST_TIMEOUT": self.request_timeout,
        }
        for name, value in positive.items():
            if value <= 0:
                raise InvalidConfiguration(f"{name} must be > 0, got {value}")

        if self.embedding_dimension is not None and self.embedding_dimension <= 0:
            raise InvalidConfiguration(
                f"EMBEDDING_DIMENSION must be > 0, got {self.embedding_dimension}"
            )

        if self.context_role not in CONTEXT_ROLES:
            raise InvalidConfiguration(
                f"CONTEXT_ROLE must be one of {CONTEXT_ROLES}, got {self.context_role!r}"
            )

        return self
