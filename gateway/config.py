# gateway/config.py
from __future__ import annotations
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator


class Settings(BaseSettings):
    """
    Globale Gateway-Einstellungen.

    Alle Werte kommen aus der Umgebung bzw. .env und haben Defaults,
    damit der Dienst auch ohne Korpus (ohne RAG-Kontext) startet.
    """
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Ollama (Embeddings + Generate)
    OLLAMA_API_BASE_URL: str = "http://localhost:11434"
    LLM_API_KEY: Optional[str] = None
    LLM_MODEL: str = "llama3"
    EMBEDDING_MODEL: str = "nomic-embed-text"
    LLM_TIMEOUT_SECONDS: float = 120.0
    LLM_KEEP_ALIVE: str = "30m"

    # Korpus (vorberechnete Embeddings, JSON)
    EMBEDDING_FILE_PATH: Optional[str] = None
    CORPUS_TITLE: str = "5th Edition of Cardiac Surgery in the Adult"

    # Retrieval
    TOP_K: int = 3

    # Korpus-Builder (build_corpus.py)
    CHUNK_SIZE: int = 200
    CHUNK_OVERLAP: int = 40

    # Sessions / Verbindung
    HEARTBEAT_INTERVAL_SECONDS: float = 1.0
    DEFAULT_DISPLAY_NAME: str = "Anonymous"
    GREETING_TEXT: str = (
        "Hello {name}! Ask me anything about the "
        "5th Edition of Cardiac Surgery in the Adult."
    )

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8080
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]
    LOG_LEVEL: str = "INFO"

    @field_validator("OLLAMA_API_BASE_URL", mode="after")
    def _native_base_url(cls, v: str) -> str:
        # "http://127.0.0.1:11434/v1" -> "http://127.0.0.1:11434"
        u = v.strip().rstrip("/")
        if u.endswith("/v1"):
            u = u[:-3]
        if not u:
            raise ValueError("OLLAMA_API_BASE_URL must not be empty")
        return u

    @field_validator("EMBEDDING_FILE_PATH", "LLM_API_KEY", mode="before")
    def _blank_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("TOP_K", mode="after")
    def _top_k_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"TOP_K must be >= 1, got {v}")
        return v

    @field_validator("HEARTBEAT_INTERVAL_SECONDS", "LLM_TIMEOUT_SECONDS", mode="after")
    def _positive_seconds(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"interval must be > 0, got {v}")
        return v

    @field_validator("CHUNK_OVERLAP", mode="after")
    def _overlap_smaller_than_size(cls, v: int, info) -> int:
        size = info.data.get("CHUNK_SIZE", 0)
        if v < 0 or (size and v >= size):
            raise ValueError("CHUNK_OVERLAP must be >= 0 and smaller than CHUNK_SIZE")
        return v


settings = Settings()
