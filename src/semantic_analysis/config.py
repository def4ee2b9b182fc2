from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import List, Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

DEFAULT_EXTENSIONS = [".txt", ".csv", ".json", ".xml", ".html", ".htm", ".md", ".pdf"]


def _project_root() -> Path:
    """
    Resolve project root assuming this file lives in: <root>/src/semantic_analysis/config.py
    """
    return Path(__file__).resolve().parents[2]


class Settings(BaseModel):
    # --- Credential (only needed by the embedding stage) ---
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")

    # --- Embedding service ---
    openai_embedding_model: str = Field(default="text-embedding-3-small")
    request_timeout_s: float = Field(default=30.0, gt=0)
    embed_max_attempts: int = Field(default=3, ge=1)
    embed_retry_delay_s: float = Field(default=1.0, ge=0)

    # --- Pipeline ---
    save_interval: int = Field(default=10, ge=1)
    similarity_workers: int = Field(default=1, ge=1)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    supported_extensions: List[str] = Field(default_factory=lambda: list(DEFAULT_EXTENSIONS))

    # --- Storage layout ---
    data_raw_dir: Path = Field(default_factory=lambda: _project_root() / "data" / "raw")
    data_extracted_dir: Path = Field(default_factory=lambda: _project_root() / "data" / "extracted")
    embeddings_dir: Path = Field(default_factory=lambda: _project_root() / "data" / "embeddings")
    output_dir: Path = Field(default_factory=lambda: _project_root() / "data" / "output")

    @field_validator("supported_extensions", mode="before")
    @classmethod
    def split_extensions(cls, v):
        if isinstance(v, str):
            v = v.split(",")
        cleaned = []
        for ext in v:
            ext = ext.strip().lower()
            if not ext:
                continue
            if not ext.startswith("."):
                ext = "." + ext
            if ext not in cleaned:
                cleaned.append(ext)
        return cleaned


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """
    Loads environment variables (optionally from .env) and validates Settings.

    IMPORTANT:
    - Do NOT hardcode secrets here.
    - Only fill variables in .env.
    """
    if env_file is None:
        env_file = _project_root() / ".env"

    # Load .env if present; environment variables override .env by default
    if env_file.exists():
        load_dotenv(env_file, override=False)

    root = _project_root()
    data = {
        "openai_api_key": os.getenv("OPENAI_API_KEY") or None,
        "openai_embedding_model": os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"),
        "request_timeout_s": os.getenv("REQUEST_TIMEOUT_S", "30"),
        "embed_max_attempts": os.getenv("EMBED_MAX_ATTEMPTS", "3"),
        "embed_retry_delay_s": os.getenv("EMBED_RETRY_DELAY_S", "1.0"),
        "save_interval": os.getenv("SAVE_INTERVAL", "10"),
        "similarity_workers": os.getenv("SIMILARITY_WORKERS", "1"),
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
        "supported_extensions": os.getenv("SUPPORTED_EXTENSIONS", ",".join(DEFAULT_EXTENSIONS)),
        "data_raw_dir": os.getenv("DATA_RAW_DIR", str(root / "data" / "raw")),
        "data_extracted_dir": os.getenv("DATA_EXTRACTED_DIR", str(root / "data" / "extracted")),
        "embeddings_dir": os.getenv("EMBEDDINGS_DIR", str(root / "data" / "embeddings")),
        "output_dir": os.getenv("OUTPUT_DIR", str(root / "data" / "output")),
    }

    try:
        return Settings(**data)
    except ValidationError as e:
        raise RuntimeError(
            "Invalid configuration. Check the environment variables / .env file.\n"
            f"Details:\n{e}"
        ) from e


def ensure_dirs(settings: Settings) -> None:
    """
    Create every data directory (safe, idempotent).
    """
    for folder in (
        settings.data_raw_dir,
        settings.data_extracted_dir,
        settings.embeddings_dir,
        settings.output_dir,
    ):
        folder.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Lazy so that importing the package never needs a populated environment
    return load_settings()
