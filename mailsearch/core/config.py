"""
Configuration Management

Centralized configuration using Pydantic Settings.
All settings loaded from environment variables with sensible defaults.
"""
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Ignore extra environment variables that aren't defined in the model
    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ============================================================
    # Storage
    # ============================================================
    data_dir: Path = Field(Path("./data"), description="Root folder for the database and attachments")
    database_url: Optional[str] = Field(None, description="SQLAlchemy URL (defaults to sqlite inside data_dir)")
    attachments_dir: Optional[Path] = Field(None, description="Attachment root (defaults to data_dir/attachments)")
    insert_batch_size: int = Field(100, description="Messages per insert transaction")

    # ============================================================
    # Language model service (Ollama)
    # ============================================================
    ollama_base_url: str = Field("http://localhost:11434", description="Ollama server URL")
    chat_model: str = Field("llama3.2", description="Model for classification, events and chat")
    embedding_model: str = Field("nomic-embed-text", description="Embedding model")
    embedding_dimensions: int = Field(768, description="Expected embedding vector size")
    llm_timeout_seconds: float = Field(120.0, description="Per-request timeout for the model service")

    # ============================================================
    # Vector Search Configuration
    # ============================================================
    chunk_size: int = Field(500, description="Characters per embedding chunk")
    chunk_overlap: int = Field(100, description="Characters shared by consecutive chunks")
    similarity_threshold: float = Field(0.3, description="Minimum cosine similarity for a relevant chunk")
    rag_top_k: int = Field(3, description="Chunks used as chat context")

    # ============================================================
    # Import limits
    # ============================================================
    attachment_text_max_chars: int = Field(200_000, description="Cap for extracted attachment text")
    attachment_name_max_length: int = Field(180, description="Max sanitized attachment name length")
    max_upload_bytes: int = Field(100 * 1024 * 1024, description="Largest archive accepted for import")

    @property
    def resolved_database_url(self) -> str:
        if self.database_url:
            # Some hosts still hand out postgres:// URLs
            if self.database_url.startswith("postgres://"):
                return self.database_url.replace("postgres://", "postgresql://", 1)
            return self.database_url
        return f"sqlite:///{(self.data_dir / 'emails.db').as_posix()}"

    @property
    def resolved_attachments_dir(self) -> Path:
        return self.attachments_dir or (self.data_dir / "attachments")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
