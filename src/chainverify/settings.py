"""Verifier limits, overridable via CHAINVERIFY_* environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CHAINVERIFY_")

    # Record streams
    max_line_bytes: int = 1024 * 1024
    max_errors: int = 100  # tolerant mode stops collecting after this many

    # Evidence packs
    max_entries: int = 500
    max_uncompressed_bytes: int = 200_000_000
    max_compression_ratio: float = 200.0
    max_entry_bytes: int = 200 * 1024 * 1024
    entry_name_pattern: str = r"\.ndjson$"  # matched case-insensitively
    workers: int = 1  # >1 verifies pack entries concurrently in tolerant mode


settings = Settings()
