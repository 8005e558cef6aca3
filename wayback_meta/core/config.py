from __future__ import annotations

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Wayback Machine
    cdx_api_url: str = "https://web.archive.org/cdx/search/cdx"
    archive_base_url: str = "https://web.archive.org"
    user_agent: str = "wayback-meta/1.0 (+https://example.local)"

    # HTTP fetcher
    http_timeout: float = 10.0
    index_timeout: float = 30.0  # deep-history domains answer slowly
    http_max_retries: int = 3
    http_backoff_base: float = 0.4
    http_verify_ssl: bool = True

    # Orchestration
    snapshot_delay: float = 0.15
    snapshot_concurrency: int = 1  # 1 = sequential with snapshot_delay pacing
    domain_concurrency: int = 4
    max_domains: int = 50
    max_snapshots: int = 50
    discovery_limit: int = 1000

    # External classifier
    classifier_api_url: str = "https://api.perplexity.ai/chat/completions"
    classifier_model: str = "sonar"
    classifier_timeout: float = 20.0
    classifier_delay: float = 0.5
    classifier_api_key: SecretStr | None = None

    # Logging
    log_level: str = "INFO"


settings = Settings()
