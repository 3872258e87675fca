"""
backlinkhub Application Configuration
=====================================

PURPOSE:
    Pydantic-Settings based configuration for the backlinkhub background
    services. All settings can be overridden via environment variables
    (BACKLINKHUB_ prefix) or a local .env file.

    Entry points declare the keys they cannot run without through
    ``settings.require(...)``, which fails fast with every missing key
    named in one error.
"""

import logging
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="BACKLINKHUB_",
        extra="ignore",
    )

    app_name: str = "backlinkhub"
    debug: bool = False
    log_level: str = "INFO"
    log_dir: str = "logs"

    # Relational store. Defaults to a local SQLite file for development.
    data_directory: str = "data"
    database_url: Optional[str] = None

    # Worker invocation (functions gateway + service-role bearer)
    functions_url: Optional[str] = None
    service_role_key: Optional[str] = None
    worker_timeout_s: float = 30.0

    # Billing
    stripe_secret_key: Optional[str] = None
    reconcile_log_path: str = "cleanup_log.txt"
    reconcile_page_size: int = 100

    # Work queues
    enrichment_batch_size: int = 25
    review_batch_size: int = 100
    enqueue_batch_size: int = 500
    enrichment_worker_name: str = "enrich-backlinks-from-wordpress"
    review_worker_name: str = "process-backlink-review"
    # False keeps the select-then-update claim; True claims with one
    # conditional UPDATE ... RETURNING so overlapping runs cannot both win.
    atomic_claim: bool = False
    excluded_network_site_ids: List[int] = [81]

    # WordPress REST
    wordpress_timeout_s: float = 20.0

    cors_origins: List[str] = ["*"]

    def get_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite:///{Path(self.data_directory) / 'backlinkhub.db'}"

    def require(self, *names: str) -> None:
        """Raise ConfigurationError if any of ``names`` is unset or empty."""
        missing = [name for name in names if not getattr(self, name, None)]
        if missing:
            from backlinkhub.core.errors import ConfigurationError

            env_names = ", ".join(f"{self.model_config['env_prefix']}{n.upper()}" for n in missing)
            raise ConfigurationError(
                detail=f"Missing required configuration: {env_names}",
                context={"missing": missing},
            )


settings = Settings()
