from typing import List, Optional, Tuple, Type, Dict, Any
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict, PydanticBaseSettingsSource
import yaml
import os


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """
    A simple settings source that loads variables from a YAML file
    at the project's config/config.yaml location.
    """
    def get_field_value(self, field: Any, field_name: str) -> Tuple[Any, str, bool]:
        pass

    def __call__(self) -> Dict[str, Any]:
        config_file = os.getenv("CONFIG_FILE", "config/config.yaml")
        if os.path.exists(config_file):
            with open(config_file) as f:
                return yaml.safe_load(f) or {}
        return {}


class Config(BaseSettings):
    # Environment
    env: str = Field("development", description="Environment: development, staging, production")
    debug: bool = False

    # Redis (queue + pub/sub)
    redis_url: str = "redis://localhost:6379/0"

    # Database
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "swap_engine"
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    postgres_pool_size: int = 10

    @property
    def postgres_url(self) -> str:
        return f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    # Solana / settlement
    solana_rpc_url: str = "https://api.mainnet-beta.solana.com"
    settlement_mode: str = Field("simulated", description="simulated or rpc")
    settlement_forward_url: Optional[str] = None  # signing relay for unsigned transactions
    confirm_timeout_seconds: float = 60.0

    # Venues
    raydium_api_url: str = "https://api-v3.raydium.io"
    raydium_trade_api_url: str = "https://transaction-v1.raydium.io"
    meteora_api_url: str = "https://amm-v2.meteora.ag"
    venue_priority: List[str] = ["raydium", "meteora"]
    quote_timeout_seconds: float = 10.0
    default_slippage: float = 0.01

    # Extra tokens: {"BONK": {"address": "...", "decimals": 5}}
    extra_tokens: Dict[str, Dict[str, Any]] = {}

    # Job queue / workers
    queue_name: str = "order-queue"
    worker_concurrency: int = 10
    rate_limit_max_jobs: int = 100
    rate_limit_window_seconds: float = 60.0
    job_attempts: int = 3
    job_backoff_seconds: float = 2.0
    job_lock_seconds: float = 30.0
    keep_completed_jobs: int = 100
    keep_failed_jobs: int = 50
    subscribe_grace_seconds: float = 0.5

    # Reconciliation of stuck orders
    stale_order_timeout_seconds: float = 600.0
    reconcile_interval_seconds: float = 60.0

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = "logs/swap_engine.log"
    log_file_max_mb: int = 10
    log_file_backups: int = 5
    log_json: Optional[bool] = Field(None, description="Force JSON console output; defaults to on in production")

    def validate_settlement(self) -> tuple[bool, str]:
        """
        Validate configuration for the selected settlement mode.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if self.settlement_mode == "simulated":
            return True, "Simulated settlement - no validation needed"

        if self.settlement_mode != "rpc":
            return False, f"Unknown SETTLEMENT_MODE: {self.settlement_mode}"

        if not self.solana_rpc_url.startswith(("http://", "https://")):
            return False, "SOLANA_RPC_URL must be an http(s) URL"

        return True, "Configuration valid for RPC settlement"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )


# Singleton instance
config = Config()
