"""Core configuration management using Pydantic settings."""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, model_validator, field_validator
from typing import List


# Valid log levels
VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )
    
    # Database
    database_url: str = "sqlite+aiosqlite:///./data/alphachecker.db"
    
    # Logging
    log_level: str = "INFO"
    
    # Binance endpoints
    binance_spot_url: str = "https://api.binance.com"
    binance_futures_url: str = "https://fapi.binance.com"
    binance_alpha_url: str = (
        "https://www.binance.com/bapi/defi/v1/public/wallet-direct/buw/wallet/cex/alpha/all/token/list"
    )
    user_agent: str = "AlphaChecker/1.0.0"
    
    # Timeouts (seconds)
    request_timeout_s: float = Field(default=30.0, gt=0)
    fast_path_timeout_s: float = Field(default=8.0, gt=0)
    ticker_timeout_s: float = Field(default=5.0, gt=0)
    
    # Retry policy
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay_ms: int = Field(default=1000, ge=0)
    rate_limit_wait_ms: int = Field(default=2000, ge=0)
    min_request_interval_ms: int = Field(default=100, ge=0)
    retryable_statuses: List[int] = [408, 429, 500, 502, 503, 504]
    non_retryable_statuses: List[int] = [400, 401, 403, 404]
    
    # Reconciliation
    freshness_threshold_hours: float = Field(default=24.0, gt=0)
    batch_size: int = Field(default=5, ge=1)
    batch_pause_ms: int = Field(default=300, ge=0)
    
    # On-demand live data cache
    live_cache_ttl_s: float = Field(default=300.0, gt=0)
    
    # Scheduler cadence (minutes)
    reconcile_interval_minutes: int = Field(default=15, ge=1)
    tracked_refresh_interval_minutes: int = Field(default=60, ge=1)
    
    # API Configuration
    backend_port: int = 8000
    
    # CORS Configuration
    cors_origins: str = "http://localhost:3000"  # Comma-separated list of allowed origins
    
    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid Python logging level."""
        upper_v = v.upper()
        if upper_v not in VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {VALID_LOG_LEVELS}")
        return upper_v
    
    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string to list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]
    
    @model_validator(mode='after')
    def validate_config(self) -> 'Settings':
        """Validate configuration after all fields are set."""
        overlap = set(self.retryable_statuses) & set(self.non_retryable_statuses)
        if overlap:
            raise ValueError(
                f"Statuses cannot be both retryable and non-retryable: {sorted(overlap)}"
            )
        return self


# Global settings instance
settings = Settings()
