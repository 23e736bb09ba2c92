from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Runtime
    environment: str = "development"  # "development" or "production"
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite+aiosqlite:///./cryptex.db"
    database_echo: bool = False

    # Security
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    # JWT Authentication
    jwt_secret_key: str = "jwt-secret-key-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 60
    jwt_refresh_token_expire_days: int = 7

    # Demo account
    default_demo_balance: float = 10000.0
    balance_reset_cooldown_hours: int = 24

    # Market data (Binance public REST)
    market_data_base_url: str = "https://api.binance.com"
    market_data_fallback_base_url: str = "https://api.binance.us"
    market_data_timeout_ms: int = 7000
    price_cache_ttl_seconds: int = 10
    price_delay_minutes: int = 15
    allowed_symbols: str = "BTCUSDT,ETHUSDT,SOLUSDT"

    # Admin
    admin_emails: str = ""  # Comma-separated, promoted to admin on first sign-in
    admin_console_code: str = "admin515"
    admin_console_max_age_seconds: int = 60 * 60 * 8

    # Background TP/SL sweep (client-side polling works without it)
    tpsl_monitor_enabled: bool = False
    tpsl_monitor_interval_seconds: int = 15

    @field_validator("market_data_timeout_ms")
    @classmethod
    def clamp_timeout(cls, v: int) -> int:
        """Never let the market data timeout drop below one second"""
        return max(1000, int(v))

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"

    def get_cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def get_allowed_symbols(self) -> set:
        return {s.strip().upper() for s in self.allowed_symbols.split(",") if s.strip()}

    def get_admin_emails(self) -> set:
        return {e.strip().lower() for e in self.admin_emails.split(",") if e.strip()}

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
