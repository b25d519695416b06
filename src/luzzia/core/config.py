"""
Core Configuration Module
=========================

Centralized configuration management using Pydantic Settings.
All environment variables are loaded and validated here.

Environment Variables (most relevant):
- INFLUXDB_URL / INFLUXDB_TOKEN / INFLUXDB_ORG / INFLUXDB_BUCKET: price store
- REE_API_URL: primary upstream price provider
- ALTERNATIVE_API_URL: optional fallback provider
- REE_API_KEY / REE_BEARER_TOKEN: optional provider credentials
- PRICE_MAIN_CRON / PRICE_RETRY_CRON: daily ingestion schedule
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional
from pathlib import Path
import os


def get_secret(secret_name: str, env_var_name: Optional[str] = None) -> Optional[str]:
    """
    Read a secret from Docker Secrets or environment variable.

    Order of precedence:
    1. Docker Secret file at /run/secrets/{secret_name}
    2. Environment variable {ENV_VAR_NAME}_FILE pointing to a file
    3. Environment variable {ENV_VAR_NAME} directly

    Args:
        secret_name: Name of the secret file (without path)
        env_var_name: Environment variable name (if different from secret_name)

    Returns:
        Secret value or None if not found
    """
    if env_var_name is None:
        env_var_name = secret_name.upper()

    secret_path = Path(f"/run/secrets/{secret_name}")
    if secret_path.exists():
        try:
            return secret_path.read_text().strip()
        except OSError as e:
            print(f"⚠️  Failed to read secret from {secret_path}: {e}")

    file_env_var = f"{env_var_name}_FILE"
    if file_env_var in os.environ:
        file_path = Path(os.environ[file_env_var])
        if file_path.exists():
            try:
                return file_path.read_text().strip()
            except OSError as e:
                print(f"⚠️  Failed to read secret from {file_path}: {e}")

    return os.environ.get(env_var_name)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=False
    )

    # =================================================================
    # APPLICATION SETTINGS
    # =================================================================
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[Path] = None
    TZ: str = "Europe/Madrid"
    API_VERSION: str = "1.0.0"

    # =================================================================
    # INFLUXDB SETTINGS (price store)
    # =================================================================
    INFLUXDB_URL: str = "http://influxdb:8086"
    INFLUXDB_TOKEN: str = ""  # Will be loaded from secret
    INFLUXDB_ORG: str = "luzzia"
    INFLUXDB_BUCKET: str = "electricity_prices"
    PRICE_MEASUREMENT: str = "electricity_prices"

    INFLUXDB_TIMEOUT: int = 10000  # milliseconds
    INFLUXDB_VERIFY_SSL: bool = False
    INFLUXDB_ENABLE_GZIP: bool = True

    # =================================================================
    # UPSTREAM PRICE PROVIDERS
    # =================================================================
    REE_API_URL: str = "https://api.esios.ree.es/archives/70/download_json?locale=es"
    REE_API_KEY: Optional[str] = None  # Will be loaded from secret
    REE_BEARER_TOKEN: Optional[str] = None  # Will be loaded from secret

    ALTERNATIVE_API_URL: Optional[str] = None
    ALTERNATIVE_API_KEY: Optional[str] = None
    ALTERNATIVE_BEARER_TOKEN: Optional[str] = None

    HTTP_TIMEOUT_SECONDS: float = 30.0
    HTTP_USER_AGENT: str = "Luzzia-App/1.0"

    # =================================================================
    # RESILIENCE (retry + circuit breaker)
    # =================================================================
    MAX_RETRIES: int = 2
    RETRY_BASE_DELAY_SECONDS: float = 1.0
    RETRY_MAX_DELAY_SECONDS: float = 30.0
    RETRY_BACKOFF_MULTIPLIER: float = 2.0
    RETRY_JITTER_SECONDS: float = 1.0

    CIRCUIT_FAILURE_THRESHOLD: int = 5
    CIRCUIT_RECOVERY_TIMEOUT_SECONDS: float = 60.0
    CIRCUIT_SUCCESS_THRESHOLD: int = 2

    # =================================================================
    # SCHEDULER SETTINGS (APScheduler)
    # =================================================================
    SCHEDULER_TIMEZONE: str = "Europe/Madrid"
    SCHEDULER_JOB_DEFAULTS: dict = {
        "coalesce": True,
        "max_instances": 1,
        "misfire_grace_time": 300
    }

    # Cron expressions (minute hour day month day_of_week)
    PRICE_MAIN_CRON: str = "15 20 * * *"
    PRICE_RETRY_CRON: str = "15 23 * * *"
    PRICE_RESET_CRON: str = "0 0 * * *"

    # Safety net outside the main/retry pair
    BACKUP_CHECK_ENABLED: bool = True
    BACKUP_CHECK_INTERVAL_HOURS: int = 6
    BACKUP_CHECK_THRESHOLD_HOUR: int = 21

    # A DST short day only has 23 hours
    COMPLETE_DAY_MIN_HOURS: int = 23
    FALLBACK_LOOKBACK_DAYS: int = 7

    # =================================================================
    # CACHE SETTINGS
    # =================================================================
    CACHE_ENABLED: bool = True
    CACHE_TTL_TODAY_HOURS: float = 6
    CACHE_TTL_TOMORROW_HOURS: float = 12
    CACHE_TTL_DASHBOARD_HOURS: float = 1

    # =================================================================
    # BUSINESS LOGIC SETTINGS
    # =================================================================
    FIXED_TARIFF_EUR_KWH: float = 0.20
    PRICE_LEVEL_THRESHOLDS: List[float] = [0.10, 0.15, 0.20]

    # =================================================================
    # DERIVED VALUES
    # =================================================================

    @property
    def influxdb_url_local(self) -> str:
        """Get InfluxDB URL for local development."""
        return self.INFLUXDB_URL.replace("influxdb", "localhost")

    @property
    def cache_ttl_today_seconds(self) -> int:
        return int(self.CACHE_TTL_TODAY_HOURS * 3600)

    @property
    def cache_ttl_tomorrow_seconds(self) -> int:
        return int(self.CACHE_TTL_TOMORROW_HOURS * 3600)

    @property
    def cache_ttl_dashboard_seconds(self) -> int:
        return int(self.CACHE_TTL_DASHBOARD_HOURS * 3600)

    def model_post_init(self, __context) -> None:
        """Load secrets from Docker Secrets after model initialization."""
        influxdb_token = get_secret("influxdb_token", "INFLUXDB_TOKEN")
        if influxdb_token:
            self.INFLUXDB_TOKEN = influxdb_token

        ree_key = get_secret("ree_api_key", "REE_API_KEY")
        if ree_key:
            self.REE_API_KEY = ree_key

        ree_bearer = get_secret("ree_bearer_token", "REE_BEARER_TOKEN")
        if ree_bearer:
            self.REE_BEARER_TOKEN = ree_bearer

        alternative_key = get_secret("alternative_api_key", "ALTERNATIVE_API_KEY")
        if alternative_key:
            self.ALTERNATIVE_API_KEY = alternative_key

        alternative_bearer = get_secret("alternative_bearer_token", "ALTERNATIVE_BEARER_TOKEN")
        if alternative_bearer:
            self.ALTERNATIVE_BEARER_TOKEN = alternative_bearer

        if not self.INFLUXDB_TOKEN:
            print("⚠️  WARNING: INFLUXDB_TOKEN not found in secrets or environment")

    def __repr__(self):
        """Safe representation without exposing secrets."""
        return (
            f"Settings("
            f"env={self.ENVIRONMENT}, "
            f"influxdb_url={self.INFLUXDB_URL}, "
            f"bucket={self.INFLUXDB_BUCKET}, "
            f"timezone={self.SCHEDULER_TIMEZONE})"
        )


# Global settings instance
settings = Settings()
