"""Application configuration using pydantic-settings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class StoreBackend(str, Enum):
    MEMORY = "memory"
    POSTGRES = "postgres"


class LockBackend(str, Enum):
    MEMORY = "memory"
    REDIS = "redis"


class ProbeMode(str, Enum):
    PLATFORM = "platform"
    HTTP = "http"


class DatabaseSettings(BaseSettings):
    """Deployment store database configuration."""

    host: str = Field(default="localhost", alias="DB_HOST")
    port: int = Field(default=5432, alias="DB_PORT")
    name: str = Field(default="bluegreen", alias="DB_NAME")
    user: str = Field(default="bluegreen", alias="DB_USER")
    password: str = Field(default="", alias="DB_PASSWORD")
    pool_size: int = Field(default=10, alias="DB_POOL_SIZE")
    max_overflow: int = Field(default=5, alias="DB_MAX_OVERFLOW")
    pool_timeout: int = Field(default=30, alias="DB_POOL_TIMEOUT")

    @property
    def async_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.name}"
        )

    model_config = {"env_prefix": "DB_", "extra": "ignore", "populate_by_name": True}


class RedisSettings(BaseSettings):
    """Redis configuration for the service admission lock."""

    host: str = Field(default="localhost", alias="REDIS_HOST")
    port: int = Field(default=6379, alias="REDIS_PORT")
    password: str = Field(default="", alias="REDIS_PASSWORD")
    db: int = Field(default=0, alias="REDIS_DB")
    lock_timeout: int = Field(default=30, alias="REDIS_LOCK_TIMEOUT")

    @property
    def url(self) -> str:
        auth = f":{self.password}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"

    model_config = {"env_prefix": "REDIS_", "extra": "ignore", "populate_by_name": True}


class ObservabilitySettings(BaseSettings):
    """Observability configuration."""

    otlp_endpoint: str = Field(default="http://localhost:4317", alias="OTLP_ENDPOINT")
    service_name: str = Field(default="bluegreen-controller", alias="SERVICE_NAME")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    metrics_enabled: bool = Field(default=True, alias="METRICS_ENABLED")
    tracing_enabled: bool = Field(default=False, alias="TRACING_ENABLED")

    model_config = {"env_prefix": "OBS_", "extra": "ignore", "populate_by_name": True}


class ControllerSettings(BaseSettings):
    """Deployment controller defaults: health policy, retry budget, backends."""

    min_healthy_fraction: float = Field(default=1.0, alias="CONTROLLER_MIN_HEALTHY_FRACTION")
    evaluation_window: int = Field(default=3, alias="CONTROLLER_EVALUATION_WINDOW")
    probe_interval: float = Field(default=5.0, alias="CONTROLLER_PROBE_INTERVAL")
    probe_timeout: float = Field(default=2.0, alias="CONTROLLER_PROBE_TIMEOUT")
    deployment_timeout: float = Field(default=600.0, alias="CONTROLLER_DEPLOYMENT_TIMEOUT")
    propagation_grace_period: float = Field(
        default=15.0, alias="CONTROLLER_PROPAGATION_GRACE_PERIOD"
    )
    post_shift_cycles: int = Field(default=1, alias="CONTROLLER_POST_SHIFT_CYCLES")

    retry_attempts: int = Field(default=3, alias="CONTROLLER_RETRY_ATTEMPTS")
    retry_base_delay: float = Field(default=0.5, alias="CONTROLLER_RETRY_BASE_DELAY")
    retry_max_delay: float = Field(default=10.0, alias="CONTROLLER_RETRY_MAX_DELAY")

    default_desired_count: int = Field(default=2, alias="CONTROLLER_DEFAULT_DESIRED_COUNT")
    admission_lock_ttl: int = Field(default=30, alias="CONTROLLER_ADMISSION_LOCK_TTL")
    status_timeout: float = Field(default=3.0, alias="CONTROLLER_STATUS_TIMEOUT")
    sweep_interval: float = Field(default=60.0, alias="CONTROLLER_SWEEP_INTERVAL")

    store_backend: StoreBackend = Field(default=StoreBackend.MEMORY, alias="CONTROLLER_STORE")
    lock_backend: LockBackend = Field(default=LockBackend.MEMORY, alias="CONTROLLER_LOCK")

    model_config = {"env_prefix": "CONTROLLER_", "extra": "ignore", "populate_by_name": True}


class PlatformSettings(BaseSettings):
    """Simulated container platform used when no real backend is wired in."""

    capacity: int = Field(default=64, alias="PLATFORM_CAPACITY")
    startup_delay: float = Field(default=0.0, alias="PLATFORM_STARTUP_DELAY")
    liveness_path: str = Field(default="/healthz", alias="PLATFORM_LIVENESS_PATH")
    probe_mode: ProbeMode = Field(default=ProbeMode.PLATFORM, alias="PLATFORM_PROBE_MODE")

    model_config = {"env_prefix": "PLATFORM_", "extra": "ignore", "populate_by_name": True}


class Settings(BaseSettings):
    """Main application settings."""

    environment: Environment = Field(default=Environment.DEVELOPMENT, alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_prefix: str = Field(default="/api/v1", alias="API_PREFIX")
    host: str = Field(default="0.0.0.0", alias="HOST")  # noqa: S104
    port: int = Field(default=8000, alias="PORT")
    workers: int = Field(default=1, alias="WORKERS")
    graceful_shutdown_timeout: int = Field(default=30, alias="GRACEFUL_SHUTDOWN_TIMEOUT")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
    controller: ControllerSettings = Field(default_factory=ControllerSettings)
    platform: PlatformSettings = Field(default_factory=PlatformSettings)

    model_config = {"env_prefix": "", "extra": "ignore", "populate_by_name": True}


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
