"""Application settings using Pydantic Settings"""
from typing import List
from pydantic import field_validator
from pydantic_settings import BaseSettings


DEFAULT_SEARCH_ENGINES = "google,bing,yahoo,duckduckgo,baidu,yandex"
DEFAULT_SOCIAL_NETWORKS = "facebook,twitter,linkedin,instagram,pinterest,reddit,youtube,tiktok"


def _split_csv(value: str) -> List[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./analytics.db"

    APP_ENV: str = "dev"

    ANALYTICS_ENABLED: bool = True

    SESSION_TIMEOUT_MINUTES: int = 30
    SESSION_SWEEP_ENABLED: bool = True
    SESSION_SWEEP_INTERVAL_MINUTES: int = 5

    ANONYMIZE_IP: bool = True
    RESPECT_DNT: bool = True
    EXCLUDED_IPS: str = ""
    EXCLUDED_USER_AGENTS: str = ""

    FINGERPRINT_MIN_SIGNALS: int = 1

    SEARCH_ENGINES: str = DEFAULT_SEARCH_ENGINES
    SOCIAL_NETWORKS: str = DEFAULT_SOCIAL_NETWORKS
    EXTRA_BOT_PATTERNS: str = ""

    ALLOW_MULTIPLE_CONVERSIONS_PER_SESSION: bool = False
    FUNNEL_STRICT_ORDER: bool = False
    MULTI_TENANT_ENABLED: bool = False

    MAX_EVENT_PROPERTIES: int = 25
    MAX_PROPERTY_VALUE_LENGTH: int = 500

    QUEUE_PROCESSING: bool = False
    QUEUE_MAX_ATTEMPTS: int = 3

    REALTIME_WINDOW_MINUTES: int = 5

    # days of raw tracking data to keep, 0 keeps everything
    RETENTION_DAYS: int = 90
    RETENTION_CLEANUP_INTERVAL_HOURS: int = 24

    @field_validator("APP_ENV")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        allowed = ["dev", "staging", "prod"]
        if v not in allowed:
            raise ValueError(f"APP_ENV must be one of: {allowed}")
        return v

    @field_validator(
        "SESSION_TIMEOUT_MINUTES",
        "SESSION_SWEEP_INTERVAL_MINUTES",
        "QUEUE_MAX_ATTEMPTS",
        "RETENTION_CLEANUP_INTERVAL_HOURS",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be a positive number of minutes/hours/attempts")
        return v

    @field_validator("RETENTION_DAYS")
    @classmethod
    def validate_retention_days(cls, v: int) -> int:
        if v < 0:
            raise ValueError("RETENTION_DAYS must be 0 (keep forever) or a number of days")
        return v

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "prod"

    @property
    def search_engine_list(self) -> List[str]:
        return [s.lower() for s in _split_csv(self.SEARCH_ENGINES)]

    @property
    def social_network_list(self) -> List[str]:
        return [s.lower() for s in _split_csv(self.SOCIAL_NETWORKS)]

    @property
    def extra_bot_pattern_list(self) -> List[str]:
        return [s.lower() for s in _split_csv(self.EXTRA_BOT_PATTERNS)]

    @property
    def excluded_ip_list(self) -> List[str]:
        return _split_csv(self.EXCLUDED_IPS)

    @property
    def excluded_user_agent_list(self) -> List[str]:
        return _split_csv(self.EXCLUDED_USER_AGENTS)

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()


def get_settings() -> Settings:
    return settings
