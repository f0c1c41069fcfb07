from datetime import datetime

from pydantic import BaseModel, Field


class ProviderStatus(BaseModel):
    name: str
    priority: int
    has_api_key: bool
    is_available: bool
    request_count: int
    error_count: int
    last_success: datetime | None = None
    last_error: str | None = None
    last_error_at: datetime | None = None
    rate_limit_remaining: int | None = None
    next_reset_time: datetime | None = None
    min_interval_sec: float = 0.0


class ManagerConfig(BaseModel):
    fallback_enabled: bool = True
    cache_enabled: bool = True
    cache_ttl_sec: float = Field(default=60.0, gt=0)
    health_check_interval_min: float = Field(default=30.0, gt=0)
    initial_health_check_delay_sec: float = Field(default=5.0, ge=0)
    max_concurrency: int = Field(default=5, ge=1)
    default_priority_offset: int = Field(default=10, ge=1)


class DefaultProviderRequest(BaseModel):
    name: str
