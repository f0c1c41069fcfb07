from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

MarketState = Literal["PRE", "REGULAR", "POST", "CLOSED"]


class Quote(BaseModel):
    """Normalized point-in-time quote. Immutable once built."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    symbol: str
    name: str
    price: float = Field(gt=0)
    change: float
    change_percent: float
    volume: int = Field(default=0, ge=0)
    market_cap: str | float = "N/A"
    previous_close: float = Field(gt=0)
    day_high: float = Field(gt=0)
    day_low: float = Field(gt=0)
    year_high: float = Field(gt=0)
    year_low: float = Field(gt=0)
    last_update: datetime

    pre_market_price: float | None = Field(default=None, gt=0)
    pre_market_change: float | None = None
    pre_market_change_percent: float | None = None
    pre_market_time: datetime | None = None

    post_market_price: float | None = Field(default=None, gt=0)
    post_market_change: float | None = None
    post_market_change_percent: float | None = None
    post_market_time: datetime | None = None

    market_state: MarketState | None = None
    has_extended_data: bool = False

    provider: str
    simulated: bool = False

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, value: str) -> str:
        value = value.strip().upper()
        if not value:
            raise ValueError("symbol must not be empty")
        return value


class SymbolMatch(BaseModel):
    symbol: str
    name: str


class BatchQuoteRequest(BaseModel):
    symbols: list[str]
    preferred_provider: str | None = None
    allow_fallback: bool = True
    max_concurrency: int | None = Field(default=None, ge=1)


class SymbolValidateRequest(BaseModel):
    symbol: str
    preferred_provider: str | None = None
