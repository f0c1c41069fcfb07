"""Wire-level DTOs for each upstream quote service.

These mirror the upstream JSON closely and stay permissive (every field
optional, unknown keys ignored). Turning them into a canonical ``Quote`` is
the job of the mapping functions in each adapter module, which reject
anything that does not carry a usable price.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# --- Yahoo Finance -----------------------------------------------------------


class YahooQuoteFields(_CamelModel):
    """Shared by the chart ``meta`` block and the v7 batch quote rows."""

    symbol: str | None = None
    long_name: str | None = None
    short_name: str | None = None
    regular_market_price: float | None = None
    previous_close: float | None = None
    regular_market_previous_close: float | None = None
    chart_previous_close: float | None = None
    regular_market_volume: float | None = None
    average_volume: float | None = None
    market_cap: float | None = None
    regular_market_day_high: float | None = None
    regular_market_day_low: float | None = None
    fifty_two_week_high: float | None = None
    fifty_two_week_low: float | None = None

    pre_market_price: float | None = None
    pre_market_change: float | None = None
    pre_market_change_percent: float | None = None
    pre_market_time: int | None = None
    post_market_price: float | None = None
    post_market_change: float | None = None
    post_market_change_percent: float | None = None
    post_market_time: int | None = None
    market_state: str | None = None


class YahooChartBars(_CamelModel):
    close: list[float | None] = Field(default_factory=list)
    volume: list[float | None] = Field(default_factory=list)
    high: list[float | None] = Field(default_factory=list)
    low: list[float | None] = Field(default_factory=list)


class YahooChartIndicators(_CamelModel):
    quote: list[YahooChartBars] = Field(default_factory=list)


class YahooChartResult(_CamelModel):
    meta: YahooQuoteFields
    indicators: YahooChartIndicators = Field(default_factory=YahooChartIndicators)


class YahooChartBody(_CamelModel):
    result: list[YahooChartResult] | None = None
    error: dict | None = None


class YahooChartResponse(_CamelModel):
    chart: YahooChartBody


class YahooBatchBody(_CamelModel):
    result: list[YahooQuoteFields] = Field(default_factory=list)


class YahooBatchResponse(_CamelModel):
    quote_response: YahooBatchBody


class YahooSearchHit(_CamelModel):
    symbol: str | None = None
    shortname: str | None = None
    longname: str | None = None


class YahooSearchResponse(_CamelModel):
    quotes: list[YahooSearchHit] = Field(default_factory=list)


# --- Alpha Vantage -----------------------------------------------------------


class _AlphaVantageModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class AlphaVantageEnvelope(_AlphaVantageModel):
    """Alpha Vantage reports throttling and bad keys inside a 200 response."""

    note: str | None = Field(default=None, alias="Note")
    information: str | None = Field(default=None, alias="Information")
    error_message: str | None = Field(default=None, alias="Error Message")


class AlphaVantageGlobalQuote(_AlphaVantageModel):
    symbol: str | None = Field(default=None, alias="01. symbol")
    open: float | None = Field(default=None, alias="02. open")
    high: float | None = Field(default=None, alias="03. high")
    low: float | None = Field(default=None, alias="04. low")
    price: float | None = Field(default=None, alias="05. price")
    volume: float | None = Field(default=None, alias="06. volume")
    latest_trading_day: str | None = Field(default=None, alias="07. latest trading day")
    previous_close: float | None = Field(default=None, alias="08. previous close")
    change: float | None = Field(default=None, alias="09. change")
    change_percent: float | None = Field(default=None, alias="10. change percent")

    @field_validator("change_percent", mode="before")
    @classmethod
    def strip_percent_sign(cls, value):
        if isinstance(value, str):
            return value.strip().rstrip("%") or None
        return value


class AlphaVantageQuoteResponse(AlphaVantageEnvelope):
    global_quote: AlphaVantageGlobalQuote | None = Field(default=None, alias="Global Quote")


class AlphaVantageDailyBar(_AlphaVantageModel):
    open: float | None = Field(default=None, alias="1. open")
    high: float | None = Field(default=None, alias="2. high")
    low: float | None = Field(default=None, alias="3. low")
    close: float | None = Field(default=None, alias="4. close")
    volume: float | None = Field(default=None, alias="5. volume")


class AlphaVantageDailyResponse(AlphaVantageEnvelope):
    time_series: dict[str, AlphaVantageDailyBar] = Field(
        default_factory=dict, alias="Time Series (Daily)"
    )


class AlphaVantageMatch(_AlphaVantageModel):
    symbol: str | None = Field(default=None, alias="1. symbol")
    name: str | None = Field(default=None, alias="2. name")


class AlphaVantageSearchResponse(AlphaVantageEnvelope):
    best_matches: list[AlphaVantageMatch] = Field(default_factory=list, alias="bestMatches")


# --- Financial Modeling Prep -------------------------------------------------


class FmpQuote(_CamelModel):
    symbol: str | None = None
    name: str | None = None
    price: float | None = None
    changes_percentage: float | None = None
    change: float | None = None
    day_low: float | None = None
    day_high: float | None = None
    year_high: float | None = None
    year_low: float | None = None
    market_cap: float | None = None
    volume: float | None = None
    avg_volume: float | None = None
    previous_close: float | None = None
    timestamp: int | None = None


class FmpSearchHit(_CamelModel):
    symbol: str | None = None
    name: str | None = None
