"""Market data retrieval."""

from .market_data import MarketDataConfig, PriceFetcher, PriceUnavailable

__all__ = ["MarketDataConfig", "PriceFetcher", "PriceUnavailable"]
