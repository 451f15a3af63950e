"""Current fund prices from yfinance, with Alpha Vantage as a fallback."""

import logging
import math
import os
from dataclasses import dataclass
from typing import Iterable, Optional

import pandas as pd
import requests
import yfinance as yf

from ..utils.logging import log_price
from ..utils.retry import RetryPolicy

logger = logging.getLogger(__name__)

ALPHA_VANTAGE_URL = "https://www.alphavantage.co/query"


class PriceUnavailable(Exception):
    """Raised when no usable price could be retrieved for one or more symbols."""

    def __init__(self, failures: dict[str, str]):
        self.failures = failures
        details = "; ".join(f"{symbol}: {reason}" for symbol, reason in failures.items())
        super().__init__(f"Price unavailable for {', '.join(failures)} ({details})")

    @property
    def symbols(self) -> list[str]:
        return list(self.failures)


@dataclass
class MarketDataConfig:
    """Configuration for price retrieval."""
    history_period: str = "5d"
    max_attempts: int = 3
    base_delay: float = 1.0
    request_timeout: float = 10.0
    alpha_vantage_key: str = ""

    @classmethod
    def from_settings(cls, settings: dict) -> "MarketDataConfig":
        """Create config from settings dictionary."""
        md_settings = settings.get("market_data", {})

        return cls(
            history_period=md_settings.get("history_period", "5d"),
            max_attempts=md_settings.get("max_attempts", 3),
            base_delay=md_settings.get("base_delay", 1.0),
            request_timeout=md_settings.get("request_timeout", 10.0),
            alpha_vantage_key=(
                md_settings.get("alpha_vantage_key") or os.getenv("ALPHA_VANTAGE_KEY", "")
            ),
        )


class PriceFetcher:
    """
    Fetches the latest closing price per symbol.

    yfinance daily history is the primary source. When an Alpha Vantage key
    is configured it is tried for any symbol yfinance cannot price.
    """

    def __init__(self, config: Optional[MarketDataConfig] = None):
        self.config = config or MarketDataConfig()
        self.retry = RetryPolicy(
            max_attempts=self.config.max_attempts,
            base_delay=self.config.base_delay,
        )

    @classmethod
    def from_settings(cls, settings: dict) -> "PriceFetcher":
        """Create fetcher from settings dictionary."""
        return cls(MarketDataConfig.from_settings(settings))

    def get_price(self, symbol: str) -> float:
        """
        Latest price for one symbol.

        Raises:
            PriceUnavailable: If no source returned a positive price
        """
        reasons = []

        try:
            price = self.retry.call(self._yahoo_price, symbol)
            log_price(logger, symbol, price, "yfinance")
            return price
        except Exception as e:
            logger.warning(f"yfinance price lookup failed for {symbol}: {e}")
            reasons.append(f"yfinance: {e}")

        if self.config.alpha_vantage_key:
            try:
                price = self.retry.call(self._alpha_vantage_price, symbol)
                log_price(logger, symbol, price, "alpha_vantage")
                return price
            except Exception as e:
                logger.warning(f"Alpha Vantage price lookup failed for {symbol}: {e}")
                reasons.append(f"alpha_vantage: {e}")

        raise PriceUnavailable({symbol: ", ".join(reasons)})

    def get_prices(self, symbols: Iterable[str]) -> dict[str, float]:
        """
        Latest prices for several symbols.

        Every symbol is attempted before failing, so the error names all
        symbols that could not be priced.

        Raises:
            PriceUnavailable: If any symbol could not be priced
        """
        prices: dict[str, float] = {}
        failures: dict[str, str] = {}

        for symbol in symbols:
            try:
                prices[symbol] = self.get_price(symbol)
            except PriceUnavailable as e:
                failures.update(e.failures)

        if failures:
            raise PriceUnavailable(failures)
        return prices

    def _yahoo_price(self, symbol: str) -> float:
        ticker = yf.Ticker(symbol)
        df = ticker.history(period=self.config.history_period, interval="1d")
        return _last_close(df, symbol)

    def _alpha_vantage_price(self, symbol: str) -> float:
        params = {
            "function": "GLOBAL_QUOTE",
            "symbol": symbol,
            "apikey": self.config.alpha_vantage_key,
        }
        response = requests.get(ALPHA_VANTAGE_URL, params=params, timeout=self.config.request_timeout)
        response.raise_for_status()
        data = response.json()

        quote = data.get("Global Quote")
        if not quote:
            raise ValueError(f"invalid Alpha Vantage response: {data}")

        return _positive(float(quote.get("05. price", 0)), symbol)


def _last_close(df: pd.DataFrame, symbol: str) -> float:
    if df is None or df.empty:
        raise ValueError(f"empty history returned for {symbol}")

    columns = {str(c).lower(): c for c in df.columns}
    if "close" not in columns:
        raise ValueError(f"history for {symbol} has no close column")

    closes = df[columns["close"]].dropna()
    if closes.empty:
        raise ValueError(f"no closing prices for {symbol}")

    return _positive(float(closes.iloc[-1]), symbol)


def _positive(price: float, symbol: str) -> float:
    if not math.isfinite(price) or price <= 0:
        raise ValueError(f"non-positive price {price} for {symbol}")
    return price
