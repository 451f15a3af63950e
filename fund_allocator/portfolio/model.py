"""
Portfolio input model.

Holds the funds, current holdings, prices and target proportions that the
allocator works from. Models are validated on construction and never mutated.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Optional

from .exceptions import InvalidInput, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_PROPORTION_TOLERANCE = 1e-6


@dataclass(frozen=True)
class Fund:
    """One holding line of the portfolio."""
    symbol: str
    shares_owned: int
    target_proportion: float  # 0.0 to 1.0 (e.g., 0.15 = 15%)
    price: Optional[float] = None  # None until prices are loaded

    @property
    def has_price(self) -> bool:
        return is_usable_price(self.price)

    @property
    def current_value(self) -> float:
        if not self.has_price:
            raise InvalidInput(f"Price for {self.symbol} is missing or not positive")
        return self.shares_owned * self.price


def is_usable_price(price: Optional[float]) -> bool:
    """True when price is a finite, strictly positive number."""
    if price is None or isinstance(price, bool):
        return False
    try:
        value = float(price)
    except (TypeError, ValueError):
        return False
    return math.isfinite(value) and value > 0


@dataclass(frozen=True)
class PortfolioModel:
    """
    Immutable allocation input.

    Funds keep their input order so plans and reports are stable. Prices may
    be absent at construction (to be filled by the price fetcher through
    with_prices), but any price that is present must be positive.
    """
    funds: tuple[Fund, ...]
    target_buy: float
    proportion_tolerance: float = field(default=DEFAULT_PROPORTION_TOLERANCE, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "funds", tuple(self.funds))
        errors = validate_portfolio(self.funds, self.target_buy, self.proportion_tolerance)
        if errors:
            raise ValidationError(errors)

    @classmethod
    def from_settings(cls, settings: dict) -> "PortfolioModel":
        """Create a model from a validated settings dictionary."""
        funds = []
        for entry in settings.get("funds", []):
            shares = entry.get("shares") or 0
            if isinstance(shares, float) and shares.is_integer():
                shares = int(shares)
            funds.append(Fund(
                symbol=str(entry["symbol"]).upper(),
                shares_owned=shares,
                target_proportion=float(entry["target_proportion"]),
                price=entry.get("price"),
            ))

        return cls(
            funds=tuple(funds),
            target_buy=float(settings.get("target_buy", 0.0)),
            proportion_tolerance=settings.get(
                "proportion_tolerance", DEFAULT_PROPORTION_TOLERANCE
            ),
        )

    @property
    def symbols(self) -> list[str]:
        return [f.symbol for f in self.funds]

    def get_fund(self, symbol: str) -> Fund:
        for fund in self.funds:
            if fund.symbol == symbol:
                return fund
        raise KeyError(symbol)

    def missing_prices(self) -> list[str]:
        """Symbols that do not yet have a usable price."""
        return [f.symbol for f in self.funds if not f.has_price]

    def with_prices(self, prices: dict[str, float]) -> "PortfolioModel":
        """
        Return a new model with prices overlaid.

        Args:
            prices: Dict mapping symbol to current price. Symbols not in the
                portfolio are ignored; funds without an entry keep their price.

        Returns:
            New PortfolioModel (validated again)
        """
        funds = tuple(
            replace(f, price=prices[f.symbol]) if f.symbol in prices else f
            for f in self.funds
        )
        updated = sum(1 for f in self.funds if f.symbol in prices)
        logger.debug(f"Overlaid prices for {updated} of {len(self.funds)} funds")
        return replace(self, funds=funds)

    def with_target_buy(self, target_buy: float) -> "PortfolioModel":
        """Return a new model with a different spending budget."""
        return replace(self, target_buy=target_buy)

    def current_total_value(self) -> float:
        """Total value of existing holdings."""
        return sum(f.current_value for f in self.funds)

    def current_proportion(self, fund: Fund) -> float:
        """
        Current share of portfolio value held in fund.

        Raises:
            ZeroDivisionError: If the portfolio currently has no value
        """
        total = self.current_total_value()
        if total == 0:
            raise ZeroDivisionError("Portfolio has zero total value")
        return fund.current_value / total

    def current_proportions(self) -> dict[str, float]:
        """Current proportions per symbol, all zero for an empty portfolio."""
        if self.current_total_value() == 0:
            return {f.symbol: 0.0 for f in self.funds}
        return {f.symbol: self.current_proportion(f) for f in self.funds}

    def current_deviation(self) -> float:
        """Sum of absolute differences between current and target proportions."""
        current = self.current_proportions()
        return sum(abs(current[f.symbol] - f.target_proportion) for f in self.funds)

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_buy": self.target_buy,
            "funds": [
                {
                    "symbol": f.symbol,
                    "shares": f.shares_owned,
                    "price": f.price,
                    "target_proportion": f.target_proportion,
                }
                for f in self.funds
            ],
        }


def validate_portfolio(
    funds: Iterable[Fund],
    target_buy: float,
    proportion_tolerance: float = DEFAULT_PROPORTION_TOLERANCE,
) -> list[str]:
    """
    Check funds and budget for problems.

    Returns:
        List of error messages, empty when the input is usable
    """
    funds = list(funds)
    errors = []

    if not funds:
        errors.append("Portfolio must contain at least one fund")

    if target_buy is None or not math.isfinite(target_buy) or target_buy < 0:
        errors.append(f"target_buy must be a non-negative number, got {target_buy}")

    seen: set[str] = set()
    for f in funds:
        if f.symbol in seen:
            errors.append(f"Duplicate symbol: {f.symbol}")
        seen.add(f.symbol)

        if isinstance(f.shares_owned, bool) or not isinstance(f.shares_owned, int):
            errors.append(f"shares for {f.symbol} must be an integer, got {f.shares_owned!r}")
        elif f.shares_owned < 0:
            errors.append(f"shares for {f.symbol} must not be negative, got {f.shares_owned}")

        if f.price is not None and not is_usable_price(f.price):
            errors.append(f"price for {f.symbol} is not positive: {f.price}")

        if not 0.0 <= f.target_proportion <= 1.0:
            errors.append(
                f"target_proportion for {f.symbol} must be between 0 and 1, "
                f"got {f.target_proportion}"
            )

    if funds:
        proportion_sum = sum(f.target_proportion for f in funds)
        if abs(proportion_sum - 1.0) > proportion_tolerance:
            errors.append(
                f"expected target_proportions to sum to 1.00, got {proportion_sum:.6f}"
            )

    return errors
