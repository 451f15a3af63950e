"""Purchase plan reporting."""

import logging

import pandas as pd

from ..portfolio.allocator import PurchasePlan
from ..portfolio.model import PortfolioModel

logger = logging.getLogger(__name__)

REPORT_COLUMNS = ["Fund", "Shares to Buy", "Buy Amt", "New Proportion", "Target"]


def build_report_frame(model: PortfolioModel, plan: PurchasePlan) -> pd.DataFrame:
    """
    Tabulate a purchase plan.

    Args:
        model: Portfolio the plan was computed for
        plan: Plan returned by the allocator

    Returns:
        DataFrame with one row per fund, in model order
    """
    if [f.symbol for f in plan.funds] != model.symbols:
        raise ValueError("Purchase plan does not match portfolio funds")

    proportions = plan.resulting_proportions()
    rows = [
        {
            "Fund": fund.symbol,
            "Shares to Buy": shares,
            "Buy Amt": shares * fund.price,
            "New Proportion": proportions[fund.symbol],
            "Target": fund.target_proportion,
        }
        for fund, shares in plan
    ]
    return pd.DataFrame(rows, columns=REPORT_COLUMNS)


def render_prices(prices: dict[str, float]) -> str:
    """Format downloaded prices, one symbol per line."""
    lines = ["Current prices:"]
    lines.extend(f"{symbol}:\t${price:.2f}" for symbol, price in prices.items())
    return "\n".join(lines)


def render_plan(model: PortfolioModel, plan: PurchasePlan) -> str:
    """Format a purchase plan as a text table with totals."""
    frame = build_report_frame(model, plan)
    table = frame.to_string(
        index=False,
        formatters={
            "Buy Amt": lambda v: f"${v:,.2f}",
            "New Proportion": lambda v: f"{v * 100:.2f}%",
            "Target": lambda v: f"{v * 100:.2f}%",
        },
    )

    return f"""Optimal purchasing strategy:
{table}

Total purchase:\t\t${plan.total_cost:,.2f}
New portfolio total:\t${plan.new_total_value:,.2f}
Deviation from target:\t{plan.deviation * 100:.2f}% (was {model.current_deviation() * 100:.2f}%)"""
