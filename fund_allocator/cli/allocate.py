#!/usr/bin/env python3
"""
Allocate CLI - compute how many shares of each fund to buy.

Usage:
    fund-allocator -c config/portfolio.yaml
    python -m fund_allocator.cli.allocate -c config/portfolio.yaml -d -t 5000
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import yaml

from ..analytics.report import render_plan, render_prices
from ..config.validator import ConfigValidationError, load_and_validate_config
from ..data.market_data import PriceFetcher, PriceUnavailable
from ..portfolio.allocator import Allocator, PurchasePlan
from ..portfolio.exceptions import AllocatorError, ValidationError
from ..portfolio.model import PortfolioModel
from ..utils.logging import log_purchase, setup_logging_from_settings

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_RUN_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130


def run_allocation(
    config_path: str,
    download_prices: bool = False,
    target_buy: Optional[float] = None,
    output_file: Optional[str] = None,
    verbose: bool = False,
    json_logs: bool = False,
    fetcher: Optional[PriceFetcher] = None,
) -> tuple[PortfolioModel, PurchasePlan]:
    """
    Load a portfolio, optionally refresh prices, and compute a purchase plan.

    Args:
        config_path: Path to YAML portfolio configuration
        download_prices: Replace configured prices with current market prices
        target_buy: Budget overriding the configured target_buy
        output_file: Optional file to save the plan (.json, .yaml or .txt)
        verbose: Enable debug logging
        json_logs: Emit logs as JSON
        fetcher: Price fetcher to use instead of one built from settings

    Returns:
        Tuple of (model used, plan computed)
    """
    settings = load_and_validate_config(config_path)
    if json_logs:
        settings["logging"]["json_format"] = True
    setup_logging_from_settings(settings, verbose=verbose)

    model = PortfolioModel.from_settings(settings)

    if download_prices:
        print("Downloading current fund prices...")
        fetcher = fetcher or PriceFetcher.from_settings(settings)
        prices = fetcher.get_prices(model.symbols)
        model = model.with_prices(prices)
        print(render_prices(prices))
        print("")

    missing = model.missing_prices()
    if missing:
        raise ValidationError(
            [f"No price for {symbol}; set one in the config or use --download-current-prices"
             for symbol in missing]
        )

    if target_buy is not None:
        model = model.with_target_buy(target_buy)

    logger.info(
        f"Allocating ${model.target_buy:,.2f} across {len(model.funds)} funds "
        f"(current value ${model.current_total_value():,.2f})"
    )

    allocator = Allocator.from_settings(settings)
    plan = allocator.allocate(model)

    proportions = plan.resulting_proportions()
    for fund, shares in plan:
        if shares:
            log_purchase(logger, fund.symbol, shares, fund.price, proportions[fund.symbol])

    print(render_plan(model, plan))

    if output_file:
        save_plan(model, plan, output_file)

    return model, plan


def save_plan(model: PortfolioModel, plan: PurchasePlan, output_file: str) -> Path:
    """Write a plan to .json, .yaml/.yml, or a text report for anything else."""
    output_path = Path(output_file)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    data = {"portfolio": model.to_dict(), "plan": plan.to_dict()}

    if output_file.endswith(".json"):
        with open(output_path, "w") as f:
            json.dump(data, f, indent=2, default=str)
    elif output_file.endswith(".yaml") or output_file.endswith(".yml"):
        with open(output_path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
    else:
        with open(output_path, "w") as f:
            f.write(render_plan(model, plan) + "\n")

    logger.info(f"Plan saved to: {output_path}")
    return output_path


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fund-allocator",
        description="Compute whole-share fund purchases that move a portfolio toward its targets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Use prices from the config file
  fund-allocator -c config/portfolio.yaml

  # Download current prices first
  fund-allocator -c config/portfolio.yaml -d

  # Override the amount to spend
  fund-allocator -c config/portfolio.yaml -t 2500

  # Save the plan
  fund-allocator -c config/portfolio.yaml -o plans/latest.json
        """,
    )

    parser.add_argument(
        "-c", "--config",
        type=str,
        required=True,
        help="Portfolio configuration file (YAML)",
    )
    parser.add_argument(
        "-d", "--download-current-prices",
        action="store_true",
        help="Download current fund prices instead of using configured ones",
    )
    parser.add_argument(
        "-t", "--target-buy",
        type=float,
        default=None,
        help="Amount to spend, overriding target_buy in the config",
    )
    parser.add_argument(
        "-o", "--output",
        type=str,
        default=None,
        help="Output file for the plan (.json, .yaml, or .txt)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit log records as JSON",
    )

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the allocate CLI."""
    args = build_parser().parse_args(argv)

    try:
        run_allocation(
            config_path=args.config,
            download_prices=args.download_current_prices,
            target_buy=args.target_buy,
            output_file=args.output,
            verbose=args.verbose,
            json_logs=args.json_logs,
        )
        return EXIT_OK

    except KeyboardInterrupt:
        print("\nAllocation cancelled by user", file=sys.stderr)
        return EXIT_INTERRUPTED
    except (FileNotFoundError, ConfigValidationError, ValidationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except (PriceUnavailable, AllocatorError) as e:
        logger.error(f"Allocation failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        return EXIT_RUN_ERROR


if __name__ == "__main__":
    sys.exit(main())
