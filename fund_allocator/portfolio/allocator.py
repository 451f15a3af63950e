"""
Buy-only allocation optimizer.

Chooses whole-share purchases that bring a portfolio as close as possible to
its target proportions without spending more than the budget.

The deviation being minimized is sum(|resulting_proportion - target|). Every
resulting proportion shares the new portfolio total as its denominator, so the
objective is a ratio of two linear expressions once the absolute values are
replaced by slack variables:

    minimize  sum(dev[i]) / total
    subject to
        total  = current_total + sum(buy[i] * price[i])
        dev[i] >= price[i] * (owned[i] + buy[i]) - target[i] * total
        dev[i] >= target[i] * total - price[i] * (owned[i] + buy[i])
        sum(buy[i] * price[i]) <= target_buy
        0 <= buy[i] <= floor(target_buy / price[i]), buy[i] integer

The ratio is minimized exactly with Dinkelbach iteration: each step solves the
mixed-integer program min(sum(dev) - lam * total) with HiGHS and moves lam to
the ratio of the step's solution until no further improvement is possible.
Ties are then broken by two more stages (largest spend, then lexicographically
smallest plan in fund order).
"""

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np
from scipy.optimize import Bounds, LinearConstraint, milp

from ..utils.logging import log_solver_stage
from .exceptions import AllocationTimeout, Infeasible, InvalidInput, SolverError
from .model import Fund, PortfolioModel, is_usable_price

logger = logging.getLogger(__name__)

# scipy.optimize.milp status codes
MILP_OPTIMAL = 0
MILP_LIMIT_REACHED = 1
MILP_INFEASIBLE = 2


@dataclass
class AllocatorConfig:
    """Solver parameters for the allocator."""
    tolerance: float = 1e-9  # deviation difference treated as a tie
    time_limit_seconds: float = 30.0  # wall clock for the whole call
    max_iterations: int = 50  # Dinkelbach steps
    mip_rel_gap: float = 0.0

    @classmethod
    def from_settings(cls, settings: dict) -> "AllocatorConfig":
        """Create config from settings dictionary."""
        solver = settings.get("solver", {})

        return cls(
            tolerance=solver.get("tolerance", 1e-9),
            time_limit_seconds=solver.get("time_limit_seconds", 30.0),
            max_iterations=solver.get("max_iterations", 50),
            mip_rel_gap=solver.get("mip_rel_gap", 0.0),
        )


@dataclass(frozen=True)
class PurchasePlan:
    """Shares to buy per fund, in the same order as the model's funds."""
    funds: tuple[Fund, ...]
    shares_to_buy: tuple[int, ...]
    iterations: int = field(default=0, compare=False)
    elapsed_seconds: float = field(default=0.0, compare=False)

    def __iter__(self):
        return iter(zip(self.funds, self.shares_to_buy))

    def __len__(self) -> int:
        return len(self.funds)

    def shares_for(self, symbol: str) -> int:
        for fund, shares in self:
            if fund.symbol == symbol:
                return shares
        raise KeyError(symbol)

    def cost(self, symbol: str) -> float:
        for fund, shares in self:
            if fund.symbol == symbol:
                return shares * fund.price
        raise KeyError(symbol)

    @property
    def total_cost(self) -> float:
        return sum(shares * fund.price for fund, shares in self)

    @property
    def new_total_value(self) -> float:
        return sum((fund.shares_owned + shares) * fund.price for fund, shares in self)

    def resulting_proportions(self) -> dict[str, float]:
        """Proportions after the purchase, all zero if the portfolio stays empty."""
        total = self.new_total_value
        if total == 0:
            return {fund.symbol: 0.0 for fund in self.funds}
        return {
            fund.symbol: (fund.shares_owned + shares) * fund.price / total
            for fund, shares in self
        }

    @property
    def deviation(self) -> float:
        return plan_deviation(self.funds, self.shares_to_buy)

    def as_dict(self) -> dict[str, int]:
        return {fund.symbol: shares for fund, shares in self}

    def to_dict(self) -> dict[str, Any]:
        proportions = self.resulting_proportions()
        return {
            "purchases": [
                {
                    "symbol": fund.symbol,
                    "shares_to_buy": shares,
                    "cost": round(shares * fund.price, 2),
                    "new_proportion": proportions[fund.symbol],
                    "target_proportion": fund.target_proportion,
                }
                for fund, shares in self
            ],
            "total_cost": round(self.total_cost, 2),
            "new_total_value": round(self.new_total_value, 2),
            "deviation": self.deviation,
        }


def plan_deviation(funds: tuple[Fund, ...], shares_to_buy) -> float:
    """Sum of absolute differences between resulting and target proportions."""
    total = sum((f.shares_owned + b) * f.price for f, b in zip(funds, shares_to_buy))
    if total == 0:
        return sum(f.target_proportion for f in funds)
    return sum(
        abs((f.shares_owned + b) * f.price / total - f.target_proportion)
        for f, b in zip(funds, shares_to_buy)
    )


def max_affordable_shares(price: float, budget: float) -> int:
    """Largest whole number of shares at price costing no more than budget."""
    shares = max(0, math.floor(budget / price))
    # Correct for floating point on exact multiples
    if (shares + 1) * price <= budget:
        shares += 1
    while shares > 0 and shares * price > budget:
        shares -= 1
    return shares


class Allocator:
    """
    Computes purchase plans.

    Holds only its solver configuration; allocate() is a pure function of the
    model it is given.
    """

    def __init__(self, config: Optional[AllocatorConfig] = None):
        self.config = config or AllocatorConfig()

    @classmethod
    def from_settings(cls, settings: dict) -> "Allocator":
        """Create allocator from settings dictionary."""
        return cls(AllocatorConfig.from_settings(settings))

    def allocate(self, model: PortfolioModel) -> PurchasePlan:
        """
        Find the least-deviation purchase plan within budget.

        Args:
            model: Validated portfolio with a usable price for every fund

        Returns:
            PurchasePlan with one entry per fund

        Raises:
            InvalidInput: If any fund has a missing, zero or non-finite price
            AllocationTimeout: If the time or iteration budget is exhausted
            Infeasible: If the solver reports no feasible plan
            SolverError: For any other solver failure
        """
        funds = model.funds
        for f in funds:
            if not is_usable_price(f.price):
                raise InvalidInput(f"Cannot allocate: price for {f.symbol} is {f.price!r}")

        started = time.monotonic()
        upper = [
            0 if f.target_proportion == 0 else max_affordable_shares(f.price, model.target_buy)
            for f in funds
        ]

        if not any(upper):
            logger.info(
                f"No affordable purchases with budget ${model.target_buy:,.2f}, "
                f"returning empty plan"
            )
            return PurchasePlan(
                funds=funds,
                shares_to_buy=tuple(0 for _ in funds),
                elapsed_seconds=time.monotonic() - started,
            )

        search = _PlanSearch(funds, model.target_buy, upper, self.config, started)
        shares, iterations = search.run()

        plan = PurchasePlan(
            funds=funds,
            shares_to_buy=tuple(int(s) for s in shares),
            iterations=iterations,
            elapsed_seconds=time.monotonic() - started,
        )

        budget_slack = 1e-9 * max(1.0, model.target_buy)
        if plan.total_cost > model.target_buy + budget_slack:
            raise SolverError(
                f"Solver returned plan costing ${plan.total_cost:,.2f}, "
                f"over budget ${model.target_buy:,.2f}"
            )

        logger.info(
            f"Allocated ${plan.total_cost:,.2f} of ${model.target_buy:,.2f} "
            f"(deviation {plan.deviation:.6f}, {iterations} iterations, "
            f"{plan.elapsed_seconds:.2f}s)"
        )
        return plan


class _PlanSearch:
    """
    One allocation run.

    Variable layout: buy[0..n), dev[n..2n), total at index 2n.
    """

    def __init__(
        self,
        funds: tuple[Fund, ...],
        target_buy: float,
        upper: list[int],
        config: AllocatorConfig,
        started: float,
    ):
        self.funds = funds
        self.target_buy = target_buy
        self.config = config
        self.started = started
        self.deadline = started + config.time_limit_seconds

        n = len(funds)
        self.n = n
        self.prices = np.array([f.price for f in funds], dtype=float)
        owned = np.array([f.shares_owned for f in funds], dtype=float)
        targets = np.array([f.target_proportion for f in funds], dtype=float)
        self.held_value = self.prices * owned
        self.current_total = float(self.held_value.sum())

        self.integrality = np.concatenate([np.ones(n), np.zeros(n + 1)])
        self.buy_lower = np.zeros(n)
        self.buy_upper = np.array(upper, dtype=float)

        rows = []

        # total - sum(price * buy) == current_total
        total_row = np.concatenate([-self.prices, np.zeros(n), [1.0]]).reshape(1, -1)
        rows.append(LinearConstraint(total_row, self.current_total, self.current_total))

        self.spend_row = np.concatenate([self.prices, np.zeros(n + 1)])
        rows.append(LinearConstraint(self.spend_row.reshape(1, -1), -np.inf, target_buy))

        over = np.zeros((n, 2 * n + 1))
        under = np.zeros((n, 2 * n + 1))
        for i in range(n):
            over[i, i] = -self.prices[i]
            over[i, n + i] = 1.0
            over[i, 2 * n] = targets[i]
            under[i, i] = self.prices[i]
            under[i, n + i] = 1.0
            under[i, 2 * n] = -targets[i]
        rows.append(LinearConstraint(over, self.held_value, np.inf))
        rows.append(LinearConstraint(under, -self.held_value, np.inf))

        self.constraints = rows
        self.deviation_row = np.concatenate([np.zeros(n), np.ones(n), [0.0]])

    def run(self) -> tuple[np.ndarray, int]:
        """Return the chosen plan and the number of Dinkelbach iterations."""
        best, ratio, iterations = self._minimize_deviation()
        best = self._maximize_spend(ratio, best)
        best = self._lexicographic_minimum(ratio, best)
        return best, iterations

    def _minimize_deviation(self) -> tuple[np.ndarray, float, int]:
        n = self.n
        tolerance = self.config.tolerance

        # Buying nothing is always feasible; an empty portfolio scores sum(targets)
        incumbent = np.zeros(n, dtype=int)
        lam = self._ratio(incumbent)

        for iteration in range(1, self.config.max_iterations + 1):
            objective = np.concatenate([np.zeros(n), np.ones(n), [-lam]])
            candidate = self._solve(objective, self.constraints, self._bounds(), "deviation")
            ratio = self._ratio(candidate)
            log_solver_stage(logger, "deviation", iteration, ratio, self._elapsed())

            if ratio < lam - tolerance:
                incumbent, lam = candidate, ratio
                continue
            return incumbent, lam, iteration

        raise AllocationTimeout(
            f"Deviation search did not converge in {self.config.max_iterations} iterations",
            elapsed=self._elapsed(),
            iterations=self.config.max_iterations,
        )

    def _maximize_spend(self, ratio: float, incumbent: np.ndarray) -> np.ndarray:
        """Among plans tied on deviation, spend as much of the budget as possible."""
        constraints = self.constraints + [self._deviation_cap(ratio)]
        candidate = self._solve(-self.spend_row, constraints, self._bounds(), "spend")
        log_solver_stage(logger, "spend", 1, self._spend(candidate), self._elapsed())

        if self._spend(candidate) < self._spend(incumbent):
            return incumbent
        return candidate

    def _lexicographic_minimum(self, ratio: float, incumbent: np.ndarray) -> np.ndarray:
        """Among plans tied on deviation and spend, fix funds smallest-first in order."""
        n = self.n
        spend = self._spend(incumbent)
        spend_slack = max(1e-6, self.config.tolerance * max(1.0, self.target_buy))
        constraints = self.constraints + [
            self._deviation_cap(ratio),
            LinearConstraint(self.spend_row.reshape(1, -1), spend - spend_slack, np.inf),
        ]

        lower = self.buy_lower.copy()
        upper = self.buy_upper.copy()
        for i in range(n):
            if lower[i] == upper[i]:
                continue
            objective = np.zeros(2 * n + 1)
            objective[i] = 1.0
            candidate = self._solve(objective, constraints, self._bounds(lower, upper), "order")
            lower[i] = upper[i] = candidate[i]
            log_solver_stage(logger, "order", i + 1, float(candidate[i]), self._elapsed())

        return lower.astype(int)

    def _deviation_cap(self, ratio: float) -> LinearConstraint:
        # sum(dev) <= (ratio + tolerance) * total
        row = self.deviation_row.copy()
        row[2 * self.n] = -(ratio + self.config.tolerance)
        return LinearConstraint(row.reshape(1, -1), -np.inf, 0.0)

    def _bounds(self, lower=None, upper=None) -> Bounds:
        n = self.n
        lower = self.buy_lower if lower is None else lower
        upper = self.buy_upper if upper is None else upper
        return Bounds(
            np.concatenate([lower, np.zeros(n), [self.current_total]]),
            np.concatenate([upper, np.full(n, np.inf), [self.current_total + self.target_buy]]),
        )

    def _solve(self, objective, constraints, bounds, stage: str) -> np.ndarray:
        remaining = self.deadline - time.monotonic()
        if remaining <= 0:
            raise AllocationTimeout(
                f"Time limit of {self.config.time_limit_seconds}s reached before {stage} stage",
                elapsed=self._elapsed(),
            )

        result = milp(
            objective,
            integrality=self.integrality,
            bounds=bounds,
            constraints=constraints,
            options={
                "disp": False,
                "time_limit": remaining,
                "mip_rel_gap": self.config.mip_rel_gap,
            },
        )

        if result.status == MILP_LIMIT_REACHED:
            raise AllocationTimeout(
                f"Solver limit reached during {stage} stage: {result.message}",
                elapsed=self._elapsed(),
            )
        if result.status == MILP_INFEASIBLE:
            raise Infeasible(f"No feasible plan in {stage} stage: {result.message}")
        if result.status != MILP_OPTIMAL or result.x is None:
            raise SolverError(
                f"Solver failed during {stage} stage: {result.message}",
                status=result.status,
            )

        return np.rint(result.x[: self.n]).astype(int)

    def _ratio(self, shares: np.ndarray) -> float:
        return plan_deviation(self.funds, shares)

    def _spend(self, shares: np.ndarray) -> float:
        return float(np.dot(self.prices, shares))

    def _elapsed(self) -> float:
        return time.monotonic() - self.started
