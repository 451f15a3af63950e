"""Tests for the allocation optimizer."""

import itertools
import math
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from fund_allocator.portfolio.allocator import (
    Allocator,
    AllocatorConfig,
    PurchasePlan,
    max_affordable_shares,
    plan_deviation,
)
from fund_allocator.portfolio.exceptions import (
    AllocationTimeout,
    Infeasible,
    InvalidInput,
    SolverError,
)
from fund_allocator.portfolio.model import Fund, PortfolioModel


@pytest.fixture
def allocator():
    """Allocator with default solver settings."""
    return Allocator(AllocatorConfig())


@pytest.fixture
def three_fund_model():
    """Three-fund portfolio with a $6000 budget."""
    return PortfolioModel(
        funds=(
            Fund("BND", 100, 0.15, price=85.40),
            Fund("VTI", 200, 0.70, price=216.30),
            Fund("VXUS", 100, 0.15, price=65.66),
        ),
        target_buy=6000.0,
    )


def brute_force_best_deviation(model: PortfolioModel) -> float:
    """Smallest deviation over every affordable integer purchase vector."""
    ranges = [range(max_affordable_shares(f.price, model.target_buy) + 1) for f in model.funds]
    best = math.inf
    for shares in itertools.product(*ranges):
        cost = sum(s * f.price for s, f in zip(shares, model.funds))
        if cost > model.target_buy:
            continue
        best = min(best, plan_deviation(model.funds, shares))
    return best


class TestMaxAffordableShares:
    """Tests for the per-fund search bound."""

    def test_basic(self):
        assert max_affordable_shares(85.40, 6000.0) == 70

    def test_exact_multiple(self):
        assert max_affordable_shares(0.1, 0.3) == 3
        assert max_affordable_shares(25.0, 100.0) == 4

    def test_budget_below_price(self):
        assert max_affordable_shares(65.66, 50.0) == 0

    def test_zero_budget(self):
        assert max_affordable_shares(10.0, 0.0) == 0


class TestScenarios:
    """Reference scenarios."""

    def test_three_fund_portfolio(self, allocator, three_fund_model):
        """Spend stays within budget and the allocation moves toward target."""
        plan = allocator.allocate(three_fund_model)

        assert plan.total_cost <= 6000.0
        assert all(s >= 0 for s in plan.shares_to_buy)
        assert plan.deviation < three_fund_model.current_deviation()
        assert plan.total_cost > 0

    def test_three_fund_portfolio_is_optimal(self, allocator):
        model = PortfolioModel(
            funds=(
                Fund("BND", 100, 0.15, price=85.40),
                Fund("VTI", 200, 0.70, price=216.30),
                Fund("VXUS", 100, 0.15, price=65.66),
            ),
            target_buy=600.0,
        )
        plan = allocator.allocate(model)

        assert plan.total_cost <= 600.0
        assert plan.deviation <= brute_force_best_deviation(model) + 1e-7

    def test_single_fund_buys_all_it_can(self, allocator):
        model = PortfolioModel(funds=(Fund("VTI", 10, 1.0, price=216.30),), target_buy=1000.0)
        plan = allocator.allocate(model)

        assert plan.shares_to_buy == (math.floor(1000.0 / 216.30),)

    @pytest.mark.parametrize("budget", [0.0, 50.0, 999.99, 25000.0])
    def test_single_fund_any_budget(self, allocator, budget):
        model = PortfolioModel(funds=(Fund("BND", 3, 1.0, price=85.40),), target_buy=budget)
        plan = allocator.allocate(model)

        assert plan.shares_to_buy == (max_affordable_shares(85.40, budget),)

    @pytest.mark.parametrize("budget", [100.0, 1000.0, 50000.0])
    def test_zero_target_fund_never_bought(self, allocator, budget):
        model = PortfolioModel(
            funds=(
                Fund("OLD", 50, 0.0, price=10.0),
                Fund("VTI", 10, 0.6, price=216.30),
                Fund("BND", 10, 0.4, price=85.40),
            ),
            target_buy=budget,
        )
        plan = allocator.allocate(model)

        assert plan.shares_for("OLD") == 0

    def test_zero_target_fund_on_empty_holdings(self, allocator):
        """A cheap zero-target fund is not bought even when nothing else is affordable."""
        model = PortfolioModel(
            funds=(
                Fund("CHEAP", 5, 0.0, price=1.0),
                Fund("VTI", 0, 1.0, price=216.30),
            ),
            target_buy=100.0,
        )
        plan = allocator.allocate(model)

        assert plan.shares_to_buy == (0, 0)

    def test_insufficient_budget(self, allocator, three_fund_model):
        model = three_fund_model.with_target_buy(50.0)
        plan = allocator.allocate(model)

        assert plan.shares_to_buy == (0, 0, 0)
        assert plan.total_cost == 0


class TestEdgeCases:
    """Boundary behavior."""

    def test_zero_budget_buys_nothing(self, allocator, three_fund_model):
        model = three_fund_model.with_target_buy(0.0)
        plan = allocator.allocate(model)

        assert plan.shares_to_buy == (0, 0, 0)
        assert plan.deviation == pytest.approx(model.current_deviation())

    def test_empty_portfolio_buys_toward_targets(self, allocator):
        model = PortfolioModel(
            funds=(Fund("A", 0, 0.5, price=100.0), Fund("B", 0, 0.5, price=100.0)),
            target_buy=1000.0,
        )
        plan = allocator.allocate(model)

        assert plan.shares_to_buy == (5, 5)
        assert plan.deviation == pytest.approx(0.0)

    def test_empty_portfolio_unaffordable(self, allocator):
        model = PortfolioModel(
            funds=(Fund("A", 0, 0.5, price=100.0), Fund("B", 0, 0.5, price=100.0)),
            target_buy=99.0,
        )
        plan = allocator.allocate(model)

        assert plan.shares_to_buy == (0, 0)

    def test_empty_portfolio_is_optimal(self, allocator):
        model = PortfolioModel(
            funds=(
                Fund("A", 0, 0.5, price=30.0),
                Fund("B", 0, 0.3, price=45.0),
                Fund("C", 0, 0.2, price=20.0),
            ),
            target_buy=150.0,
        )
        plan = allocator.allocate(model)

        assert plan.total_cost <= 150.0
        assert plan.deviation <= brute_force_best_deviation(model) + 1e-7

    @pytest.mark.parametrize("budget", [5.0, 50.0, 500.0])
    def test_empty_portfolio_buys_nothing_when_every_purchase_is_worse(self, allocator, budget):
        """Only A is affordable and holding A alone scores 1.4, worse than buying nothing."""
        model = PortfolioModel(
            funds=(Fund("A", 0, 0.3, price=10.0), Fund("B", 0, 0.7, price=1000.0)),
            target_buy=budget,
        )
        plan = allocator.allocate(model)

        assert plan.shares_to_buy == (0, 0)
        assert plan.deviation == pytest.approx(1.0)

    def test_empty_portfolio_more_budget_never_worse(self, allocator):
        funds = (
            Fund("A", 0, 0.3, price=10.0),
            Fund("B", 0, 0.7, price=1000.0),
        )
        deviations = [
            allocator.allocate(PortfolioModel(funds=funds, target_buy=b)).deviation
            for b in [5.0, 50.0, 1000.0, 1500.0, 5000.0]
        ]

        for previous, current in zip(deviations, deviations[1:]):
            assert current <= previous + 1e-9

    def test_missing_price_rejected(self, allocator):
        model = PortfolioModel(
            funds=(Fund("A", 1, 0.5, price=10.0), Fund("B", 1, 0.5)),
            target_buy=100.0,
        )
        with pytest.raises(InvalidInput, match="B"):
            allocator.allocate(model)

    def test_input_model_unchanged(self, allocator, three_fund_model):
        before = three_fund_model.to_dict()
        allocator.allocate(three_fund_model)
        assert three_fund_model.to_dict() == before


class TestTieBreaking:
    """Deterministic choice among equally good plans."""

    def test_prefers_larger_spend(self, allocator):
        """Buying more of the only fund never changes its proportion, so spend wins."""
        model = PortfolioModel(funds=(Fund("A", 1, 1.0, price=10.0),), target_buy=95.0)
        plan = allocator.allocate(model)

        assert plan.shares_to_buy == (9,)

    def test_prefers_lexicographically_smallest(self, allocator):
        """A and B are interchangeable; the plan buys the later one."""
        model = PortfolioModel(
            funds=(
                Fund("A", 0, 0.25, price=100.0),
                Fund("B", 0, 0.25, price=100.0),
                Fund("C", 20, 0.5, price=10.0),
            ),
            target_buy=100.0,
        )
        plan = allocator.allocate(model)

        assert plan.shares_to_buy == (0, 1, 0)
        assert plan.deviation == pytest.approx(0.5)

    def test_deterministic(self, allocator, three_fund_model):
        first = allocator.allocate(three_fund_model)
        second = allocator.allocate(three_fund_model)

        assert first.shares_to_buy == second.shares_to_buy
        assert first == second


class TestProperties:
    """Invariants over a range of budgets."""

    BUDGETS = [0.0, 10.0, 70.0, 150.0, 400.0, 1000.0, 2500.0, 6000.0, 20000.0]

    @pytest.mark.parametrize("budget", BUDGETS)
    def test_budget_respected(self, allocator, three_fund_model, budget):
        plan = allocator.allocate(three_fund_model.with_target_buy(budget))

        assert plan.total_cost <= budget + 1e-9
        assert all(isinstance(s, int) and s >= 0 for s in plan.shares_to_buy)
        assert len(plan) == 3

    def test_more_budget_never_worse(self, allocator, three_fund_model):
        deviations = [
            allocator.allocate(three_fund_model.with_target_buy(b)).deviation
            for b in self.BUDGETS
        ]

        for previous, current in zip(deviations, deviations[1:]):
            assert current <= previous + 1e-7


class TestLimits:
    """Time and iteration limits."""

    def test_iteration_limit(self, three_fund_model):
        allocator = Allocator(AllocatorConfig(max_iterations=1))

        with pytest.raises(AllocationTimeout, match="did not converge"):
            allocator.allocate(three_fund_model)

    def test_time_limit(self, three_fund_model):
        allocator = Allocator(AllocatorConfig(time_limit_seconds=0.0))

        with pytest.raises(AllocationTimeout):
            allocator.allocate(three_fund_model)

    def test_timeout_is_timeout_error(self):
        assert issubclass(AllocationTimeout, TimeoutError)


class TestSolverStatus:
    """Mapping of solver statuses to exceptions."""

    @patch("fund_allocator.portfolio.allocator.milp")
    def test_infeasible(self, mock_milp, allocator, three_fund_model):
        mock_milp.return_value = SimpleNamespace(status=2, message="The problem is infeasible.", x=None)

        with pytest.raises(Infeasible, match="infeasible"):
            allocator.allocate(three_fund_model)

    @patch("fund_allocator.portfolio.allocator.milp")
    def test_other_status(self, mock_milp, allocator, three_fund_model):
        mock_milp.return_value = SimpleNamespace(status=4, message="Numerical difficulties.", x=None)

        with pytest.raises(SolverError) as exc_info:
            allocator.allocate(three_fund_model)

        assert exc_info.value.status == 4

    @patch("fund_allocator.portfolio.allocator.milp")
    def test_limit_reached(self, mock_milp, allocator, three_fund_model):
        mock_milp.return_value = SimpleNamespace(status=1, message="Time limit reached.", x=None)

        with pytest.raises(AllocationTimeout, match="limit reached"):
            allocator.allocate(three_fund_model)


class TestPurchasePlan:
    """Tests for plan-derived values."""

    @pytest.fixture
    def plan(self):
        funds = (
            Fund("A", 10, 0.5, price=10.0),
            Fund("B", 5, 0.5, price=20.0),
        )
        return PurchasePlan(funds=funds, shares_to_buy=(5, 0))

    def test_costs(self, plan):
        assert plan.cost("A") == 50.0
        assert plan.cost("B") == 0.0
        assert plan.total_cost == 50.0

    def test_new_total_value(self, plan):
        assert plan.new_total_value == 250.0

    def test_resulting_proportions(self, plan):
        proportions = plan.resulting_proportions()
        assert proportions["A"] == pytest.approx(0.6)
        assert proportions["B"] == pytest.approx(0.4)

    def test_deviation(self, plan):
        assert plan.deviation == pytest.approx(0.2)

    def test_as_dict(self, plan):
        assert plan.as_dict() == {"A": 5, "B": 0}

    def test_to_dict(self, plan):
        data = plan.to_dict()
        assert data["total_cost"] == 50.0
        assert data["purchases"][0]["symbol"] == "A"
        assert data["purchases"][0]["shares_to_buy"] == 5

    def test_unknown_symbol(self, plan):
        with pytest.raises(KeyError):
            plan.shares_for("C")

    def test_from_settings(self):
        allocator = Allocator.from_settings({"solver": {"tolerance": 1e-6, "max_iterations": 5}})
        assert allocator.config.tolerance == 1e-6
        assert allocator.config.max_iterations == 5
        assert allocator.config.time_limit_seconds == 30.0
