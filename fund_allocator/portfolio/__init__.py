"""Portfolio model and allocation optimizer."""

from .allocator import Allocator, AllocatorConfig, PurchasePlan
from .exceptions import (
    AllocationTimeout,
    AllocatorError,
    Infeasible,
    InvalidInput,
    SolverError,
    ValidationError,
)
from .model import Fund, PortfolioModel

__all__ = [
    "Allocator",
    "AllocatorConfig",
    "PurchasePlan",
    "Fund",
    "PortfolioModel",
    "AllocatorError",
    "AllocationTimeout",
    "Infeasible",
    "InvalidInput",
    "SolverError",
    "ValidationError",
]
