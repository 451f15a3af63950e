"""Exceptions raised while validating portfolios and computing purchase plans."""


class ValidationError(Exception):
    """Raised when portfolio input is unusable. Collects every problem found."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(f"Portfolio validation failed: {'; '.join(errors)}")


class AllocatorError(Exception):
    """Base class for failures while computing a purchase plan."""


class InvalidInput(AllocatorError, ValueError):
    """A price is missing, zero or non-finite when it is needed."""


class Infeasible(AllocatorError):
    """The solver found no plan satisfying the constraints."""


class AllocationTimeout(AllocatorError, TimeoutError):
    """The search exceeded its time or iteration budget."""

    def __init__(self, message: str, elapsed: float = 0.0, iterations: int = 0):
        self.elapsed = elapsed
        self.iterations = iterations
        super().__init__(message)


class SolverError(AllocatorError):
    """The solver stopped with a status other than optimal."""

    def __init__(self, message: str, status: int = -1):
        self.status = status
        super().__init__(message)
