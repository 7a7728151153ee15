"""
Engine Exceptions
=================
Structural and input-contract failures surfaced to the caller.

Market extremity is never an error: extreme drawdowns, PD > 1, infinite
LTV and inconsistent correlation triples are represented by clamps and
sentinel values.  Only malformed inputs raise.
"""


class RiskEngineError(Exception):
    """Base class for all engine errors."""


class InvalidCollateralError(RiskEngineError, ValueError):
    """Collateral quantity is negative or not a finite number."""


class InvalidLoanError(RiskEngineError, ValueError):
    """Loan terms or counterparty data violate the loan contract."""


class PortfolioValidationError(RiskEngineError, ValueError):
    """Portfolio is structurally malformed (duplicate ids, bad capital)."""


class InvalidPriceError(RiskEngineError, ValueError):
    """A required asset price is missing, negative or not finite."""


class ScenarioValidationError(RiskEngineError, ValueError):
    """A scenario parameter is outside its documented range."""


class UnknownScenarioError(RiskEngineError, KeyError):
    """No scenario is registered under the requested id."""


class SimulationAborted(RiskEngineError):
    """Raised when a caller-supplied abort check stops a simulation."""

    def __init__(self, completed_trials: int, num_trials: int):
        self.completed_trials = completed_trials
        self.num_trials = num_trials
        super().__init__(
            f"Simulation aborted after {completed_trials} of {num_trials} trials"
        )
