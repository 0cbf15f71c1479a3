"""
Exceptions and warnings raised by `ddpcontrol`. Integration and numerical
failures are recoverable inside the solver (bounded retries) and only surface
to the caller as a failed `DDPSolution`; configuration errors are raised
directly, before any iteration is performed.
"""


class ConfigurationError(ValueError):
    """Malformed or inconsistent solver settings."""


class IntegrationFailure(RuntimeError):
    """The ODE integrator could not satisfy its error tolerance at the minimum
    time step, or exceeded the maximum number of integration steps."""
    def __init__(self, message, t=None):
        super().__init__(message)
        self.t = t
        """float or None. Time at which integration stopped."""


class NumericalInstability(RuntimeError):
    """The value function Hessian or the input Hessian of the Riccati
    recursion lost positive (semi-)definiteness."""
    def __init__(self, message, t=None):
        super().__init__(message)
        self.t = t
        """float or None. Time of the offending sample."""


class ConstraintInfeasible(RuntimeWarning):
    """The state constraint ISE fails to decrease despite penalty escalation.
    Issued as a warning, never fatal."""
