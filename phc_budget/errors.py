"""Exception and warning types raised by the budget pipeline stages."""


class BudgetPipelineError(Exception):
    """Base class for every pipeline-specific error."""


class DivisionByZeroError(BudgetPipelineError, ZeroDivisionError):
    """A population total used as a divisor is zero."""


# Recoverable conditions.  They double as warning categories so callers can
# filter them or escalate them with ``warnings.simplefilter("error", ...)``.


class ConfigurationRangeError(BudgetPipelineError, UserWarning):
    """A policy parameter was outside its valid band and has been clamped."""


class MissingJoinKeyError(BudgetPipelineError, UserWarning):
    """A facility or district code was absent from a join table."""


class RootFindingNonconvergenceError(BudgetPipelineError, UserWarning):
    """The rebalancing root was approximated by a linear scan."""
