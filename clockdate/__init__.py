version="0.3.0"
## Errors raised by clockdate. MalformedTreeError, InfeasibleConstraintError and
## ConfigurationError are due to input data or options that do not fit the base
## assumptions and are raised before any optimization starts. Convergence problems
## are not fatal: they are reported as ConvergenceWarning attached to the result.
class ClockDateError(Exception):
    """
    ClockDateError class
    Parent class for more specific errors
    Raised when clockdate is used incorrectly or with invalid input
    """
    pass

class MalformedTreeError(ClockDateError):
    """MalformedTreeError class raised for bad topology, branch lengths or leaf labels"""
    pass

class InfeasibleConstraintError(ClockDateError):
    """InfeasibleConstraintError class raised when sample times can't be satisfied"""
    pass

class ConfigurationError(ClockDateError):
    """ConfigurationError class raised for invalid option values"""
    pass

class ReplicateFailure(ClockDateError):
    """
    ReplicateFailure records a bootstrap replicate that could not be used,
    either because its optimization did not converge or because it raised.
    Failures are collected and reported by the bootstrap, never raised to the caller.
    """
    def __init__(self, index, reason):
        super(ReplicateFailure, self).__init__("replicate %d failed: %s"%(index, reason))
        self.index = index
        self.reason = reason

    def __reduce__(self):
        return (ReplicateFailure, (self.index, self.reason))

class ConvergenceWarning(UserWarning):
    """ConvergenceWarning is attached to fits whose optimizer did not meet the tolerance"""
    pass


from .tree_model import IndexedTree
from .sample_times import SampleTime, TimeConstraints
from .clock_models import StrictClock, RelaxedClock, make_clock_model, ClockObjective
from .treeregression import TreeRegression
from .optimizer import fit
from .timetree_fit import TimeTreeFit
from .diagnostics import outlier_tips, relaxed_clock_test, residual_filter, root_to_tip
from .bootstrap import parametric_bootstrap, BootstrapResult
from .clockdater import ClockDater
from .config import DatingOptions
from .argument_parser import make_parser
