from mergewatch.sweep.evaluator import should_merge
from mergewatch.sweep.orchestrator import Sweeper, decruft, run_sweep
from mergewatch.sweep.retry import RetryCoordinator
from mergewatch.sweep.types import CIHost, CodeHost, ScopeResult, SweepResult

__all__ = [
    "CIHost",
    "CodeHost",
    "RetryCoordinator",
    "ScopeResult",
    "SweepResult",
    "Sweeper",
    "decruft",
    "run_sweep",
    "should_merge",
]
