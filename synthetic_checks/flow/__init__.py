"""
Browser flow package: observer, driver, cleanup and run orchestration.
"""

from synthetic_checks.flow.cleanup import CleanupCoordinator, cleanup_scope
from synthetic_checks.flow.context import RunContext
from synthetic_checks.flow.driver import FlowDriver, QuizSelectors
from synthetic_checks.flow.observer import NetworkObserver
from synthetic_checks.flow.run import RunResult, evaluate_checkpoints, execute_flow_run

__all__ = [
    "CleanupCoordinator",
    "cleanup_scope",
    "RunContext",
    "FlowDriver",
    "QuizSelectors",
    "NetworkObserver",
    "RunResult",
    "evaluate_checkpoints",
    "execute_flow_run",
]
