"""
Run reporters package.
"""

from synthetic_checks.reporters.run_report import RunReport

__all__ = [
    "RunReport",
]
