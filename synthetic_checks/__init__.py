"""
Synthetic Monitoring Harness.

This package continuously verifies a live deployment from the outside,
the way a real user would reach it.

Key Features:
- Shallow and deep health probes with dependency aggregation
- Catalog and smart-selection API regression checks
- Browser-driven onboarding flow with network observation
- Guaranteed, exactly-once cleanup of guest sessions
- JSON/markdown run reports for triage
"""
