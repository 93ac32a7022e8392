#!/usr/bin/env python3
"""
Run one synthetic check outside pytest, for cron or a scheduler.

Usage:
    python run_synthetic_check.py              # probes + onboarding flow
    python run_synthetic_check.py --probes-only

The audio service checks run too when SYNTHMON_AUDIO_SERVICE_URL is set.

Exit codes: 0 pass, 1 fail, 2 degraded.
"""

from __future__ import annotations

import argparse
import sys
from datetime import UTC, datetime

import httpx
from playwright.sync_api import sync_playwright

from synthetic_checks.config import get_settings
from synthetic_checks.exceptions import MonitorError
from synthetic_checks.flow.run import execute_flow_run
from synthetic_checks.logging import get_logger, setup_logging
from synthetic_checks.models import Verdict
from synthetic_checks.probes.audio_service import AudioServiceProbe, require_audio_service
from synthetic_checks.probes.health import ProbeRunner
from synthetic_checks.reporters.run_report import RunReport


logger = get_logger("runner")

EXIT_CODES = {Verdict.PASS: 0, Verdict.FAIL: 1, Verdict.DEGRADED: 2}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--probes-only", action="store_true", help="skip the browser flow")
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(settings)
    started_at = datetime.now(UTC)

    with httpx.Client(follow_redirects=True) as client:
        runner = ProbeRunner(client, settings)
        reports = []
        probe_errors = []
        for probe in (runner.shallow_probe, runner.deep_probe):
            try:
                reports.append(probe())
            except MonitorError as e:
                logger.error(f"{e.error_code}: {e.message}")
                probe_errors.append(e.to_dict())

        if settings.audio_origin:
            audio = AudioServiceProbe(client, settings)
            try:
                deep = audio.deep_probe()
                reports.append(deep.report)
                require_audio_service(deep, audio.basic_probe(), settings)
            except MonitorError as e:
                logger.error(f"{e.error_code}: {e.message}")
                probe_errors.append(e.to_dict())

        if args.probes_only:
            report = RunReport.from_probes(reports, probe_errors, started_at)
        else:
            with sync_playwright() as p:
                browser = p.chromium.launch(headless=settings.headless)
                try:
                    page = browser.new_context().new_page()
                    result = execute_flow_run(page, client, settings, health_reports=reports)
                finally:
                    browser.close()
            report = RunReport.from_result(result)
            report.probe_errors = probe_errors
            if probe_errors:
                report.verdict = Verdict.FAIL
                report.failure_reasons.extend(e["message"] for e in probe_errors)

    path = report.save(settings.report_dir)
    print(f"{report.verdict.value.upper()}: {report.to_dict()['summary']}")
    print(f"Report: {path}")
    return EXIT_CODES[report.verdict]


if __name__ == "__main__":
    sys.exit(main())
