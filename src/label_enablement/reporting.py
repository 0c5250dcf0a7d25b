from __future__ import annotations

import json
import sys
import traceback
from typing import Optional, TextIO

from .models import STEP_DESCRIPTIONS, RunReport, StepName, StepOutcome, StepStatus

MARKERS = {
    StepStatus.SUCCEEDED: "[+]",
    StepStatus.SKIPPED_NO_CHANGE: "[=]",
    StepStatus.FAILED: "[-]",
}


class ConsoleReporter:
    """Human-readable progress markers for operators watching the run."""

    def __init__(self, stream: Optional[TextIO] = None):
        self._stream = stream

    @property
    def stream(self) -> TextIO:
        # Resolved per write so a transcript tee installed later is honoured.
        return self._stream or sys.stdout

    def _print(self, text: str) -> None:
        print(text, file=self.stream, flush=True)

    def step_started(self, step: StepName) -> None:
        self._print(f"[*] {STEP_DESCRIPTIONS[step]}...")

    def step_finished(self, outcome: StepOutcome) -> None:
        text = f"{MARKERS[outcome.status]} {STEP_DESCRIPTIONS[outcome.step]}: {outcome.status.value}"
        if outcome.detail:
            text += f" ({outcome.detail})"
        self._print(text)

    def run_finished(self, report: RunReport) -> None:
        error = report.error
        if error is not None:
            step = report.failed_step.value if report.failed_step else "?"
            self._print(f"[-] Run failed at step {step}: {error}")
            self._print("".join(traceback.format_exception(type(error), error, error.__traceback__)))
        else:
            self._print("[+] Sensitivity label enablement completed")
        self._print(json.dumps(report.summary(), indent=2))
