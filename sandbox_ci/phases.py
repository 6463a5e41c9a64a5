"""Validation phases run inside the sandbox.

The catalog and its order are fixed. A failing phase is counted and
reported, and the remaining phases still run.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional

from .log import RunLog
from .sandbox import Sandbox, execute


class Phase(Enum):
    """Phase catalog, in execution order."""

    DEPS = "deps"
    """Install the project's build and test dependencies."""

    STATUS = "status"
    """Sanity probe that the checkout succeeded; always runs."""

    UNIT_TEST = "unit_test"
    """Run the unit test suite."""

    SRPM = "srpm"
    """Build the source package."""

    RPM = "rpm"
    """Build the binary package."""

    ARTIFACTS = "artifacts"
    """Copy build outputs back to the host (see artifacts.py)."""


RUNNER_ORDER = [Phase.DEPS, Phase.STATUS, Phase.UNIT_TEST, Phase.SRPM, Phase.RPM]

PHASE_TITLES = {
    Phase.DEPS: "dependency install",
    Phase.STATUS: "status check",
    Phase.UNIT_TEST: "unit tests",
    Phase.SRPM: "source package build",
    Phase.RPM: "binary package build",
    Phase.ARTIFACTS: "artifact collection",
}


@dataclass
class PhaseResult:
    phase: Phase
    ok: bool
    exit_code: int
    output: str = ""


@dataclass
class PhaseSummary:
    """Results of every phase that ran plus the shared error counter."""

    results: List[PhaseResult] = field(default_factory=list)
    errors: int = 0

    def record(self, result: PhaseResult) -> None:
        self.results.append(result)
        if not result.ok:
            self.errors += 1

    @property
    def failed(self) -> List[Phase]:
        return [r.phase for r in self.results if not r.ok]

    def to_dict(self) -> Dict[str, bool]:
        return {r.phase.value: r.ok for r in self.results}


class PhaseRunner:
    """Runs the enabled phases in the injected tree as the unprivileged user."""

    def __init__(
        self,
        sb: Sandbox,
        user: str,
        tree_dir: str,
        commands: Dict[str, List[str]],
        log: Optional[RunLog] = None,
    ):
        self.sb = sb
        self.user = user
        self.tree_dir = tree_dir
        self.commands = commands
        self.log = log or RunLog()

    def run_phase(self, phase: Phase) -> PhaseResult:
        argv = self.commands[phase.value]
        title = PHASE_TITLES[phase]
        self.log.info("PHASE", f"Running {title}: {' '.join(argv)}")
        self.log.command(argv, self.user)
        result = execute(self.sb, argv, user=self.user, workdir=self.tree_dir)
        self.log.output(result.output, ok=result.ok)
        if result.ok:
            self.log.info("PHASE", f"{title} passed")
        else:
            self.log.error("PHASE", f"{title} failed (exit {result.exit_code})")
        self.log.event({"phase": phase.value, "ok": result.ok, "exit_code": result.exit_code})
        return PhaseResult(phase=phase, ok=result.ok, exit_code=result.exit_code, output=result.output)

    def run(self, enabled: Iterable[Phase], summary: Optional[PhaseSummary] = None) -> PhaseSummary:
        """Run ``enabled`` phases in catalog order; the status check always runs.

        Args:
            enabled: Phases requested by the caller. Order is ignored.
            summary: Existing summary to accumulate into.

        Returns:
            The summary with one result per phase that ran.
        """
        wanted = set(enabled) | {Phase.STATUS}
        summary = summary if summary is not None else PhaseSummary()
        for phase in RUNNER_ORDER:
            if phase in wanted:
                summary.record(self.run_phase(phase))
        return summary
