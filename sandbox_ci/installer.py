"""Bootstrap package installation with bounded retries.

Package mirrors used by fresh containers are frequently flaky, so the
download step is retried with a growing delay. Downloading and installing
are split: once ``yum --downloadonly`` has populated the cache, the real
install runs from cache only and is not retried.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .clock import Clock, SystemClock
from .errors import InstallError
from .log import RunLog
from .retry import linear_delay, retry
from .sandbox import ExecResult, Sandbox, execute

DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_STEP_SECONDS = 5.0

# Packages whose presence is checked by capability rather than rpm database.
PROBES: Dict[str, List[str]] = {
    "tar": ["tar", "--version"],
    "git": ["git", "--version"],
    "python-argparse": ["python", "-c", "import argparse"],
}


@dataclass
class InstallResult:
    """Result of a bootstrap installation."""

    success: bool
    installed_packages: List[str]
    skipped_packages: List[str]
    attempts: int = 0
    delays: List[float] = field(default_factory=list)


class PackageInstaller:
    """Installs packages inside a sandbox, retrying the download pass."""

    def __init__(
        self,
        sb: Sandbox,
        *,
        clock: Optional[Clock] = None,
        log: Optional[RunLog] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        step_seconds: float = DEFAULT_STEP_SECONDS,
    ):
        """Initialize the installer.

        Args:
            sb: Live sandbox to install into (as root).
            clock: Used for backoff sleeps.
            log: Run log for progress output.
            max_attempts: Download attempts before giving up.
            step_seconds: Backoff step; the delay after attempt n is n * step.
        """
        self.sb = sb
        self.clock = clock or SystemClock()
        self.log = log or RunLog()
        self.max_attempts = max_attempts
        self.step_seconds = step_seconds

    def _run(self, argv: List[str]) -> ExecResult:
        self.log.command(argv)
        return execute(self.sb, argv)

    def probe(self, package: str) -> bool:
        """Return True when ``package`` is already satisfied in the sandbox."""
        argv = PROBES.get(package, ["rpm", "-q", package])
        return self._run(argv).ok

    def missing(self, packages: Iterable[str]) -> List[str]:
        wanted = sorted(set(packages))
        return [pkg for pkg in wanted if not self.probe(pkg)]

    def install(self, packages: Iterable[str]) -> InstallResult:
        """Install whatever part of ``packages`` is not yet present.

        Raises:
            InstallError: When every download attempt failed, or the cached
                install itself failed.
        """
        wanted = sorted(set(packages))
        todo = self.missing(wanted)
        skipped = [pkg for pkg in wanted if pkg not in todo]
        if not todo:
            self.log.info("BOOTSTRAP", "All prerequisites already present")
            return InstallResult(success=True, installed_packages=[], skipped_packages=skipped)

        self.log.info("BOOTSTRAP", f"Installing: {' '.join(todo)}")
        last: List[ExecResult] = []

        def download(attempt: int) -> bool:
            result = self._run(["yum", "-y", "install", "--downloadonly"] + todo)
            last[:] = [result]
            self.log.event({
                "phase": "bootstrap_download",
                "attempt": attempt,
                "exit_code": result.exit_code,
            })
            return result.ok

        def report(attempt: int, delay: float) -> None:
            self.log.warn(
                "BOOTSTRAP",
                f"Download attempt {attempt}/{self.max_attempts} failed; retrying in {delay:g}s",
            )

        outcome = retry(
            download,
            self.max_attempts,
            linear_delay(self.step_seconds),
            clock=self.clock,
            on_failure=report,
        )
        if not outcome.ok:
            raise InstallError(
                f"Package download failed after {outcome.attempts} attempts",
                output=last[0].output if last else "",
                attempts=outcome.attempts,
            )

        result = self._run(["yum", "-y", "-C", "install"] + todo)
        if not result.ok:
            raise InstallError(
                "Installing downloaded packages failed",
                output=result.output,
                attempts=outcome.attempts,
            )

        self.log.info("BOOTSTRAP", f"Installed after {outcome.attempts} attempt(s)")
        return InstallResult(
            success=True,
            installed_packages=todo,
            skipped_packages=skipped,
            attempts=outcome.attempts,
            delays=outcome.delays,
        )
