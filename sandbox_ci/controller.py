"""The sandbox-ci run lifecycle.

This module wires the pieces together for one run: provision a sandbox,
bootstrap it, inject the working tree, run the requested phases, optionally
collect artifacts, and always tear down. Each acquired resource (scratch
directory, sandbox) registers its release on an ExitStack at acquisition
time, so release happens in reverse order on every exit path, including
SIGINT/SIGTERM.
"""

from __future__ import annotations

import contextlib
import os
import shutil
import signal
import tempfile
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional

from .artifacts import collect_artifacts
from .clock import Clock, SystemClock, make_run_id
from .config import ProjectConfig, load_config, proxy_from_env
from .errors import SandboxCIError
from .injector import CodeInjector
from .installer import DEFAULT_MAX_ATTEMPTS, DEFAULT_STEP_SECONDS, PackageInstaller
from .log import RunLog
from .phases import Phase, PhaseSummary, PhaseRunner
from .provision import READY_ATTEMPTS, READY_INTERVAL_SEC, provision
from .sandbox import DockerRuntime, Runtime, Sandbox, destroy_sandbox, generate_name
from .snapshot import SnapshotError, find_toplevel, take_snapshot


@dataclass
class ControllerConfig:
    """Configuration for a single run."""

    version: str
    repo_dir: str = "."
    deps: bool = False
    unit_test: bool = False
    srpm: bool = False
    rpm: bool = False
    dirty: bool = False
    keep: bool = False
    artifacts: bool = False
    verbosity: int = 0
    image: Optional[str] = None
    config_path: Optional[str] = None
    log_dir: Optional[str] = None
    artifact_dir: Optional[str] = None
    proxy: Optional[str] = None  # None: taken from the environment
    install_max_attempts: int = DEFAULT_MAX_ATTEMPTS
    install_step_seconds: float = DEFAULT_STEP_SECONDS
    ready_attempts: int = READY_ATTEMPTS
    ready_interval_sec: float = READY_INTERVAL_SEC

    def enabled_phases(self) -> List[Phase]:
        flags = {
            Phase.DEPS: self.deps,
            Phase.UNIT_TEST: self.unit_test,
            Phase.SRPM: self.srpm,
            Phase.RPM: self.rpm,
        }
        return [phase for phase, on in flags.items() if on]


@dataclass
class RunContext:
    """State owned by one run; nothing here is shared between runs."""

    run_id: str
    sandbox: Optional[Sandbox] = None
    scratch_dir: Optional[str] = None
    keep: bool = False
    summary: PhaseSummary = field(default_factory=PhaseSummary)
    artifacts: List[str] = field(default_factory=list)
    fatal: Optional[str] = None
    fatal_output: str = ""


def _raise_interrupt(signum, frame) -> None:
    raise KeyboardInterrupt(f"received signal {signum}")


@contextlib.contextmanager
def signals_as_interrupts() -> Iterator[None]:
    """Turn SIGTERM/SIGHUP into KeyboardInterrupt so cleanup still runs."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return
    previous = {}
    for name in ("SIGTERM", "SIGHUP"):
        signum = getattr(signal, name, None)
        if signum is not None:
            previous[signum] = signal.signal(signum, _raise_interrupt)
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def _make_scratch(stack: contextlib.ExitStack, ctx: RunContext, log: RunLog) -> str:
    path = tempfile.mkdtemp(prefix="sandbox-ci-")
    ctx.scratch_dir = path

    def remove() -> None:
        shutil.rmtree(path, ignore_errors=True)
        log.event({"phase": "cleanup", "scratch_dir": path})

    stack.callback(remove)
    return path


def _teardown(sb: Sandbox, log: RunLog) -> None:
    if not sb.live:
        return
    if sb.keep:
        log.info("CLEANUP", f"Keeping sandbox {sb.name} (docker exec -it {sb.name} bash)")
        return
    log.info("CLEANUP", f"Deleting sandbox {sb.name}")
    try:
        result = destroy_sandbox(sb)
    except SandboxCIError as e:
        log.error("CLEANUP", f"Could not delete {sb.name}: {e}")
        return
    if not result.ok:
        log.error("CLEANUP", f"Could not delete {sb.name}", result.output)
    log.event({"phase": "cleanup", "sandbox": sb.name, "deleted": result.ok})


def _acquire_sandbox(
    stack: contextlib.ExitStack,
    ctx: RunContext,
    image: str,
    runtime: Runtime,
    log: RunLog,
) -> Sandbox:
    sb = Sandbox(name=generate_name(), image=image, runtime=runtime, keep=ctx.keep)
    ctx.sandbox = sb
    stack.callback(_teardown, sb, log)
    return sb


def _run_steps(
    cfg: ControllerConfig,
    ctx: RunContext,
    stack: contextlib.ExitStack,
    runtime: Runtime,
    clock: Clock,
    log: RunLog,
    environ: Mapping[str, str],
) -> None:
    toplevel = find_toplevel(cfg.repo_dir)
    project: ProjectConfig = load_config(toplevel, cfg.config_path)
    image = cfg.image or project.image_for(cfg.version)
    proxy = cfg.proxy if cfg.proxy is not None else proxy_from_env(environ)

    scratch = _make_scratch(stack, ctx, log)
    sb = _acquire_sandbox(stack, ctx, image, runtime, log)

    provision(
        sb,
        user=project.user,
        probe_host=project.probe_host,
        proxy=proxy,
        clock=clock,
        log=log,
        ready_attempts=cfg.ready_attempts,
        ready_interval_sec=cfg.ready_interval_sec,
    )

    PackageInstaller(
        sb,
        clock=clock,
        log=log,
        max_attempts=cfg.install_max_attempts,
        step_seconds=cfg.install_step_seconds,
    ).install(project.bootstrap_packages)

    snapshot = take_snapshot(toplevel)
    injected = CodeInjector(sb, project.user, scratch, log).inject(snapshot, dirty_mode=cfg.dirty)

    runner = PhaseRunner(sb, project.user, injected.tree_dir, project.phase_commands, log)
    runner.run(cfg.enabled_phases(), ctx.summary)

    if cfg.artifacts:
        collected = collect_artifacts(
            sb,
            project.user,
            injected.tree_dir,
            project.artifact_patterns,
            dest_dir=cfg.artifact_dir,
            log=log,
        )
        ctx.artifacts = collected.collected
        ctx.summary.record(collected.as_phase_result())


def _report(ctx: RunContext, log: RunLog) -> None:
    for phase in ctx.summary.failed:
        log.info("SUMMARY", f"FAILED: {phase.value}")
    if ctx.fatal:
        log.info("SUMMARY", f"Aborted: {ctx.fatal}")
    log.info("SUMMARY", f"{ctx.summary.errors} error(s)")


def run_controller(
    cfg: ControllerConfig,
    *,
    runtime: Optional[Runtime] = None,
    clock: Optional[Clock] = None,
    log: Optional[RunLog] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """Run one provision/inject/validate cycle and tear down.

    Args:
        cfg: The run configuration.
        runtime: Sandbox runtime; defaults to Docker.
        clock: Time source for backoff sleeps and log timestamps.
        log: Console/JSONL reporter.
        environ: Environment used for proxy discovery.

    Returns:
        A dictionary with ``ok``, ``exit_code`` (0 or 1), the error tally,
        per-phase outcomes and, on a fatal failure, ``error``/``output``.
    """
    clock = clock or SystemClock()
    log = log or RunLog(verbosity=cfg.verbosity, log_dir=cfg.log_dir, clock=clock)
    runtime = runtime or DockerRuntime()
    environ = os.environ if environ is None else environ

    run_id = make_run_id(
        clock=clock,
        seed_material={"version": cfg.version, "repo": os.path.abspath(cfg.repo_dir), "pid": os.getpid()},
    )
    ctx = RunContext(run_id=run_id, keep=cfg.keep)
    log.event({"phase": "run_header", "run_id": run_id, "cfg": dict(cfg.__dict__)})

    with signals_as_interrupts():
        with contextlib.ExitStack() as stack:
            try:
                _run_steps(cfg, ctx, stack, runtime, clock, log, environ)
            except SandboxCIError as e:
                ctx.fatal = str(e)
                ctx.fatal_output = e.output
                log.error("FATAL", str(e), e.output)
            except (SnapshotError, ValueError, OSError) as e:
                ctx.fatal = str(e)
                log.error("FATAL", str(e))
            except KeyboardInterrupt as e:
                ctx.fatal = f"Interrupted ({e})" if str(e) else "Interrupted"
                log.error("FATAL", ctx.fatal)

    _report(ctx, log)
    ok = ctx.fatal is None and ctx.summary.errors == 0
    result: Dict[str, Any] = {
        "ok": ok,
        "exit_code": 0 if ok else 1,
        "run_id": run_id,
        "errors": ctx.summary.errors,
        "sandbox": ctx.sandbox.name if ctx.sandbox else None,
        "kept": bool(ctx.sandbox and ctx.sandbox.live and ctx.keep),
        "phases": ctx.summary.to_dict(),
        "artifacts": list(ctx.artifacts),
    }
    if ctx.fatal:
        result["error"] = ctx.fatal
        result["output"] = ctx.fatal_output
    log.event({"phase": "result", **result})
    return result
