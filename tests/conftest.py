"""Shared fakes for sandbox-ci tests."""

import os
import shutil
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

import pytest

from sandbox_ci.clock import FrozenClock
from sandbox_ci.log import RunLog
from sandbox_ci.sandbox import ExecResult, Sandbox

requires_git = pytest.mark.skipif(
    shutil.which("git") is None or shutil.which("tar") is None,
    reason="git and tar are required",
)


def ok(stdout: str = "") -> ExecResult:
    return ExecResult(ok=True, exit_code=0, stdout=stdout, stderr="")


def fail(exit_code: int = 1, stderr: str = "boom") -> ExecResult:
    return ExecResult(ok=False, exit_code=exit_code, stdout="", stderr=stderr)


@dataclass
class Call:
    argv: List[str]
    user: Optional[str] = None
    workdir: Optional[str] = None
    env: Optional[dict] = None
    stdin_path: Optional[str] = None
    input_bytes: Optional[bytes] = None


class ScriptedRuntime:
    """Runtime double that records calls and answers through ``responder``.

    ``responder(call)`` returns an ExecResult, or None for success.
    """

    def __init__(self, responder: Optional[Callable[[Call], Optional[ExecResult]]] = None):
        self.responder = responder
        self.calls: List[Call] = []
        self.created: List[tuple] = []
        self.deleted: List[str] = []
        self.pulled: List[tuple] = []
        self.create_result = ok()
        self.delete_result = ok()
        self.pull_result = ok()

    def create(self, image, name):
        self.created.append((image, name))
        return self.create_result

    def exec(self, name, argv, *, user=None, workdir=None, env=None,
             stdin_path=None, input_bytes=None, timeout_sec=None):
        call = Call(list(argv), user, workdir, env, stdin_path, input_bytes)
        self.calls.append(call)
        if self.responder is not None:
            result = self.responder(call)
            if result is not None:
                return result
        return ok()

    def delete(self, name):
        self.deleted.append(name)
        return self.delete_result

    def pull_file(self, name, path, dest_dir):
        self.pulled.append((path, dest_dir))
        return self.pull_result

    def argvs(self) -> List[List[str]]:
        return [c.argv for c in self.calls]


class LocalRuntime:
    """Runtime double that runs argv on the host under a private root.

    Absolute sandbox paths (workdir, HOME) are mapped below ``root``.
    """

    def __init__(self, root: str):
        self.root = root

    def _map(self, path: str) -> str:
        return os.path.join(self.root, path.lstrip("/"))

    def create(self, image, name):
        os.makedirs(self.root, exist_ok=True)
        return ok()

    def exec(self, name, argv, *, user=None, workdir=None, env=None,
             stdin_path=None, input_bytes=None, timeout_sec=None):
        cwd = self._map(workdir or "/")
        os.makedirs(cwd, exist_ok=True)
        run_env = dict(os.environ)
        for key, value in (env or {}).items():
            run_env[key] = self._map(value) if key == "HOME" else value
        run_env["GIT_CONFIG_NOSYSTEM"] = "1"
        kwargs = {}
        if stdin_path is not None:
            kwargs["stdin"] = open(stdin_path, "rb")
        else:
            kwargs["input"] = input_bytes if input_bytes is not None else b""
        try:
            p = subprocess.run(argv, cwd=cwd, env=run_env, capture_output=True, **kwargs)
        finally:
            if "stdin" in kwargs:
                kwargs["stdin"].close()
        return ExecResult(
            ok=p.returncode == 0,
            exit_code=p.returncode,
            stdout=p.stdout.decode("utf-8", errors="replace"),
            stderr=p.stderr.decode("utf-8", errors="replace"),
        )

    def delete(self, name):
        shutil.rmtree(self.root, ignore_errors=True)
        return ok()

    def pull_file(self, name, path, dest_dir):
        shutil.copy(self._map(path), dest_dir)
        return ok()


GIT_ENV = {
    "GIT_AUTHOR_NAME": "Test",
    "GIT_AUTHOR_EMAIL": "test@example.com",
    "GIT_COMMITTER_NAME": "Test",
    "GIT_COMMITTER_EMAIL": "test@example.com",
    "GIT_CONFIG_NOSYSTEM": "1",
}


def git(cwd, *args) -> str:
    env = dict(os.environ)
    env.update(GIT_ENV)
    p = subprocess.run(["git"] + list(args), cwd=str(cwd), env=env,
                       capture_output=True, text=True, check=True)
    return p.stdout.strip()


@pytest.fixture
def git_repo(tmp_path):
    """A repository named ``project`` on branch ``main`` with two commits."""
    repo = tmp_path / "project"
    repo.mkdir()
    git(repo, "init", "-q")
    git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
    (repo / "hello.txt").write_text("hello\n")
    (repo / "Makefile").write_text("check:\n\ttrue\n")
    git(repo, "add", ".")
    git(repo, "commit", "-q", "-m", "first")
    (repo / "hello.txt").write_text("hello world\n")
    git(repo, "commit", "-q", "-am", "second")
    return repo


@pytest.fixture
def frozen_clock():
    return FrozenClock(datetime(2024, 1, 1, tzinfo=timezone.utc))


@pytest.fixture
def quiet_log():
    return RunLog(verbosity=0)


@pytest.fixture
def scripted():
    return ScriptedRuntime()


@pytest.fixture
def sandbox(scripted):
    return Sandbox(name="sandbox-ci-test", image="centos:7", runtime=scripted, live=True)
