"""Sandbox runtime and remote execution for sandbox-ci.

A sandbox is a disposable container created fresh for each run. The runtime
is driven through the ``docker`` CLI with argv lists, so arbitrary arguments
(spaces, quotes, control characters) reach the remote process intact without
any shell quoting or encoding envelope.
"""

from __future__ import annotations

import os
import subprocess
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from .errors import RuntimeUnavailableError

ROOT_USER = "root"
NAME_PREFIX = "sandbox-ci"


@dataclass
class ExecResult:
    """Result from a runtime command execution."""
    ok: bool
    exit_code: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def output(self) -> str:
        return self.stdout + self.stderr


class Runtime(Protocol):
    def create(self, image: str, name: str) -> ExecResult:
        ...

    def exec(
        self,
        name: str,
        argv: List[str],
        *,
        user: Optional[str] = None,
        workdir: Optional[str] = None,
        env: Optional[dict] = None,
        stdin_path: Optional[str] = None,
        input_bytes: Optional[bytes] = None,
        timeout_sec: Optional[int] = None,
    ) -> ExecResult:
        ...

    def delete(self, name: str) -> ExecResult:
        ...

    def pull_file(self, name: str, path: str, dest_dir: str) -> ExecResult:
        ...


@dataclass
class Sandbox:
    """A disposable container owned by exactly one run."""

    name: str
    image: str
    runtime: Runtime = field(repr=False)
    live: bool = False
    keep: bool = False


def generate_name(prefix: str = NAME_PREFIX) -> str:
    """Return a fresh sandbox name; randomized so concurrent runs never collide."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def home_dir(user: Optional[str]) -> str:
    if not user or user == ROOT_USER:
        return "/root"
    return f"/home/{user}"


def _run(
    argv: List[str],
    *,
    stdin_path: Optional[str] = None,
    input_bytes: Optional[bytes] = None,
    timeout_sec: Optional[int] = None,
) -> ExecResult:
    """Run a local command and capture its output.

    Output is decoded leniently since remote commands may print anything.
    """
    try:
        if stdin_path is not None:
            with open(stdin_path, "rb") as f:
                p = subprocess.run(
                    argv,
                    shell=False,
                    stdin=f,
                    capture_output=True,
                    timeout=timeout_sec,
                )
        else:
            p = subprocess.run(
                argv,
                shell=False,
                input=input_bytes,
                stdin=None if input_bytes is not None else subprocess.DEVNULL,
                capture_output=True,
                timeout=timeout_sec,
            )
    except subprocess.TimeoutExpired:
        return ExecResult(
            ok=False,
            exit_code=-1,
            stdout="",
            stderr=f"Command timed out after {timeout_sec}s",
            timed_out=True,
        )
    except FileNotFoundError as e:
        raise RuntimeUnavailableError(f"Cannot execute {argv[0]!r}: {e}") from e

    return ExecResult(
        ok=p.returncode == 0,
        exit_code=p.returncode,
        stdout=p.stdout.decode("utf-8", errors="replace"),
        stderr=p.stderr.decode("utf-8", errors="replace"),
    )


class DockerRuntime:
    """Sandbox runtime backed by the docker CLI."""

    def __init__(self, docker_bin: str = "docker", default_timeout_sec: int = 3600):
        self.docker_bin = docker_bin
        self.default_timeout_sec = default_timeout_sec

    def create(self, image: str, name: str) -> ExecResult:
        return _run(
            [
                self.docker_bin, "run", "-d",
                "--name", name,
                "--hostname", name,
                image,
                "sleep", "infinity",
            ],
            timeout_sec=self.default_timeout_sec,
        )

    def exec(
        self,
        name: str,
        argv: List[str],
        *,
        user: Optional[str] = None,
        workdir: Optional[str] = None,
        env: Optional[dict] = None,
        stdin_path: Optional[str] = None,
        input_bytes: Optional[bytes] = None,
        timeout_sec: Optional[int] = None,
    ) -> ExecResult:
        cmd = [self.docker_bin, "exec"]
        if stdin_path is not None or input_bytes is not None:
            cmd.append("-i")
        if user:
            cmd.extend(["-u", user])
        if workdir:
            cmd.extend(["-w", workdir])
        for key, value in sorted((env or {}).items()):
            cmd.extend(["-e", f"{key}={value}"])
        cmd.append(name)
        cmd.extend(argv)
        return _run(
            cmd,
            stdin_path=stdin_path,
            input_bytes=input_bytes,
            timeout_sec=timeout_sec or self.default_timeout_sec,
        )

    def delete(self, name: str) -> ExecResult:
        return _run([self.docker_bin, "rm", "-f", name], timeout_sec=300)

    def pull_file(self, name: str, path: str, dest_dir: str) -> ExecResult:
        dest = os.path.join(dest_dir, os.path.basename(path))
        return _run([self.docker_bin, "cp", f"{name}:{path}", dest], timeout_sec=600)


def execute(
    sb: Sandbox,
    argv: List[str],
    *,
    user: Optional[str] = None,
    workdir: Optional[str] = None,
    stdin_path: Optional[str] = None,
    input_bytes: Optional[bytes] = None,
    timeout_sec: Optional[int] = None,
) -> ExecResult:
    """Run ``argv`` inside the sandbox and return its status and output.

    As root the command runs directly. For any other user it runs as that
    user with HOME set and, unless ``workdir`` is given, inside the user's
    home directory. A non-zero exit status is returned, never raised.
    """
    if not argv:
        raise ValueError("argv must not be empty")
    if not user or user == ROOT_USER:
        return sb.runtime.exec(
            sb.name,
            list(argv),
            workdir=workdir,
            stdin_path=stdin_path,
            input_bytes=input_bytes,
            timeout_sec=timeout_sec,
        )
    home = home_dir(user)
    return sb.runtime.exec(
        sb.name,
        list(argv),
        user=user,
        workdir=workdir or home,
        env={"HOME": home, "USER": user},
        stdin_path=stdin_path,
        input_bytes=input_bytes,
        timeout_sec=timeout_sec,
    )


def pull_file(sb: Sandbox, path: str, dest_dir: str) -> ExecResult:
    return sb.runtime.pull_file(sb.name, path, dest_dir)


def destroy_sandbox(sb: Sandbox) -> ExecResult:
    """Delete the container and mark the sandbox as no longer live."""
    result = sb.runtime.delete(sb.name)
    if result.ok:
        sb.live = False
    return result
