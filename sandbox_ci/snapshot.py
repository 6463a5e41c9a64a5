"""Read-only view of the caller's git working tree.

Everything here runs against the host repository. The snapshot is taken
once per run: the commit, the ref name and the local modification set are
resolved together so the diff always matches the commit that gets checked
out inside the sandbox.
"""

from __future__ import annotations

import os
import subprocess
import tarfile
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union


class SnapshotError(RuntimeError):
    """Raised when the host repository cannot be inspected."""


def _git(args: List[str], cwd: str, *, binary: bool = False, timeout_sec: int = 120) -> Tuple[int, Union[str, bytes], str]:
    """Run a git command on the host and capture its output.

    Returns:
        A tuple of (exit_code, stdout, stderr); stdout is bytes when ``binary``.
    """
    try:
        p = subprocess.run(
            ["git"] + args,
            cwd=cwd,
            shell=False,
            capture_output=True,
            timeout=timeout_sec,
        )
    except FileNotFoundError as e:
        raise SnapshotError("git is not installed on this host") from e
    out = p.stdout if binary else p.stdout.decode("utf-8", errors="replace").strip()
    return p.returncode, out, p.stderr.decode("utf-8", errors="replace").strip()


def _git_ok(args: List[str], cwd: str, what: str) -> str:
    code, out, err = _git(args, cwd)
    if code != 0:
        raise SnapshotError(f"Could not {what}: {err or out}")
    return out


@dataclass(frozen=True)
class Snapshot:
    """The host working tree as it will be reproduced in the sandbox."""

    toplevel: str
    git_dir: str
    ref: str  # branch or tag name, or the commit hash when detached
    commit: str
    is_branch: bool
    changes: Optional[bytes] = None  # diff against commit, only when dirty

    @property
    def dirty(self) -> bool:
        return self.changes is not None

    @property
    def project(self) -> str:
        return os.path.basename(self.toplevel.rstrip(os.sep)) or "project"


def resolve_git_dir(repo_dir: str) -> str:
    """Return the metadata directory holding the repository's full history.

    A linked worktree's own git dir (``.git/worktrees/<name>``) only holds
    that worktree's HEAD and index, so the shared common dir is used instead.
    """
    git_dir = _git_ok(["rev-parse", "--absolute-git-dir"], repo_dir, "locate the git directory")
    if "worktrees" in os.path.normpath(git_dir).split(os.sep):
        common = _git_ok(["rev-parse", "--git-common-dir"], repo_dir, "locate the main git directory")
        git_dir = os.path.normpath(os.path.join(repo_dir, common))
    return git_dir


def resolve_ref(repo_dir: str) -> Tuple[str, str, bool]:
    """Return (ref, commit, is_branch) for HEAD.

    The branch name is preferred; a detached HEAD falls back to the hash.
    """
    commit = _git_ok(["rev-parse", "--verify", "HEAD"], repo_dir, "resolve HEAD")
    code, branch, _ = _git(["symbolic-ref", "-q", "--short", "HEAD"], repo_dir)
    if code == 0 and branch:
        return branch, commit, True
    return commit, commit, False


def local_changes(repo_dir: str, commit: str) -> Optional[bytes]:
    """Return the diff between ``commit`` and the working tree, or None if clean.

    Uses ``diff-index`` rather than ``diff`` so the user's diff settings
    (noprefix, color, external drivers, textconv) never reach the patch.
    """
    # diff-index trusts the stat cache; refresh it so touched files don't count.
    _git(["update-index", "-q", "--refresh"], repo_dir)
    code, _, err = _git(["diff-index", "--quiet", commit, "--"], repo_dir)
    if code == 0:
        return None
    if code != 1:
        raise SnapshotError(f"Could not compare working tree with {commit}: {err}")
    code, diff, err = _git(
        ["diff-index", "-p", "--binary", "--full-index", "--no-ext-diff", "--no-textconv", commit, "--"],
        repo_dir,
        binary=True,
    )
    if code != 0:
        raise SnapshotError(f"Could not compute local changes: {err}")
    return diff


def find_toplevel(repo_dir: str) -> str:
    if not os.path.isdir(repo_dir):
        raise SnapshotError(f"{repo_dir} is not a directory")
    return _git_ok(["rev-parse", "--show-toplevel"], repo_dir, "find the repository top level")


def take_snapshot(repo_dir: str) -> Snapshot:
    """Inspect ``repo_dir`` and return its Snapshot.

    Raises:
        SnapshotError: If ``repo_dir`` is not a git work tree or HEAD is unborn.
    """
    toplevel = find_toplevel(repo_dir)
    git_dir = resolve_git_dir(toplevel)
    ref, commit, is_branch = resolve_ref(toplevel)
    return Snapshot(
        toplevel=toplevel,
        git_dir=git_dir,
        ref=ref,
        commit=commit,
        is_branch=is_branch,
        changes=local_changes(toplevel, commit),
    )


def pack_git_dir(snapshot: Snapshot, dest_dir: str) -> str:
    """Write the metadata directory to a tar archive in ``dest_dir``.

    Archive members are relative to the metadata directory, so the archive
    unpacks directly into a fresh ``.git``. Linked worktree records point at
    host paths and are left out.
    """
    path = os.path.join(dest_dir, "git-metadata.tar")
    with tarfile.open(path, "w") as tar:
        for entry in sorted(os.listdir(snapshot.git_dir)):
            if entry == "worktrees":
                continue
            tar.add(os.path.join(snapshot.git_dir, entry), arcname=entry)
    return path
