"""Transplant the host working tree into a sandbox.

The repository history travels as an archive of the git metadata directory
and is checked out inside the sandbox, so the sandbox tree is exactly the
resolved commit. Uncommitted local edits travel separately as a diff: applied
on top when dirty mode is requested, otherwise left next to the tree as a
sidecar file for inspection.
"""

import posixpath
from dataclasses import dataclass
from typing import List, Optional

from .errors import InjectionError
from .log import RunLog
from .sandbox import ExecResult, Sandbox, execute, home_dir
from .snapshot import Snapshot, pack_git_dir

SIDECAR_NAME = "uncommitted.diff"


@dataclass
class InjectResult:
    """Where the source ended up inside the sandbox."""

    tree_dir: str
    ref: str
    commit: str
    dirty: bool = False
    applied: bool = False
    sidecar_path: Optional[str] = None


class CodeInjector:
    """Copies a Snapshot into a sandbox as an unprivileged user."""

    def __init__(self, sb: Sandbox, user: str, scratch_dir: str, log: Optional[RunLog] = None):
        self.sb = sb
        self.user = user
        self.scratch_dir = scratch_dir
        self.log = log or RunLog()

    def _run(
        self,
        argv: List[str],
        *,
        workdir: Optional[str] = None,
        stdin_path: Optional[str] = None,
        input_bytes: Optional[bytes] = None,
    ) -> ExecResult:
        self.log.command(argv, self.user)
        return execute(
            self.sb,
            argv,
            user=self.user,
            workdir=workdir,
            stdin_path=stdin_path,
            input_bytes=input_bytes,
        )

    def _must(self, argv: List[str], what: str, **kwargs) -> ExecResult:
        result = self._run(argv, **kwargs)
        if not result.ok:
            raise InjectionError(f"Failed to {what}", output=result.output)
        return result

    def transfer_history(self, snapshot: Snapshot) -> str:
        """Unpack the repository metadata and check out the resolved commit.

        Returns:
            Absolute path of the checked-out tree inside the sandbox.
        """
        home = home_dir(self.user)
        tree_dir = posixpath.join(home, snapshot.project)
        git_dir = posixpath.join(snapshot.project, ".git")

        archive = pack_git_dir(snapshot, self.scratch_dir)
        self._must(["mkdir", "-p", git_dir], "create the repository directory")
        self._must(
            ["tar", "-xf", "-", "-C", git_dir],
            "unpack repository history",
            stdin_path=archive,
        )

        self._must(
            ["git", "config", "--bool", "core.bare", "false"],
            "convert the repository to a working repository",
            workdir=tree_dir,
        )
        self._must(
            ["git", "checkout", "-q", "-f", snapshot.commit],
            f"check out {snapshot.commit}",
            workdir=tree_dir,
        )
        if snapshot.is_branch:
            self._must(
                ["git", "checkout", "-q", "-B", snapshot.ref, snapshot.commit],
                f"check out branch {snapshot.ref}",
                workdir=tree_dir,
            )
        self._must(
            ["git", "reset", "-q", "--hard"],
            "check out the working tree",
            workdir=tree_dir,
        )
        return tree_dir

    def apply_changes(self, snapshot: Snapshot, tree_dir: str) -> None:
        self._must(
            ["git", "apply", "--whitespace=nowarn", "-"],
            "apply local changes",
            workdir=tree_dir,
            input_bytes=snapshot.changes,
        )

    def save_changes(self, snapshot: Snapshot, tree_dir: str) -> str:
        path = posixpath.join(tree_dir, SIDECAR_NAME)
        self._must(
            ["sh", "-c", 'cat > "$1"', "sh", SIDECAR_NAME],
            f"save local changes to {SIDECAR_NAME}",
            workdir=tree_dir,
            input_bytes=snapshot.changes,
        )
        return path

    def inject(self, snapshot: Snapshot, dirty_mode: bool = False) -> InjectResult:
        """Populate the sandbox with ``snapshot``.

        Raises:
            InjectionError: If the history transfer, checkout or diff
                application fails.
        """
        self.log.info("INJECT", f"Injecting {snapshot.project} at {snapshot.ref} ({snapshot.commit[:12]})")
        if snapshot.dirty:
            self.log.warn("INJECT", "Local uncommitted changes detected")

        tree_dir = self.transfer_history(snapshot)
        result = InjectResult(tree_dir=tree_dir, ref=snapshot.ref, commit=snapshot.commit, dirty=snapshot.dirty)

        if snapshot.dirty:
            if dirty_mode:
                self.apply_changes(snapshot, tree_dir)
                result.applied = True
                self.log.info("INJECT", "Applied local changes")
            else:
                result.sidecar_path = self.save_changes(snapshot, tree_dir)
                self.log.info(
                    "INJECT",
                    f"Local changes NOT applied; saved to {result.sidecar_path} (use --dirty to apply)",
                )

        self.log.event({
            "phase": "inject",
            "tree_dir": tree_dir,
            "ref": snapshot.ref,
            "commit": snapshot.commit,
            "dirty": snapshot.dirty,
            "applied": result.applied,
        })
        return result
