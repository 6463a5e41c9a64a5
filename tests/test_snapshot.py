"""Tests for reading the host working tree."""

import os
import tarfile

import pytest

from conftest import git, requires_git
from sandbox_ci.snapshot import (
    SnapshotError,
    find_toplevel,
    pack_git_dir,
    take_snapshot,
)

pytestmark = requires_git


class TestSnapshot:
    def test_clean_branch(self, git_repo):
        snap = take_snapshot(str(git_repo))
        assert snap.ref == "main"
        assert snap.is_branch
        assert snap.commit == git(git_repo, "rev-parse", "HEAD")
        assert not snap.dirty
        assert snap.changes is None
        assert snap.project == "project"
        assert os.path.samefile(snap.git_dir, git_repo / ".git")

    def test_from_subdirectory(self, git_repo):
        sub = git_repo / "sub"
        sub.mkdir()
        snap = take_snapshot(str(sub))
        assert os.path.samefile(snap.toplevel, git_repo)

    def test_detached_head_uses_hash(self, git_repo):
        first = git(git_repo, "rev-parse", "HEAD~1")
        git(git_repo, "checkout", "-q", first)
        snap = take_snapshot(str(git_repo))
        assert snap.ref == first
        assert snap.commit == first
        assert not snap.is_branch

    def test_dirty_tree_carries_diff(self, git_repo):
        (git_repo / "hello.txt").write_text("hello local\n")
        snap = take_snapshot(str(git_repo))
        assert snap.dirty
        assert b"+hello local" in snap.changes
        assert b"-hello world" in snap.changes

    def test_touched_but_unchanged_file_is_clean(self, git_repo):
        path = git_repo / "hello.txt"
        path.write_text("hello world\n")
        os.utime(path, (0, 0))
        assert not take_snapshot(str(git_repo)).dirty

    def test_staged_changes_count_as_dirty(self, git_repo):
        (git_repo / "new.txt").write_text("new\n")
        git(git_repo, "add", "new.txt")
        snap = take_snapshot(str(git_repo))
        assert snap.dirty
        assert b"new.txt" in snap.changes

    def test_worktree_redirects_to_main_metadata(self, git_repo, tmp_path):
        wt = tmp_path / "wt"
        git(git_repo, "worktree", "add", "-q", "-b", "feature", str(wt))
        snap = take_snapshot(str(wt))
        assert snap.ref == "feature"
        assert os.path.samefile(snap.git_dir, git_repo / ".git")

    def test_not_a_repository(self, tmp_path):
        with pytest.raises(SnapshotError):
            take_snapshot(str(tmp_path))

    def test_missing_directory(self, tmp_path):
        with pytest.raises(SnapshotError):
            find_toplevel(str(tmp_path / "nope"))


class TestPack:
    def test_archive_is_rooted_at_git_dir(self, git_repo, tmp_path):
        scratch = tmp_path / "scratch"
        scratch.mkdir()
        git(git_repo, "worktree", "add", "-q", "-b", "other", str(tmp_path / "wt"))
        path = pack_git_dir(take_snapshot(str(git_repo)), str(scratch))

        with tarfile.open(path) as tar:
            names = tar.getnames()
        assert "HEAD" in names
        assert "objects" in names
        assert not any(n.split("/")[0] == "worktrees" for n in names)
