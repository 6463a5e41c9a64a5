"""Copy build outputs from the injected tree back to the host."""

import os
import posixpath
from dataclasses import dataclass, field
from typing import List, Optional

from .log import RunLog
from .phases import Phase, PhaseResult
from .sandbox import Sandbox, execute, pull_file


@dataclass
class CollectResult:
    ok: bool
    collected: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    output: str = ""

    def as_phase_result(self) -> PhaseResult:
        return PhaseResult(
            phase=Phase.ARTIFACTS,
            ok=self.ok,
            exit_code=0 if self.ok else 1,
            output=self.output,
        )


def list_artifacts(sb: Sandbox, user: str, tree_dir: str, patterns: List[str]) -> List[str]:
    """Return sandbox paths of files in ``tree_dir`` matching ``patterns``.

    Raises:
        RuntimeError: If the listing command fails.
    """
    found: List[str] = []
    for pattern in patterns:
        result = execute(
            sb,
            ["find", ".", "-maxdepth", "1", "-type", "f", "-name", pattern],
            user=user,
            workdir=tree_dir,
        )
        if not result.ok:
            raise RuntimeError(f"Listing {pattern} failed: {result.output.strip()}")
        for line in result.stdout.splitlines():
            name = posixpath.basename(line.strip())
            if name:
                path = posixpath.join(tree_dir, name)
                if path not in found:
                    found.append(path)
    return sorted(found)


def collect_artifacts(
    sb: Sandbox,
    user: str,
    tree_dir: str,
    patterns: List[str],
    dest_dir: Optional[str] = None,
    log: Optional[RunLog] = None,
) -> CollectResult:
    """Copy every matching file to ``dest_dir`` (default: current directory).

    Best effort: one failed copy does not stop the others.
    """
    log = log or RunLog()
    dest_dir = dest_dir or os.getcwd()
    try:
        paths = list_artifacts(sb, user, tree_dir, patterns)
    except RuntimeError as e:
        log.error("ARTIFACTS", str(e))
        return CollectResult(ok=False, output=str(e))

    if not paths:
        log.warn("ARTIFACTS", f"No files matching {' '.join(patterns)} in {tree_dir}")

    result = CollectResult(ok=True)
    for path in paths:
        copied = pull_file(sb, path, dest_dir)
        if copied.ok:
            local = os.path.join(dest_dir, posixpath.basename(path))
            result.collected.append(local)
            log.info("ARTIFACTS", f"Retrieved {local}")
        else:
            result.ok = False
            result.failed.append(path)
            result.output += copied.output
            log.error("ARTIFACTS", f"Could not retrieve {path}", copied.output)
    log.event({"phase": "artifacts", "collected": result.collected, "failed": result.failed})
    return result
