"""Console reporting and JSONL run log for sandbox-ci."""

import json
import os
import sys
from typing import Any, Dict, List, Optional, TextIO

from .clock import Clock


def ensure_dir(path: str) -> None:
    """Ensure that a directory exists."""
    os.makedirs(path, exist_ok=True)


def write_jsonl(
    log_dir: str,
    record: Dict[str, Any],
    *,
    clock: Optional[Clock] = None,
    ts: Optional[float] = None,
) -> None:
    """Append one run event to ``run.jsonl`` under ``log_dir``.

    Each line is a step of a sandbox run (provision, inject, a phase, the
    final result) stamped with ``ts``, either given or read from ``clock``.

    Raises:
        ValueError: If neither ``ts`` nor ``clock`` is supplied.
    """
    ensure_dir(log_dir)
    entry = dict(record)
    if ts is not None:
        entry["ts"] = float(ts)
    elif clock is not None:
        entry["ts"] = float(clock.time())
    else:
        raise ValueError("write_jsonl requires either ts or clock")
    path = os.path.join(log_dir, "run.jsonl")
    with open(path, "a", encoding="utf-8") as f:
        f.write(json.dumps(entry, ensure_ascii=False) + "\n")


class RunLog:
    """Tagged console output plus an optional JSONL event trail.

    Verbosity 0 shows tags and failure output, 1 adds successful command
    output, 2 adds every remote argv.
    """

    def __init__(
        self,
        verbosity: int = 0,
        log_dir: Optional[str] = None,
        clock: Optional[Clock] = None,
        out: Optional[TextIO] = None,
        err: Optional[TextIO] = None,
    ):
        self.verbosity = verbosity
        self.log_dir = log_dir
        self.clock = clock
        self._out = out
        self._err = err

    @property
    def out(self) -> TextIO:
        return self._out or sys.stdout

    @property
    def err(self) -> TextIO:
        return self._err or sys.stderr

    def info(self, tag: str, message: str) -> None:
        print(f"[{tag}] {message}", file=self.out, flush=True)

    def warn(self, tag: str, message: str) -> None:
        print(f"[{tag}] WARNING: {message}", file=self.err, flush=True)

    def error(self, tag: str, message: str, output: str = "") -> None:
        print(f"[{tag}] ERROR: {message}", file=self.err, flush=True)
        if output:
            self._dump(output, self.err)

    def command(self, argv: List[str], user: Optional[str] = None) -> None:
        if self.verbosity >= 2:
            who = user or "root"
            print(f"  ({who}) $ {' '.join(argv)}", file=self.out, flush=True)

    def output(self, text: str, ok: bool = True) -> None:
        """Show remote output: always on failure, on success only when verbose."""
        if not text:
            return
        if not ok:
            self._dump(text, self.err)
        elif self.verbosity >= 1:
            self._dump(text, self.out)

    def event(self, record: Dict[str, Any]) -> None:
        if self.log_dir and self.clock is not None:
            write_jsonl(self.log_dir, record, clock=self.clock)

    @staticmethod
    def _dump(text: str, stream: TextIO) -> None:
        for line in text.rstrip("\n").splitlines():
            print(f"    {line}", file=stream)
        stream.flush()
