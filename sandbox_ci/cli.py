import argparse
import sys
from typing import List, Optional

from dotenv import load_dotenv

from .controller import ControllerConfig, run_controller


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sandbox-ci",
        description=(
            "Run a project's checks and package builds inside a throwaway "
            "container built from the current git working tree."
        ),
    )
    parser.add_argument(
        "version",
        help="Distribution version selecting the base image (e.g. 7)",
    )
    parser.add_argument(
        "-d", "--deps",
        action="store_true",
        help="Install the project's dependencies",
    )
    parser.add_argument(
        "-u", "--unit-test",
        action="store_true",
        help="Run the unit tests",
    )
    parser.add_argument(
        "-s", "--srpm",
        action="store_true",
        help="Build the source package",
    )
    parser.add_argument(
        "-r", "--rpm",
        action="store_true",
        help="Build the binary package",
    )
    parser.add_argument(
        "-a", "--artifacts",
        action="store_true",
        help="Copy built packages to the current directory",
    )
    parser.add_argument(
        "--dirty",
        action="store_true",
        help=(
            "Apply uncommitted local changes inside the sandbox "
            "(default: test the last commit and save the changes as a diff)"
        ),
    )
    parser.add_argument(
        "-k", "--keep",
        action="store_true",
        help="Do not delete the sandbox when the run ends",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Show command output (-v) and every remote command (-vv)",
    )
    parser.add_argument(
        "--image",
        default=None,
        help="Base image to use instead of the one derived from VERSION",
    )
    parser.add_argument(
        "--repo",
        default=".",
        help="Path inside the git repository to test (default: current directory)",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Config file (default: sandbox-ci.toml or [tool.sandbox-ci] in pyproject.toml)",
    )
    parser.add_argument(
        "--log-dir",
        default=None,
        help="Directory for a JSONL run log (disabled if omitted)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the CLI.

    Loads environment variables from .env (proxy settings), parses the
    command line, runs the controller and returns its exit code.
    """
    load_dotenv()
    args = build_parser().parse_args(argv)

    cfg = ControllerConfig(
        version=args.version,
        repo_dir=args.repo,
        deps=args.deps,
        unit_test=args.unit_test,
        srpm=args.srpm,
        rpm=args.rpm,
        dirty=args.dirty,
        keep=args.keep,
        artifacts=args.artifacts,
        verbosity=args.verbose,
        image=args.image,
        config_path=args.config,
        log_dir=args.log_dir,
    )
    result = run_controller(cfg)
    return int(result["exit_code"])


if __name__ == "__main__":
    sys.exit(main())
