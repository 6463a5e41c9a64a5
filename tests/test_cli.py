"""Tests for the command-line entry point."""

from unittest.mock import patch

from sandbox_ci.cli import build_parser, main


class TestParser:
    def test_defaults(self):
        args = build_parser().parse_args(["7"])
        assert args.version == "7"
        assert not (args.deps or args.unit_test or args.srpm or args.rpm)
        assert not (args.dirty or args.keep or args.artifacts)
        assert args.verbose == 0
        assert args.repo == "."

    def test_flags(self):
        args = build_parser().parse_args(["8", "-d", "-u", "-s", "-r", "-a", "--dirty", "-k", "-vv"])
        assert args.deps and args.unit_test and args.srpm and args.rpm
        assert args.artifacts and args.dirty and args.keep
        assert args.verbose == 2


class TestMain:
    def test_builds_config_and_returns_exit_code(self):
        with patch("sandbox_ci.cli.run_controller", return_value={"exit_code": 1}) as run, \
             patch("sandbox_ci.cli.load_dotenv") as dotenv:
            code = main(["7", "--unit-test", "--keep", "--image", "centos:7.9.2009", "-v"])

        assert code == 1
        dotenv.assert_called_once()
        cfg = run.call_args[0][0]
        assert cfg.version == "7"
        assert cfg.unit_test and cfg.keep
        assert not cfg.srpm
        assert cfg.image == "centos:7.9.2009"
        assert cfg.verbosity == 1

    def test_success(self):
        with patch("sandbox_ci.cli.run_controller", return_value={"exit_code": 0}), \
             patch("sandbox_ci.cli.load_dotenv"):
            assert main(["7"]) == 0
