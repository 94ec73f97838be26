"""
cli.py

Responsibility: CLI entrypoint for the `samples` tool.

High-level flow (single command `test build`):
1) Pick the build pack (flag or detection from the sample directory)
2) Merge build pack defaults, flags and the sample config -> `BuildOptions`
3) Render, submit and clean up the Cloud Build

This module should orchestrate behavior but keep concerns isolated:
- Defaults: `build_packs.py`
- Config merging: `config.py`
- Rendering: `renderer.py`
- gcloud / git: `cloudbuild.py`
"""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path

from repotools import __version__
from repotools.build_packs import detect_build_pack, get_build_pack
from repotools.cloudbuild import BuildError, run_build
from repotools.config import resolve_build_options
from repotools.utils import RepoToolsError

logger = logging.getLogger("repotools")

BUILD_DESCRIPTION = """\
Launch a Cloud Container build.

By default the build will install dependencies and run the system/unit tests.
Passing --app will cause the build to also run the web app tests.
Passing --deploy will cause the build to also run the web app deployment test.

Pass --dry-run to see what the cloudbuild.yaml file will look like."""

# Flags forwarded to config resolution; None means "not given on the command line".
_BUILD_OPTION_NAMES = (
    "run",
    "app",
    "deploy",
    "builder_project",
    "project",
    "key_file",
    "config",
    "config_key",
    "async_",
    "ci",
    "timeout",
    "install_cmd",
    "install_args",
    "web_cmd",
    "web_args",
    "test_cmd",
    "test_args",
)


def build_cmd(args: argparse.Namespace) -> int:
    local_path = Path(args.local_path).resolve()
    if not local_path.is_dir():
        raise RepoToolsError(f"Sample directory does not exist: {local_path}")

    pack = get_build_pack(args.build_pack or detect_build_pack(local_path))
    logger.debug("Using build pack: %s", pack.name)

    cli = {name: getattr(args, name) for name in _BUILD_OPTION_NAMES}
    opts = resolve_build_options(cli, pack, local_path, dry_run=bool(args.dry_run))
    return run_build(opts)


def _add_common_args(p: argparse.ArgumentParser, *, suppress: bool) -> None:
    # Registered on the root and on leaf commands so they work in either position;
    # leaf copies suppress their defaults to avoid clobbering root values.
    def default(value: object) -> object:
        return argparse.SUPPRESS if suppress else value

    p.add_argument(
        "-l",
        "--local-path",
        default=default(os.getcwd()),
        help="Local path to the sample (default: current directory)",
    )
    p.add_argument("--dry-run", action="store_true", default=default(False), help="Print actions without running them")
    p.add_argument("--build-pack", default=default(None), help="Build pack to use (default: detected)")
    p.add_argument("-v", "--verbose", action="store_true", default=default(False), help="Enable debug logging")


def _add_flag_pair(p: argparse.ArgumentParser, name: str, dest: str, help_on: str, help_off: str) -> None:
    p.add_argument(f"--{name}", dest=dest, action="store_true", default=None, help=help_on)
    p.add_argument(f"--no-{name}", dest=dest, action="store_false", default=None, help=help_off)


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="samples", description="Tools for testing and building sample repositories")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    _add_common_args(p, suppress=False)
    sub = p.add_subparsers(dest="command", required=True)

    test = sub.add_parser("test", help="Run sample tests")
    test_sub = test.add_subparsers(dest="test_command", required=True)

    b = test_sub.add_parser(
        "build",
        help="Launch a Cloud Container build",
        description=BUILD_DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="example: samples test build -l ~/nodejs-docs-samples/appengine/cloudsql --app --deploy",
    )
    _add_common_args(b, suppress=True)

    _add_flag_pair(b, "run", "run", "Run the system/unit test command (default: true)", "Skip the system/unit test command")
    _add_flag_pair(b, "app", "app", "Also run the web app test command", "Do not run the web app test command")
    _add_flag_pair(b, "deploy", "deploy", "Also run the deploy command", "Do not run the deploy command")
    _add_flag_pair(b, "ci", "ci", "Treat this as a CI environment", "Do not treat this as a CI environment")
    b.add_argument(
        "-a",
        "--async",
        dest="async_",
        action="store_true",
        default=None,
        help="Start the build, but don't wait for it to complete",
    )

    b.add_argument(
        "--builder-project",
        "--bp",
        dest="builder_project",
        default=None,
        help="The project in which the Cloud Container Build should execute",
    )
    b.add_argument("-p", "--project", default=None, help="The project ID to use inside the build")
    b.add_argument("-k", "--key-file", default=None, help="The path to the key to copy into the build")
    b.add_argument(
        "--config",
        default=None,
        help="Config file to load, relative to the sample (options in it supersede the command line; 'false' disables)",
    )
    b.add_argument("--config-key", default=None, help="Key under which options are nested in the config file")
    b.add_argument("--timeout", default=None, help="The maximum time allowed for the build (e.g. 20m)")

    b.add_argument("--install-cmd", default=None, help="The install command to use")
    b.add_argument("--install-args", default=None, help="The arguments to pass to the install command")
    b.add_argument("--web-cmd", default=None, help="The command the web app test will use to start the app")
    b.add_argument("--web-args", default=None, help="The arguments to pass to the web app command")
    b.add_argument("--test-cmd", default=None, help="The system/unit test command to use")
    b.add_argument("--test-args", default=None, help="The arguments to pass to the system/unit test command")

    b.set_defaults(func=build_cmd)
    return p


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(message)s")
    try:
        return int(args.func(args))
    except BuildError as e:
        logger.error("%s", e)
        return e.returncode
    except RepoToolsError as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
