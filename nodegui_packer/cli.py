"""Command line interface for nodegui-packer."""

import argparse
import logging
import pathlib
import sys

from nodegui_packer.builder import (
    DEFAULT_APP_NAME,
    DEFAULT_ENTRY_FILE,
    DEFAULT_OUTPUT_DIRNAME,
    PackagingOptions,
    PackagingRequest,
    package_app,
)
from nodegui_packer.errors import PackagingError
from nodegui_packer.launcher import LAUNCHER_LANGUAGES
from nodegui_packer.target import TargetConfig, TargetResolutionError, resolve_target_config


def _configure_logging(*, verbose: int, quiet: int) -> logging.Logger:
    """Configure the nodegui-packer logger.

    :param verbose: Verbosity count (0+).
    :param quiet: Quietness count (0+).
    :returns: Configured logger.
    """

    level: int = logging.INFO
    if quiet >= 2:
        level = logging.ERROR
    elif quiet >= 1:
        level = logging.WARNING
    elif verbose >= 1:
        level = logging.DEBUG

    logger: logging.Logger = logging.getLogger("nodegui_packer")
    logger.setLevel(level)
    logger.propagate = False

    handler: logging.Handler = logging.StreamHandler(stream=sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger.handlers.clear()
    logger.addHandler(handler)
    return logger


def main(argv: list[str] | None = None) -> int:
    """Run the nodegui-packer CLI.

    :param argv: Optional argv list (excluding program name).
    :returns: Exit code.
    """

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        prog="nodegui-packer",
        description="Package a NodeGUI application into a standalone directory with a native launcher.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_build = subparsers.add_parser(
        "build",
        help="Package an application.",
    )
    p_build.add_argument(
        "-n",
        "--name",
        type=str,
        default=DEFAULT_APP_NAME,
        help=f"Application name (default: {DEFAULT_APP_NAME}).",
    )
    p_build.add_argument(
        "-s",
        "--source",
        type=pathlib.Path,
        default=None,
        help="Source directory (default: current directory).",
    )
    p_build.add_argument(
        "-o",
        "--output",
        type=pathlib.Path,
        default=None,
        help=f"Output directory (default: ./{DEFAULT_OUTPUT_DIRNAME}).",
    )
    p_build.add_argument(
        "-m",
        "--main",
        type=str,
        default=DEFAULT_ENTRY_FILE,
        help=f"Main file relative to the source directory (default: {DEFAULT_ENTRY_FILE}).",
    )
    p_build.add_argument(
        "-a",
        "--add-module",
        dest="add_module",
        nargs="+",
        action="extend",
        default=[],
        metavar="MODULE",
        help="Additional npm modules to include.",
    )
    p_build.add_argument(
        "--target",
        type=str,
        default="native",
        help="Target OS ('windows', 'linux') or target triple. Use 'native' for the current host.",
    )
    p_build.add_argument(
        "--qt-version",
        type=str,
        default=None,
        help="Qt bundle version to stage (defaults to the highest installed).",
    )
    p_build.add_argument(
        "--launcher",
        type=str,
        choices=LAUNCHER_LANGUAGES,
        default=None,
        help="Native launcher language (defaults to csharp on Windows, c elsewhere).",
    )
    p_build.add_argument(
        "--compiler",
        type=str,
        default=None,
        help="Compiler executable for the launcher (auto-detected by default).",
    )
    p_build.add_argument(
        "--no-compile",
        action="store_true",
        help="Only write the launcher source; do not compile it.",
    )
    p_build.add_argument(
        "--keep-launcher-source",
        action="store_true",
        help="Keep the launcher source next to the compiled launcher.",
    )
    p_build.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable verbose logging.",
    )
    p_build.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=0,
        help="Reduce logging. Pass twice to show errors only.",
    )

    ns = parser.parse_args(argv)
    if ns.command == "build":
        logger: logging.Logger = _configure_logging(verbose=ns.verbose, quiet=ns.quiet)
        cwd: pathlib.Path = pathlib.Path.cwd()
        source: pathlib.Path = ns.source if ns.source is not None else cwd
        output: pathlib.Path = ns.output if ns.output is not None else cwd / DEFAULT_OUTPUT_DIRNAME

        try:
            target_cfg: TargetConfig = resolve_target_config(ns.target)
        except TargetResolutionError as e:
            logger.error(f"nodegui-packer: {e}")
            return 2

        request: PackagingRequest = PackagingRequest(
            source_root=source,
            output_root=output,
            app_name=ns.name,
            entry_file=ns.main,
            extra_packages=tuple(ns.add_module),
        )
        options: PackagingOptions = PackagingOptions(
            target=target_cfg,
            qt_version=ns.qt_version,
            compile=not ns.no_compile,
            compiler=ns.compiler,
            launcher_language=ns.launcher,
            keep_launcher_source=ns.keep_launcher_source,
        )

        try:
            app_dir: pathlib.Path = package_app(request, options, logger=logger)
        except (PackagingError, OSError):
            return 1

        print(app_dir)
        return 0

    raise AssertionError(f"Unhandled command: {ns.command}")
