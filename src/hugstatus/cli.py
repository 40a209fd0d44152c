from __future__ import annotations

import argparse
from contextlib import ExitStack
import logging
from pathlib import Path
import tomllib

from hugstatus import __version__
from hugstatus.config import AppConfig, ConfigError, load_config
from hugstatus.observability import VERBOSE_MODES, configure_logging, log_warning
from hugstatus.pidfile import PidFileError, pid_file
from hugstatus.service_runner import ServiceStartupError, run_service


LOGGER = logging.getLogger("hugstatus.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hug-status",
        description="Track filed pull requests and post their outcome to Twitter",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"hug-status v{__version__}",
        help="Output the version number and exit",
    )
    parser.add_argument(
        "--config",
        type=Path,
        required=True,
        help="Configuration file (TOML)",
    )
    parser.add_argument(
        "--pidfile",
        type=Path,
        default=None,
        help="Write the process id into the given file",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        nargs="?",
        const="high",
        default="low",
        choices=VERBOSE_MODES,
        help="Log verbosity on stderr (default: low; bare -v means high)",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    with ExitStack() as stack:
        if args.pidfile is not None:
            try:
                stack.enter_context(pid_file(args.pidfile))
            except (PidFileError, OSError) as exc:
                raise SystemExit(f"Cannot write pid file: {exc}") from exc

        config = _load_config_or_exit(args.config)
        if config.runtime.log_dir is not None:
            configure_logging(args.verbose, log_dir=config.runtime.log_dir)

        try:
            completed = run_service(config)
        except ServiceStartupError as exc:
            raise SystemExit(str(exc)) from exc
        if not completed:
            raise SystemExit(1)


def _load_config_or_exit(path: Path) -> AppConfig:
    try:
        return load_config(path)
    except (OSError, tomllib.TOMLDecodeError, ConfigError) as exc:
        log_warning(LOGGER, "config_load_failed", path=str(path), error=str(exc))
        raise SystemExit(f"Configuration initialisation failed: {exc}") from exc
