"""
Entry point for running mittorch via `python -m mittorch`.

Configures logging, loads the deploy configuration, wires the collaborators
together and runs the supervisor loop until SIGINT/SIGTERM.
"""

import argparse
import dataclasses
import logging
import sys
from logging.handlers import RotatingFileHandler

from .config import Settings, load_config, settings
from .engine import ReconciliationEngine
from .errors import ConfigError
from .loop import ShutdownSignal, SupervisorLoop
from .process import ProcessSupervisor
from .report import Reporter
from .repository import GitHubRemoteRef, GitRepositorySource


def configure_logging(settings: Settings):
    """Log to a rotating file under the data directory and to the console."""
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    log_formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    # Rotating file handler (auto-compaction)
    file_handler = RotatingFileHandler(
        settings.log_file,
        maxBytes=settings.log_max_bytes,
        backupCount=settings.log_backup_count,
    )
    file_handler.setFormatter(log_formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(log_formatter)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        handlers=[file_handler, console_handler],
        force=True,
    )


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="mittorch",
        description="Keep one process running on the latest commit of a GitHub branch.",
    )
    parser.add_argument(
        "-c", "--config",
        default=str(settings.config_path),
        help="Path to the JSON deploy configuration (default: %(default)s)",
    )
    parser.add_argument(
        "--data-dir",
        default=None,
        help="Directory holding checkouts and the log file (default: MITTORCH_DATA_DIR or .data)",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Run mittorch and return its exit code."""
    args = parse_args(argv)

    run_settings = settings
    if args.data_dir:
        run_settings = dataclasses.replace(settings, data_dir=args.data_dir, log_file=None)
    configure_logging(run_settings)

    reporter = Reporter()
    try:
        deploy = load_config(args.config)
    except ConfigError as e:
        reporter.failure(str(e))
        return 1

    repository = GitRepositorySource(run_settings.data_dir, host=run_settings.git_host)
    remote = GitHubRemoteRef(run_settings.api_url, timeout=run_settings.http_timeout)
    supervisor = ProcessSupervisor(shell=run_settings.shell)
    engine = ReconciliationEngine(
        deploy,
        repository.checkout_path(deploy.repository),
        repository,
        remote,
        supervisor,
        reporter=reporter,
        stop_grace_seconds=run_settings.stop_grace_seconds,
    )

    shutdown = ShutdownSignal()
    shutdown.install()

    try:
        return SupervisorLoop(deploy, engine, repository, supervisor, shutdown, reporter).run()
    finally:
        remote.close()


def cli():
    sys.exit(main())


if __name__ == "__main__":
    cli()
