#!/usr/bin/env python3
"""
CLI for cardsync.

Usage:
    cardsync init   [--force]
    cardsync status
    cardsync pull
    cardsync push
    cardsync poll
    cardsync resolve --strategy {accept_cloud,keep_local}
    cardsync diff
    cardsync watch
    cardsync export --out cards.json
    cardsync import --in cards.json

Common flags: --config PATH, --verbose, --json
"""

import argparse
import copy
import json
import logging
import signal
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from . import __version__
from .config.config_loader import AppConfig, DEFAULTS, DEFAULT_CONFIG_PATH
from .core.exceptions import CardSyncError, SnapshotFormatError
from .core.logging import configure_logging
from .core.models import ConflictStrategy, PollTrigger, Snapshot, SyncOutcome
from .remote import create_remote_store
from .remote.base import RemoteStore
from .snapshot.canonical import content_hash, short_hash
from .snapshot.diff import flatten_diff, summarize_diff
from .snapshot.holder import SnapshotHolder
from .state import create_state_store
from .state.state_store import StateStore
from .sync.engine import SyncEngine
from .sync.scheduler import SyncScheduler


logger = logging.getLogger(__name__)

# Exit codes
EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFLICT = 2

_FAILURES = {
    SyncOutcome.NETWORK_ERROR,
    SyncOutcome.SERVER_UNAVAILABLE,
    SyncOutcome.UNAUTHENTICATED,
    SyncOutcome.FAILED,
    SyncOutcome.BUSY,
    SyncOutcome.NOT_LOADED,
}


@dataclass
class CliContext:
    """Objects wired together for one command."""
    config: AppConfig
    state_store: StateStore
    holder: SnapshotHolder
    remote: Optional[RemoteStore] = None
    engine: Optional[SyncEngine] = None

    def close(self) -> None:
        if self.engine is not None:
            self.engine.close()
        if self.remote is not None:
            self.remote.close()
        self.state_store.close()


def load_config(args) -> AppConfig:
    if getattr(args, "app_config", None) is not None:
        return args.app_config
    config_path = args.config
    if config_path is None and DEFAULT_CONFIG_PATH.exists():
        config_path = DEFAULT_CONFIG_PATH
    return AppConfig(config_path)


def open_context(config: AppConfig, with_remote: bool = True) -> CliContext:
    """Create the state store and holder, and optionally the remote and engine."""
    state_cfg = config.get_state_config()
    backend = state_cfg.get("backend", "sqlite")
    db_path = state_cfg.get("db_path")
    if backend == "sqlite" and db_path and db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    state_store = create_state_store(backend, db_path)
    context = CliContext(
        config=config,
        state_store=state_store,
        holder=SnapshotHolder(state_store=state_store),
    )
    if not with_remote:
        return context

    try:
        remote_cfg = config.get_remote_config()
        context.remote = create_remote_store(
            backend=remote_cfg.get("backend", "dropbox"),
            access_token=remote_cfg.get("access_token"),
            path=remote_cfg.get("path", "/smartcards.json"),
            timeout=float(remote_cfg.get("timeout", 30.0)),
            max_retries=int(remote_cfg.get("max_retries", 2)),
        )
    except CardSyncError:
        state_store.close()
        raise

    context.engine = SyncEngine(
        context.holder,
        context.remote,
        state_store=state_store,
        config=config.get_engine_config(),
    )
    return context


def emit(args, payload: Dict[str, Any], lines: List[str]) -> None:
    """Print a command result as JSON or as text lines."""
    if args.json:
        print(json.dumps(payload, indent=2, default=str))
    else:
        for line in lines:
            print(line)


def exit_code(outcome: SyncOutcome) -> int:
    if outcome == SyncOutcome.CONFLICT:
        return EXIT_CONFLICT
    if outcome in _FAILURES:
        return EXIT_ERROR
    return EXIT_OK


def _session_payload(engine: SyncEngine, outcome: SyncOutcome, load: SyncOutcome) -> Dict[str, Any]:
    payload = {
        "outcome": outcome.value,
        "load": load.value,
        "status": engine.status.value,
        "content_hash": short_hash(engine.current_hash),
    }
    payload.update(engine.state.to_dict())
    return payload


def _run_session(args, operation) -> int:
    """Start a session and, if it loaded, run one engine operation."""
    context = open_context(load_config(args))
    try:
        engine = context.engine
        load = engine.start_session()
        outcome = load if load in _FAILURES else operation(engine)

        lines = [f"{outcome.value} (status: {engine.status.value})"]
        if engine.state.has_conflict:
            lines.append(engine.describe_conflict())
            lines.append("Run 'cardsync resolve --strategy accept_cloud|keep_local'")
        emit(args, _session_payload(engine, outcome, load), lines)
        return exit_code(outcome)
    finally:
        context.close()


def cmd_init(args) -> int:
    """Write a default config file and create the local state database."""
    config_path = Path(args.config) if args.config else DEFAULT_CONFIG_PATH
    if config_path.exists() and not args.force:
        logger.error(f"Config already exists: {config_path} (use --force to overwrite)")
        return EXIT_ERROR

    defaults = copy.deepcopy(DEFAULTS)
    defaults["remote"].pop("access_token", None)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(defaults, f, sort_keys=False)

    context = open_context(AppConfig(config_path), with_remote=False)
    context.close()

    logger.info(f"Wrote config: {config_path}")
    logger.info("Set DROPBOX_ACCESS_TOKEN (environment or .env) before syncing")
    return EXIT_OK


def cmd_status(args) -> int:
    return _run_session(args, lambda engine: SyncOutcome.ALREADY_LOADED)


def cmd_pull(args) -> int:
    return _run_session(args, lambda engine: engine.poll(PollTrigger.MANUAL))


def cmd_push(args) -> int:
    return _run_session(args, lambda engine: engine.autosave())


def cmd_poll(args) -> int:
    return _run_session(args, lambda engine: engine.poll(PollTrigger.MANUAL))


def cmd_resolve(args) -> int:
    strategy = ConflictStrategy(args.strategy)
    return _run_session(args, lambda engine: engine.resolve_conflict(strategy))


def cmd_diff(args) -> int:
    """Show differences between local and remote content."""
    context = open_context(load_config(args))
    try:
        tree = context.engine.compare_with_remote()
        if tree is None:
            emit(args, {"remote": None}, ["No remote document"])
            return EXIT_OK
        emit(args, {"differences": flatten_diff(tree)}, [summarize_diff(tree)])
        return EXIT_OK
    finally:
        context.close()


def cmd_watch(args) -> int:
    """Run the scheduler until SIGINT/SIGTERM."""
    context = open_context(load_config(args))
    scheduler = SyncScheduler(context.engine, context.config.get_scheduler_config())
    stop_event = threading.Event()

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handle_shutdown_signal(signum, frame):
        logger.info(f"Received signal {signum}, stopping...")
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_shutdown_signal)
    signal.signal(signal.SIGTERM, _handle_shutdown_signal)

    invalidated = []

    def _on_session_invalidated(message):
        invalidated.append(message)
        stop_event.set()

    context.engine.on_session_invalidated = _on_session_invalidated

    try:
        scheduler.start()
        stop_event.wait()
        if invalidated:
            logger.error(f"Session invalidated: {invalidated[0]}")
            return EXIT_ERROR
        return EXIT_OK
    finally:
        scheduler.stop()
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)
        context.close()


def cmd_export(args) -> int:
    """Write the local snapshot to a JSON file."""
    context = open_context(load_config(args), with_remote=False)
    try:
        snapshot = context.holder.get_snapshot()
        out_path = Path(args.out)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        with open(out_path, "w", encoding="utf-8") as f:
            json.dump(snapshot.to_dict(), f, indent=2, ensure_ascii=False)

        logger.info(f"Exported {len(snapshot.cards)} cards to {out_path}")
        return EXIT_OK
    finally:
        context.close()


def cmd_import(args) -> int:
    """Replace local content with a JSON file (synced on the next push)."""
    in_path = Path(args.input)
    if not in_path.exists():
        logger.error(f"File not found: {in_path}")
        return EXIT_ERROR

    try:
        with open(in_path, "r", encoding="utf-8") as f:
            snapshot = Snapshot.from_dict(json.load(f))
    except (json.JSONDecodeError, SnapshotFormatError) as e:
        logger.error(f"Invalid snapshot file {in_path}: {e}")
        return EXIT_ERROR

    context = open_context(load_config(args), with_remote=False)
    try:
        context.holder.import_snapshot(snapshot)
        logger.info(
            f"Imported {len(snapshot.projects)} projects and {len(snapshot.cards)} cards "
            f"({short_hash(content_hash(snapshot))})"
        )
        return EXIT_OK
    finally:
        context.close()


COMMANDS = {
    "init": cmd_init,
    "status": cmd_status,
    "pull": cmd_pull,
    "push": cmd_push,
    "poll": cmd_poll,
    "resolve": cmd_resolve,
    "diff": cmd_diff,
    "watch": cmd_watch,
    "export": cmd_export,
    "import": cmd_import,
}


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="cardsync",
        description="Sync a local card snapshot with cloud storage",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", help="Path to YAML config file")
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose/debug logging",
    )
    parser.add_argument("--json", action="store_true", help="Output results as JSON")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    init_parser = subparsers.add_parser("init", help="Write a default config file")
    init_parser.add_argument("--force", action="store_true", help="Overwrite an existing config")

    subparsers.add_parser("status", help="Load and show sync status")
    subparsers.add_parser("pull", help="Pull remote changes if local is clean")
    subparsers.add_parser("push", help="Upload local changes")
    subparsers.add_parser("poll", help="Run one drift poll")

    resolve_parser = subparsers.add_parser("resolve", help="Resolve a conflict")
    resolve_parser.add_argument(
        "--strategy",
        required=True,
        choices=[s.value for s in ConflictStrategy],
        help="Which side wins",
    )

    subparsers.add_parser("diff", help="Show local vs remote differences")
    subparsers.add_parser("watch", help="Sync continuously until interrupted")

    export_parser = subparsers.add_parser("export", help="Export the local snapshot")
    export_parser.add_argument("--out", required=True, help="Output JSON path")

    import_parser = subparsers.add_parser("import", help="Import a snapshot file")
    import_parser.add_argument("--in", dest="input", required=True, help="Input JSON path")

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    try:
        config = load_config(args) if args.command != "init" else None
    except CardSyncError as e:
        configure_logging(logging.INFO)
        logger.error(str(e))
        return EXIT_ERROR
    args.app_config = config

    if config is not None:
        log_cfg = config.get_logging_config()
        level_name = "DEBUG" if args.verbose else str(log_cfg.get("level", "INFO")).upper()
        configure_logging(getattr(logging, level_name, logging.INFO), structured=bool(log_cfg.get("structured")))
    else:
        configure_logging(logging.DEBUG if args.verbose else logging.INFO)

    handler = COMMANDS.get(args.command)
    if handler is None:
        print("No command specified. Use --help for usage.", file=sys.stderr)
        return EXIT_ERROR

    try:
        return handler(args)
    except CardSyncError as e:
        logger.error(f"{args.command} failed: {e}")
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
