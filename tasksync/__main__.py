"""CLI entry point for tasksync."""

import argparse
import asyncio
import inspect
import json
import logging
import sys
import traceback
from datetime import date, datetime
from pathlib import Path
from typing import Awaitable, Callable

from .app import TaskApp
from .config import Config, load_config
from .errors import LocalStoreError, TaskNotFoundError, TaskValidationError
from .sync import PAST_BUCKET, TaskView


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        # Safe JSON serialization
        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            # Fallback for non-serializable objects
            log_data["message"] = str(log_data["message"])
            if "exception" in log_data:
                log_data["exception"] = str(log_data["exception"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.WARNING)
    else:
        level = logging.DEBUG if verbose else logging.WARNING

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
    )


def format_view(view: TaskView, today: date | None = None) -> str:
    """Render the grouped view as plain text."""
    if not len(view):
        return "No tasks."

    today = today or date.today()
    lines = []
    for group in view.groups:
        if group.key == PAST_BUCKET:
            header = "Past"
        elif group.key == today.isoformat():
            header = "Today"
        else:
            header = date.fromisoformat(group.key).strftime("%d/%m/%Y")
        lines.append(header)

        for task in group.tasks:
            mark = "x" if task.completed else " "
            when = task.date.astimezone().strftime("%d/%m/%Y %H:%M")
            pending = "" if task.synced else "  (not synced)"
            lines.append(f"  [{mark}] {task.id}  {when}  {task.title}{pending}")
        lines.append("")

    return "\n".join(lines).rstrip()


def _load(args: argparse.Namespace) -> Config:
    config = load_config(args.config)
    if args.offline:
        config.connectivity.force_offline = True
    return config


async def _with_app(
    args: argparse.Namespace,
    action: Callable[[TaskApp], Awaitable[int]],
) -> int:
    """Open the app, run one action, and close it again."""
    app = TaskApp(_load(args))
    try:
        await app.open()
        return await action(app)
    except TaskValidationError as e:
        print(f"Invalid task: {e}", file=sys.stderr)
        return 2
    except TaskNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except LocalStoreError as e:
        print(f"Local storage error: {e}", file=sys.stderr)
        return 1
    finally:
        await app.close()


async def cmd_add(args: argparse.Namespace) -> int:
    """Add a task."""

    async def action(app: TaskApp) -> int:
        task = await app.add_task(args.title, args.date, completed=args.completed)
        state = "synced" if task.synced else "saved offline, will sync later"
        print(f"Added task {task.id}: {task.title} ({state})")
        return 0

    return await _with_app(args, action)


async def cmd_complete(args: argparse.Namespace) -> int:
    """Complete a task."""

    async def action(app: TaskApp) -> int:
        view = await app.complete_task(args.task_id)
        print(format_view(view))
        return 0

    return await _with_app(args, action)


async def cmd_delete(args: argparse.Namespace) -> int:
    """Delete a task."""

    async def action(app: TaskApp) -> int:
        view = await app.delete_task(args.task_id)
        print(format_view(view))
        return 0

    return await _with_app(args, action)


async def cmd_list(args: argparse.Namespace) -> int:
    """Show the canonical task view."""

    async def action(app: TaskApp) -> int:
        if args.json:
            print(json.dumps(app.view.to_dict(), indent=2))
        else:
            if not app.connectivity.online:
                print("You are offline! Tasks will sync when the connection returns.\n")
            print(format_view(app.view))
        return 0

    return await _with_app(args, action)


async def cmd_sync(args: argparse.Namespace) -> int:
    """Run one reconciliation pass."""

    async def action(app: TaskApp) -> int:
        result = await app.sync()
        print(
            f"Sync {result.status.value}: pulled={result.pulled} pushed={result.pushed} "
            f"failed={result.failed} deletions={result.tombstones_flushed}"
        )
        if result.error:
            print(f"  {result.error}", file=sys.stderr)
        return 0

    return await _with_app(args, action)


async def cmd_status(args: argparse.Namespace) -> int:
    """Show connectivity and local store status."""

    async def action(app: TaskApp) -> int:
        status_data = {
            "timestamp": datetime.now().isoformat(),
            "node": app.config.node.name,
            "online": app.connectivity.online,
            "remote_url": app.config.remote.url,
            "local": app.local.get_stats(),
        }
        if app.reconciler.last_result:
            status_data["last_sync"] = app.reconciler.last_result.to_dict()

        if args.json:
            print(json.dumps(status_data, indent=2))
        else:
            local = status_data["local"]
            print("tasksync Status")
            print("===============")
            print(f"Node: {status_data['node']}")
            print(f"Remote: {status_data['remote_url']} "
                  f"({'online' if status_data['online'] else 'offline'})")
            print(f"Tasks: {local['total_tasks']} "
                  f"({local['unsynced_tasks']} not synced, {local['completed_tasks']} completed)")
            print(f"Pending remote deletions: {local['tombstones']}")
        return 0

    return await _with_app(args, action)


async def cmd_run(args: argparse.Namespace) -> int:
    """Run the client in the foreground."""
    config = _load(args)
    app = TaskApp(config)

    print(f"Starting tasksync client: {config.node.name}")
    print(f"Remote: {config.remote.url}")
    print(f"Local store: {config.storage.db_path}")

    try:
        await app.start()
    except (KeyboardInterrupt, asyncio.CancelledError):
        print("\nShutting down...")
    finally:
        await app.stop()

    return 0


def cmd_serve_remote(args: argparse.Namespace) -> int:
    """Run the reference remote task API."""
    config = _load(args)

    try:
        import uvicorn

        from .remote_server import create_app
    except ImportError as e:
        print(f"Server dependencies not installed: {e}", file=sys.stderr)
        print("Install with: pip install tasksync[server]", file=sys.stderr)
        return 1

    host = args.host or config.server.host
    port = args.port or config.server.port
    db_path = args.db or config.server.db_path

    print(f"Starting tasksync remote at http://{host}:{port} (db: {db_path})")
    uvicorn.run(
        create_app(db_path),
        host=host,
        port=port,
        log_level="info" if args.verbose else "warning",
    )
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="tasksync",
        description="Offline-first task list with remote synchronization",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Work offline: never contact the remote store",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    add_parser = subparsers.add_parser("add", help="Add a task")
    add_parser.add_argument("title", help="Task title")
    add_parser.add_argument(
        "-d", "--date",
        required=True,
        help="Due date and time, ISO-8601 (e.g. 2024-01-01T10:00)",
    )
    add_parser.add_argument(
        "--completed",
        action="store_true",
        help="Create the task already completed",
    )
    add_parser.set_defaults(func=cmd_add)

    complete_parser = subparsers.add_parser("complete", help="Mark a task completed")
    complete_parser.add_argument("task_id", type=int, help="Task id")
    complete_parser.set_defaults(func=cmd_complete)

    delete_parser = subparsers.add_parser("delete", help="Delete a task")
    delete_parser.add_argument("task_id", type=int, help="Task id")
    delete_parser.set_defaults(func=cmd_delete)

    list_parser = subparsers.add_parser("list", help="Show tasks grouped by day")
    list_parser.add_argument("--json", action="store_true", help="Output as JSON")
    list_parser.set_defaults(func=cmd_list)

    sync_parser = subparsers.add_parser("sync", help="Reconcile with the remote store")
    sync_parser.set_defaults(func=cmd_sync)

    status_parser = subparsers.add_parser("status", help="Show sync status")
    status_parser.add_argument("--json", action="store_true", help="Output as JSON")
    status_parser.set_defaults(func=cmd_status)

    run_parser = subparsers.add_parser("run", help="Run the client, syncing on reconnect")
    run_parser.set_defaults(func=cmd_run)

    serve_parser = subparsers.add_parser("serve-remote", help="Run the reference remote API")
    serve_parser.add_argument("--host", type=str, default=None, help="Bind host")
    serve_parser.add_argument("-p", "--port", type=int, default=None, help="Bind port")
    serve_parser.add_argument("--db", type=str, default=None, help="Remote database path")
    serve_parser.set_defaults(func=cmd_serve_remote)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.log_json)

    if not args.command:
        parser.print_help()
        return 1

    func = args.func
    if inspect.iscoroutinefunction(func):
        return asyncio.run(func(args))
    return func(args)


if __name__ == "__main__":
    sys.exit(main())
