from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Any, List, Optional, Sequence

import orjson

from .bootstrap import configure_logging
from .core.scheduler import compute_reminder_times
from .domain import ReminderMode, ReminderOptions
from .services.context import ServiceContext
from .services.http import run_local_server
from .services.network import NetworkStatus
from .services.sync_queue import ReplayResult

logger = logging.getLogger(__name__)


def _offsets(raw: str) -> List[float]:
    try:
        return [float(part) for part in raw.split(",") if part.strip()]
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid offsets {raw!r}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Elaro offline sync command line interface.")
    parser.add_argument("--log-level", default=None, help="Override ELARO_LOG_LEVEL.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    api_parser = subparsers.add_parser("api", help="Start the HTTP API for task mutations.")
    api_parser.add_argument("--host", default="127.0.0.1")
    api_parser.add_argument("--port", type=int, default=8000)

    subparsers.add_parser("replay", help="Replay queued offline actions against the backend.")
    subparsers.add_parser("queue", help="Show the offline action queue.")

    reminders_parser = subparsers.add_parser("reminders", help="Compute reminder times for an event.")
    reminders_parser.add_argument("--base", required=True, help="Event time, ISO 8601.")
    reminders_parser.add_argument("--offsets", required=True, type=_offsets, help="Comma separated offsets.")
    reminders_parser.add_argument("--max-count", type=int, default=3)
    reminders_parser.add_argument("--jitter", type=int, default=0, help="Jitter in minutes.")
    reminders_parser.add_argument(
        "--mode",
        choices=[mode.value for mode in ReminderMode],
        default=ReminderMode.MINUTES_BEFORE.value,
    )
    reminders_parser.add_argument("--preferred-hour", type=int, default=None)
    reminders_parser.add_argument("--seed", default=None, help="Stable key for deterministic jitter.")
    reminders_parser.add_argument("--random", action="store_true", help="Use non-reproducible jitter.")

    return parser


def _print(payload: Any) -> None:
    sys.stdout.write(orjson.dumps(payload, option=orjson.OPT_INDENT_2).decode("utf-8") + "\n")


async def _replay(context: ServiceContext) -> None:
    await context.start()
    try:
        status = await context.probe_network()
        if status is NetworkStatus.OFFLINE:
            logger.warning("Backend unreachable; keeping %d queued actions", len(context.queue))
            result = ReplayResult(interrupted=True, remaining=len(context.queue))
        else:
            result = await context.queue.replay()
    finally:
        await context.stop()
    _print(
        {
            "network": status.value,
            "applied": len(result.applied),
            "deferred": len(result.deferred),
            "remaining": result.remaining,
            "interrupted": result.interrupted,
            "rejected": [
                {"action": item.action.to_record(), "message": item.user_message} for item in result.rejected
            ],
        }
    )


async def _queue(context: ServiceContext) -> None:
    await context.queue.load()
    stats = context.queue.stats()
    _print(
        {
            "total": stats.total,
            "retrying": stats.retrying,
            "oldest_created_at": stats.oldest_created_at.isoformat() if stats.oldest_created_at else None,
            "actions": [action.to_record() for action in context.queue.actions()],
        }
    )


def _reminders(args: argparse.Namespace) -> None:
    options = ReminderOptions(
        max_count=args.max_count,
        jitter_minutes=args.jitter,
        deterministic=not args.random,
        preferred_hour=args.preferred_hour,
        mode=ReminderMode(args.mode),
        seed_key=args.seed,
    )
    times = compute_reminder_times(args.base, args.offsets, options)
    _print([{"at": slot.at.isoformat(), "offset": slot.offset, "index": slot.index} for slot in times])


def main(argv: Optional[Sequence[str]] = None, context: Optional[ServiceContext] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(level=args.log_level)
    logger.info("Elaro CLI starting: %s", args.command)

    try:
        if args.command == "api":
            run_local_server(host=args.host, port=args.port, context=context)
        elif args.command == "replay":
            asyncio.run(_replay(context or ServiceContext()))
        elif args.command == "queue":
            asyncio.run(_queue(context or ServiceContext()))
        elif args.command == "reminders":
            _reminders(args)
        else:  # pragma: no cover - argparse enforces choices
            parser.print_help()
    except ValueError as exc:
        logger.error("%s", exc)
        sys.stderr.write(f"error: {exc}\n")
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
