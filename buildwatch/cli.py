from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from buildwatch.errors import BuildTriggerError
from buildwatch.models import LogLine, Project
from buildwatch.monitor import BuildMonitor
from buildwatch.settings import Settings


def _print_line(line: LogLine) -> None:
    print(line.text, flush=True)


async def _watch(settings: Settings, project: Project, *, analyze: bool) -> int:
    monitor = BuildMonitor(settings, on_line=_print_line)
    try:
        session = await monitor.watch(project)
        print(f"Status: {session.job_status}")
        if analyze:
            res = await session.request_analysis()
            if res is None:
                print("Analysis unavailable.", file=sys.stderr)
                return 1
            print(f"Analysis ({res.confidence:g}% conf.): {res.analysis}")
            print(f"Suggestion: {res.suggestion}")
        return 0 if session.job_id is not None else 1
    finally:
        await monitor.leave()


async def _command(settings: Settings, project: Project, *, action: str, target: str, value: str) -> int:
    monitor = BuildMonitor(settings)
    try:
        job = await monitor.dispatch_command(project, action=action, target=target, value=value)
    except BuildTriggerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(f"Command sent. Job ID: {job.id}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="buildwatch", description="Watch live builds on a build backend.")
    ap.add_argument("--api", default=None, help="API base URL (default: BUILDWATCH_API_BASE_URL)")
    ap.add_argument("--ws", default=None, help="Real-time channel URL (default: BUILDWATCH_WS_URL)")
    sub = ap.add_subparsers(dest="cmd", required=True)

    w = sub.add_parser("watch", help="Trigger a build and stream its logs")
    w.add_argument("project_id")
    w.add_argument("--name", default="", help="Project display name")
    w.add_argument("--analyze", action="store_true", help="Request a log analysis once the channel closes")

    c = sub.add_parser("command", help="Dispatch a remote UI action")
    c.add_argument("project_id")
    c.add_argument("action", choices=["FIND", "TYPE", "CLICK"])
    c.add_argument("target")
    c.add_argument("value", nargs="?", default="")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    if args.api:
        settings.api_base_url = args.api
    if args.ws:
        settings.ws_url = args.ws
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if args.cmd == "watch":
        project = Project(id=args.project_id, name=args.name)
        return asyncio.run(_watch(settings, project, analyze=args.analyze))
    project = Project(id=args.project_id)
    return asyncio.run(_command(settings, project, action=args.action, target=args.target, value=args.value))


if __name__ == "__main__":
    raise SystemExit(main())
