"""Run a one-off Catalyst Center query from the command line.

Usage:
    python -m catalyst_datasource.cli --priority P1 --priority P2 --hours 24
    python -m catalyst_datasource.cli --query-type siteHealth --metric healthScore
    python -m catalyst_datasource.cli --health

The instance comes from the CATALYST_* environment variables (or .env).
"""

import argparse
import asyncio
import logging
import sys
from datetime import UTC, datetime, timedelta
from typing import Any

from catalyst_datasource.backend.datasource import Datasource
from catalyst_datasource.backend.models import DataResponse, InstanceSettings
from catalyst_datasource.config import get_settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Query the Catalyst Center datasource")
    parser.add_argument("--health", action="store_true", help="Only check connectivity and exit")
    parser.add_argument("--query-type", choices=["alerts", "siteHealth"], default="alerts")
    parser.add_argument("--limit", type=int, default=None, help="Maximum rows to return")
    parser.add_argument("--hours", type=float, default=24.0, help="Time window ending now (0 = no window)")
    parser.add_argument("--priority", action="append", default=[], help="P1..P4, repeatable")
    parser.add_argument("--status", action="append", default=[], help="ACTIVE/RESOLVED/IGNORED, repeatable")
    parser.add_argument("--site-id", default="")
    parser.add_argument("--device-id", default="")
    parser.add_argument("--mac", default="")
    parser.add_argument("--ai-driven", default="", help="yes/no")
    parser.add_argument("--enrich", action="store_true", help="Resolve site ids to names")
    parser.add_argument("--site-type", default="")
    parser.add_argument("--parent-site-name", default="")
    parser.add_argument("--site-name", default="")
    parser.add_argument("--metric", action="append", default=[], help="Site-health metric, repeatable")
    return parser


def query_from_args(args: argparse.Namespace) -> dict[str, Any]:
    query: dict[str, Any] = {
        "refId": "A",
        "queryType": args.query_type,
        "limit": args.limit,
        "priority": args.priority,
        "status": args.status,
        "siteId": args.site_id,
        "deviceId": args.device_id,
        "macAddress": args.mac,
        "aiDriven": args.ai_driven,
        "enrich": args.enrich,
        "siteType": args.site_type,
        "parentSiteName": args.parent_site_name,
        "siteName": args.site_name,
        "metric": args.metric,
    }
    if args.hours > 0:
        now = datetime.now(UTC)
        query["timeRange"] = {"from": now - timedelta(hours=args.hours), "to": now}
    return query


def format_response(response: DataResponse) -> str:
    """Render the frames of one query as tab-separated text."""
    lines: list[str] = []
    for frame in response.frames:
        lines.append("\t".join(f.name for f in frame.fields))
        row_count = len(frame.fields[0].values) if frame.fields else 0
        for i in range(row_count):
            lines.append("\t".join(str(f.values[i]) for f in frame.fields))
        if frame.meta:
            lines.extend(f"[{n.severity}] {n.text}" for n in frame.meta.notices)
    if response.error:
        lines.append(f"Error: {response.error}")
    return "\n".join(lines)


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    instance = InstanceSettings.from_settings(settings)
    datasource = Datasource(query_timeout_seconds=settings.query_timeout_seconds)

    if args.health:
        result = await datasource.check_health(instance)
        print(f"{result.status}: {result.message}")
        return 0 if result.status == "ok" else 1

    results = await datasource.query_data(instance, [query_from_args(args)])
    response = results["A"]
    print(format_response(response))
    return 1 if response.error else 0


def main() -> None:
    args = build_parser().parse_args()
    logging.basicConfig(
        level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
        format="%(levelname)s: %(message)s",
    )
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
