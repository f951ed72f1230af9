#!/usr/bin/env python3
"""Manual probe for gridstate against a live (or absent) remote store.

Reads configuration from GRIDSTATE_* / SUPABASE_* environment variables and
runs one of:

  get KEY            print the stored payload
  set KEY JSON       store a JSON payload
  watch KEY          print every change until interrupted
  list [filters]     print one page of records and the next cursor

Without a configured remote store every command runs against the local
fallback (use --local-dir to share it between invocations).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from gridstate import GridStateClient, GridStateConfig, ListQuery  # noqa: E402

_LOG = logging.getLogger("state_probe")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Probe gridstate state keys and record listings")
    parser.add_argument("--local-dir", help="Directory for the local fallback store")
    parser.add_argument("--mqtt", action="store_true", help="Bridge local broadcasts through MQTT")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    get_cmd = sub.add_parser("get", help="Print the payload stored under KEY")
    get_cmd.add_argument("key")

    set_cmd = sub.add_parser("set", help="Store a JSON payload under KEY")
    set_cmd.add_argument("key")
    set_cmd.add_argument("payload", help="JSON text")

    watch_cmd = sub.add_parser("watch", help="Print changes of KEY until interrupted")
    watch_cmd.add_argument("key")

    list_cmd = sub.add_parser("list", help="Print one page of records")
    list_cmd.add_argument("--limit", type=int, default=10)
    list_cmd.add_argument("--cursor")
    list_cmd.add_argument("--category")
    list_cmd.add_argument("--search")
    list_cmd.add_argument("--start-date")
    list_cmd.add_argument("--end-date")
    return parser.parse_args()


def _print_json(value: Any) -> None:
    print(json.dumps(value, indent=2, ensure_ascii=False))


async def _run(args: argparse.Namespace) -> int:
    overrides: dict[str, Any] = {}
    if args.local_dir:
        overrides["local_dir"] = args.local_dir
    if args.mqtt:
        overrides["broadcast_backend"] = "mqtt"
    config = GridStateConfig.from_env(**overrides)
    if not config.remote_configured:
        _LOG.warning("No remote store configured; using the local fallback only")

    async with GridStateClient(config) as client:
        if args.command == "get":
            _print_json(await client.load_state(args.key))
        elif args.command == "set":
            try:
                payload = json.loads(args.payload)
            except json.JSONDecodeError as exc:
                _LOG.error("Payload is not valid JSON: %s", exc)
                return 2
            await client.save_state(args.key, payload)
        elif args.command == "watch":
            unsubscribe = await client.subscribe_to_state(args.key, _print_json)
            _LOG.info("Watching %r, press Ctrl+C to stop", args.key)
            try:
                await asyncio.Event().wait()
            finally:
                unsubscribe()
        else:
            page = await client.list_records(
                ListQuery(
                    limit=args.limit,
                    cursor=args.cursor,
                    category=args.category,
                    search=args.search,
                    start_date=args.start_date,
                    end_date=args.end_date,
                )
            )
            _print_json(
                {
                    "entries": [entry.model_dump(mode="json") for entry in page.entries],
                    "nextCursor": page.next_cursor,
                }
            )
    return 0


def main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
