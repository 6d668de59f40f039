"""Command-line interface for ad hoc product lookups against a deployment."""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import List, Optional

from . import db
from .main import create_service


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Scanner product lookup tooling")
    subparsers = parser.add_subparsers(dest="command", required=True)

    lookup = subparsers.add_parser("lookup", help="Resolve a scanned barcode")
    lookup.add_argument("barcode", help="Scanned or typed barcode")
    lookup.set_defaults(func=run_lookup)

    search = subparsers.add_parser("search", help="Search products by fragment")
    search.add_argument("keyword", help="Barcode, code or name fragment")
    search.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum number of results (default 20, capped at 50)",
    )
    search.set_defaults(func=run_search)
    return parser


async def run_lookup(args: argparse.Namespace) -> int:
    service = create_service()
    try:
        result = await service.lookup(args.barcode)
    finally:
        await db.dispose_engine()
    if result is None:
        print(json.dumps({"found": False, "barcode": args.barcode}, ensure_ascii=False))
        return 1
    print(result.model_dump_json(indent=2))
    return 0


async def run_search(args: argparse.Namespace) -> int:
    service = create_service()
    try:
        items = await service.search_by_fragment(args.keyword, args.limit)
    finally:
        await db.dispose_engine()
    payload = {
        "keyword": args.keyword.strip(),
        "count": len(items),
        "items": [item.model_dump(mode="json") for item in items],
    }
    print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return asyncio.run(args.func(args))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
