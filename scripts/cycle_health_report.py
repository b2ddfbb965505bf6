#!/usr/bin/env python3
"""
Print the most recent feed cycle health analyses stored in Firestore.

Usage:
  python scripts/cycle_health_report.py             # last 10 cycles
  python scripts/cycle_health_report.py --limit 30 --json
"""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List

ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from analytics.cycle_health import CycleHealthMonitor
from utils.firestore_handle import FirestoreHandleProvider, InitializationError
from utils.time_format import time_ago


def format_row(doc: Dict[str, Any], now: datetime) -> str:
    ts = doc.get("timestamp")
    age = time_ago(ts, now) if isinstance(ts, datetime) else "-"
    return (
        f"{doc.get('cycle_id', '?'):<28} {str(doc.get('status', '?')).upper():<9} "
        f"articles={int(doc.get('articles_processed') or 0):<5} "
        f"anomalies={len(doc.get('anomalies') or []):<2} {age}"
    )


def render(docs: List[Dict[str, Any]], now: datetime) -> str:
    if not docs:
        return "no cycle health records"
    return "\n".join(format_row(d, now) for d in docs)


def main(argv: List[str] | None = None, provider: FirestoreHandleProvider | None = None) -> int:
    ap = argparse.ArgumentParser(description="Show recent feed cycle health analyses.")
    ap.add_argument("--limit", type=int, default=10, help="How many cycles to show [default: 10]")
    ap.add_argument("--collection", default=None, help="Firestore collection (defaults to config)")
    ap.add_argument("--json", action="store_true", help="Emit raw documents as JSON")
    ap.add_argument("--log-level", default="WARNING")
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    monitor = CycleHealthMonitor(provider or FirestoreHandleProvider(), collection=args.collection)
    try:
        docs = monitor.recent(args.limit)
    except InitializationError as exc:
        logging.error("cannot reach Firestore: %s", exc)
        return 1

    now = datetime.now(timezone.utc)
    if args.json:
        print(json.dumps(docs, default=str, ensure_ascii=False, indent=2))
    else:
        print(render(docs, now))
    return 0


if __name__ == "__main__":
    sys.exit(main())
