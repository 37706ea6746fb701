#!/usr/bin/env python
from __future__ import annotations

import argparse
import json
import random
from datetime import datetime, timedelta, timezone
from pathlib import Path


TOPICS = [
    "Shipping a new release today #opensource #python",
    "Reading about event loops again. @guido was right #asyncio",
    "Coffee first, then code review #devlife",
    "Benchmarks are lies we tell ourselves #performance",
    "Thread on why caches should be boring 🧵 #systems",
]


def main() -> None:
    parser = argparse.ArgumentParser(description="Write a sample post export for DirectoryCollector")
    parser.add_argument("--subject", required=True, help="account handle, without @")
    parser.add_argument("--output-dir", required=True, help="directory used as COLLECTOR_SOURCE_DIR")
    parser.add_argument("--count", type=int, default=40, help="number of posts")
    parser.add_argument("--seed", type=int, default=7, help="random seed")
    args = parser.parse_args()

    rng = random.Random(args.seed)
    now = datetime.now(timezone.utc)
    records = []
    for index in range(args.count):
        text = rng.choice(TOPICS)
        created = now - timedelta(hours=rng.randint(1, 24 * 30))
        records.append(
            {
                "id": str(1000 + index),
                "text": text,
                "created_at": created.isoformat(),
                "likes": rng.randint(0, 500),
                "reposts": rng.randint(0, 80),
                "replies": rng.randint(0, 40),
            }
        )

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    output = output_dir / f"{args.subject}.json"
    output.write_text(json.dumps({"records": records}, ensure_ascii=False, indent=2), encoding="utf-8")

    print(f"sample export written: {output} ({len(records)} posts)")


if __name__ == "__main__":
    main()
